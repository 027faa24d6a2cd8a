"""HTTP transcript service client (httpx) for the ``/api`` routes."""

from __future__ import annotations

import os
from typing import Any

import httpx

from transcript_viewer.errors import InvalidShape, LoadError, NetworkError, PermissionDeniedError
from transcript_viewer.export.formats import ExportOptions, ExportResult
from transcript_viewer.models import Chapter, Highlight, TranslatedUtterance, Utterance
from transcript_viewer.service.base import TranscriptService
from transcript_viewer.utils.logging import debug


def _detail(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class HttpTranscriptService(TranscriptService):
    """Talks to a transcript-viewer server.

    ``transport`` is passed through to httpx, so tests can mount the ASGI
    app directly.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        token = token or os.environ.get("TRANSCRIPT_API_TOKEN", "")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            r = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        debug(f"{method} {path} → {r.status_code}")
        if r.status_code == 403:
            raise PermissionDeniedError(_detail(r))
        if r.status_code >= 400:
            raise NetworkError(_detail(r), status_code=r.status_code)
        body = r.json() if r.content else {}
        if isinstance(body, dict) and body.get("success") is False:
            raise NetworkError(str(body.get("error") or "Request failed"))
        return body

    async def load(self, transcript_id: str) -> dict[str, Any]:
        try:
            return await self._request("GET", f"/api/transcripts/{transcript_id}")
        except NetworkError as e:
            if e.status_code == 422:
                raise InvalidShape(str(e)) from e
            if e.status_code is not None and e.status_code < 500:
                raise LoadError(str(e)) from e
            raise

    async def save(
        self,
        transcript_id: str,
        utterances: list[Utterance],
        speaker_map: dict[str, str],
        notify: bool = True,
    ) -> None:
        await self._request("PUT", f"/api/transcripts/{transcript_id}", json={
            "transcript_data": {"utterances": [u.to_dict() for u in utterances]},
            "speaker_map": speaker_map,
            "notify": notify,
        })

    async def save_title(self, transcript_id: str, title: str) -> None:
        await self._request("PUT", f"/api/transcripts/{transcript_id}/title", json={"title": title})

    async def create_highlight(self, transcript_id: str, highlight: Highlight) -> str:
        body = await self._request("POST", f"/api/transcripts/{transcript_id}/highlights", json={
            "text": highlight.text,
            "start_time": highlight.start_time,
            "end_time": highlight.end_time,
            "color": highlight.color,
            "note": highlight.note,
        })
        return str(body["id"])

    async def list_highlights(self, transcript_id: str) -> list[Highlight]:
        body = await self._request("GET", f"/api/transcripts/{transcript_id}/highlights")
        return [Highlight.from_dict(h) for h in body]

    async def delete_highlight(self, highlight_id: str) -> None:
        await self._request("DELETE", f"/api/highlights/{highlight_id}")

    async def translate(
        self,
        transcript_id: str,
        target_lang: str,
        speaker_map: dict[str, str],
    ) -> list[TranslatedUtterance]:
        body = await self._request("POST", f"/api/transcripts/{transcript_id}/translate", json={
            "target_lang": target_lang,
            "speaker_map": speaker_map,
        })
        return [TranslatedUtterance.from_dict(t) for t in body.get("translated_utterances", [])]

    async def export(
        self,
        transcript_id: str,
        options: ExportOptions,
        utterances: list[Utterance] | None = None,
        title: str | None = None,
    ) -> ExportResult:
        payload: dict[str, Any] = options.to_dict()
        if utterances is not None:
            payload["transcript_data"] = {"utterances": [u.to_dict() for u in utterances]}
        if title:
            payload["title"] = title
        body = await self._request("POST", f"/api/transcripts/{transcript_id}/export", json=payload)
        return ExportResult(
            filename=body.get("filename", ""),
            content=body.get("content"),
            download_url=body.get("download_url"),
        )

    async def summary(self, transcript_id: str) -> tuple[str, list[Chapter]]:
        body = await self._request("GET", f"/api/transcripts/{transcript_id}/summary")
        return body.get("summary") or "", [Chapter.from_dict(c) for c in body.get("chapters") or []]

    async def delete_transcript(self, transcript_id: str) -> None:
        await self._request("DELETE", f"/api/transcripts/{transcript_id}")
