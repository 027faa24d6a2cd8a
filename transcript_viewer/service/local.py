"""File-backed transcript service: one JSON file per transcript plus a highlights index."""

from __future__ import annotations

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable

from transcript_viewer.core.store import load_transcript
from transcript_viewer.errors import LoadError, NetworkError, PermissionDeniedError, ValidationError
from transcript_viewer.export.formats import ExportOptions, ExportResult, export_transcript
from transcript_viewer.models import Chapter, Highlight, TranslatedUtterance, Utterance
from transcript_viewer.service.base import TranscriptService, sanitize_utterances
from transcript_viewer.utils.logging import debug, info

# (texts, target_lang) -> translated texts, same length and order
Translator = Callable[[list[str], str], list[str]]

HIGHLIGHTS_FILE = "highlights.json"


class LocalTranscriptService(TranscriptService):
    name = "local"

    def __init__(self, data_dir: str | Path, user: str = "local", translator: Translator | None = None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.user = user
        self.translator = translator
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    # ── File helpers ─────────────────────────────────────────────────────────

    def _path(self, transcript_id: str) -> Path:
        safe = "".join(ch for ch in str(transcript_id) if ch.isalnum() or ch in "-_")
        if not safe:
            raise LoadError(f"Invalid transcript id: {transcript_id!r}")
        return self.data_dir / f"{safe}.json"

    def _read(self, transcript_id: str) -> dict[str, Any]:
        p = self._path(transcript_id)
        if not p.exists():
            raise LoadError(f"Transcript {transcript_id} not found")
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise LoadError(f"Transcript {transcript_id} is corrupt: {e}") from e

    def _write(self, transcript_id: str, doc: dict[str, Any]) -> None:
        p = self._path(transcript_id)
        tmp = p.with_suffix(".tmp")
        tmp.write_text(json.dumps(doc, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(p)

    def _editable(self, transcript_id: str) -> dict[str, Any]:
        doc = self._read(transcript_id)
        if not doc.get("can_edit", True):
            raise PermissionDeniedError("Permission denied")
        return doc

    def _read_highlights(self) -> dict[str, Any]:
        p = self.data_dir / HIGHLIGHTS_FILE
        if not p.exists():
            return {"next_id": 1, "items": []}
        return json.loads(p.read_text(encoding="utf-8"))

    def _write_highlights(self, index: dict[str, Any]) -> None:
        (self.data_dir / HIGHLIGHTS_FILE).write_text(json.dumps(index, indent=2, ensure_ascii=False), encoding="utf-8")

    async def _asyncify(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run blocking file work on the service's single worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcript-store")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, **kwargs), *args)

    async def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ── Transcripts ──────────────────────────────────────────────────────────

    def put_transcript(self, raw: dict[str, Any], transcript_id: str | None = None) -> str:
        """Import a load-shaped payload. Raises InvalidShape for a malformed one."""
        t = load_transcript(raw, transcript_id)
        if not t.transcript_id:
            raise ValidationError("Transcript needs an id")
        doc = t.to_dict()
        doc["date"] = doc["date"] or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        doc["owner"] = self.user
        with self._lock:
            self._write(t.transcript_id, doc)
        info(f"Transcript {t.transcript_id} stored ({len(t.utterances)} utterances)")
        return t.transcript_id

    def _load_sync(self, transcript_id: str) -> dict[str, Any]:
        with self._lock:
            return self._read(transcript_id)

    async def load(self, transcript_id: str) -> dict[str, Any]:
        return await self._asyncify(self._load_sync, transcript_id)

    def _save_sync(self, transcript_id: str, clean: list[dict[str, Any]], speaker_map: dict[str, str]) -> None:
        with self._lock:
            doc = self._editable(transcript_id)
            doc["data"] = {"utterances": clean}
            doc["speaker_map"] = {str(k): str(v).strip() for k, v in speaker_map.items()}
            self._write(transcript_id, doc)

    async def save(
        self,
        transcript_id: str,
        utterances: list[Utterance],
        speaker_map: dict[str, str],
        notify: bool = True,
    ) -> None:
        clean = sanitize_utterances([u.to_dict() for u in utterances])
        await self._asyncify(self._save_sync, transcript_id, clean, speaker_map)
        debug(f"Transcript {transcript_id} saved ({len(clean)} utterances, notify={notify})")

    def _save_title_sync(self, transcript_id: str, title: str) -> None:
        with self._lock:
            doc = self._editable(transcript_id)
            doc["title"] = title
            self._write(transcript_id, doc)

    async def save_title(self, transcript_id: str, title: str) -> None:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        await self._asyncify(self._save_title_sync, transcript_id, title)

    def _delete_sync(self, transcript_id: str) -> None:
        with self._lock:
            doc = self._read(transcript_id)
            if doc.get("owner", self.user) != self.user or not doc.get("can_edit", True):
                raise PermissionDeniedError("Permission denied")
            self._path(transcript_id).unlink()
            index = self._read_highlights()
            index["items"] = [h for h in index["items"] if h["transcript_id"] != transcript_id]
            self._write_highlights(index)

    async def delete_transcript(self, transcript_id: str) -> None:
        await self._asyncify(self._delete_sync, transcript_id)
        info(f"Transcript {transcript_id} deleted")

    # ── Highlights ───────────────────────────────────────────────────────────

    def _create_highlight_sync(self, transcript_id: str, highlight: Highlight) -> str:
        with self._lock:
            self._read(transcript_id)
            index = self._read_highlights()
            hid = str(index["next_id"])
            index["next_id"] += 1
            item = highlight.to_dict()
            item.update({
                "id": hid,
                "transcript_id": transcript_id,
                "owner": self.user,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })
            index["items"].append(item)
            self._write_highlights(index)
        return hid

    async def create_highlight(self, transcript_id: str, highlight: Highlight) -> str:
        return await self._asyncify(self._create_highlight_sync, transcript_id, highlight)

    def _list_highlights_sync(self, transcript_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [h for h in self._read_highlights()["items"] if h["transcript_id"] == transcript_id]

    async def list_highlights(self, transcript_id: str) -> list[Highlight]:
        items = await self._asyncify(self._list_highlights_sync, transcript_id)
        items.sort(key=lambda h: (h.get("start_time") is None, h.get("start_time") or 0, int(h["id"])))
        return [Highlight.from_dict(h) for h in items]

    def _delete_highlight_sync(self, highlight_id: str) -> None:
        with self._lock:
            index = self._read_highlights()
            item = next((h for h in index["items"] if h["id"] == str(highlight_id)), None)
            if item is None:
                raise NetworkError(f"Highlight {highlight_id} not found", status_code=404)
            if item.get("owner") != self.user:
                raise PermissionDeniedError("Permission denied")
            index["items"].remove(item)
            self._write_highlights(index)

    async def delete_highlight(self, highlight_id: str) -> None:
        await self._asyncify(self._delete_highlight_sync, highlight_id)

    # ── Derived views ────────────────────────────────────────────────────────

    async def translate(
        self,
        transcript_id: str,
        target_lang: str,
        speaker_map: dict[str, str],
    ) -> list[TranslatedUtterance]:
        if self.translator is None:
            raise NetworkError("Translation service not configured", status_code=501)
        t = load_transcript(await self.load(transcript_id), transcript_id)
        texts = [u.plain_text for u in t.utterances]
        translated = self.translator(texts, target_lang) if texts else []
        if len(translated) != len(texts):
            raise NetworkError("Translation returned a different number of utterances")
        return [
            TranslatedUtterance(
                start=u.start,
                end=u.end,
                speaker=u.speaker,
                display_speaker=speaker_map.get(u.speaker) or t.speaker_map.get(u.speaker) or f"Speaker {u.speaker}",
                text=text,
            )
            for u, text in zip(t.utterances, translated)
        ]

    async def export(
        self,
        transcript_id: str,
        options: ExportOptions,
        utterances: list[Utterance] | None = None,
        title: str | None = None,
    ) -> ExportResult:
        t = load_transcript(await self.load(transcript_id), transcript_id)
        highlights = await self.list_highlights(transcript_id) if options.include_highlights else None
        return export_transcript(
            utterances if utterances is not None else t.utterances,
            title or t.title,
            options,
            date=t.date,
            highlights=highlights,
        )

    async def summary(self, transcript_id: str) -> tuple[str, list[Chapter]]:
        t = load_transcript(await self.load(transcript_id), transcript_id)
        return t.summary, t.chapters
