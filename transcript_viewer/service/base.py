"""Transcript service boundary: persistence, highlights, translation, export, summary."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from transcript_viewer.export.formats import ExportOptions, ExportResult
from transcript_viewer.models import Chapter, Highlight, TranslatedUtterance, Utterance
from transcript_viewer.utils.timefmt import to_ms


def sanitize_utterances(raw: Any) -> list[dict[str, Any]]:
    """Coerce a posted utterance array into clean dicts.

    Times become integer ms, flags become booleans, and words missing
    text/start/end are dropped. Unknown keys are discarded.
    """
    if not isinstance(raw, list):
        return []
    clean: list[dict[str, Any]] = []
    for u in raw:
        if not isinstance(u, dict):
            continue
        words = []
        for w in u.get("words") or []:
            if isinstance(w, dict) and all(k in w for k in ("text", "start", "end")):
                try:
                    confidence = float(w.get("confidence", 0) or 0)
                except (TypeError, ValueError):
                    confidence = 0.0
                words.append({
                    "text": str(w["text"]).strip(),
                    "start": to_ms(w["start"]),
                    "end": to_ms(w["end"]),
                    "confidence": confidence,
                })
        clean.append({
            "speaker": str(u.get("speaker", "")).strip(),
            "start": to_ms(u.get("start")),
            "end": to_ms(u.get("end")),
            "text": str(u.get("text") or ""),
            "is_edited": bool(u.get("is_edited", u.get("isEdited", False))),
            "words": words,
        })
    return clean


class TranscriptService(ABC):
    """Abstract base class for transcript backends.

    Failures raise NetworkError, PermissionDeniedError or LoadError.
    """

    name: str = "base"

    @abstractmethod
    async def load(self, transcript_id: str) -> dict[str, Any]:
        """Return the raw load payload (``data.utterances``, ``speaker_map``, ...)."""

    @abstractmethod
    async def save(
        self,
        transcript_id: str,
        utterances: list[Utterance],
        speaker_map: dict[str, str],
        notify: bool = True,
    ) -> None:
        """Persist the full utterance array and speaker map."""

    @abstractmethod
    async def save_title(self, transcript_id: str, title: str) -> None: ...

    @abstractmethod
    async def create_highlight(self, transcript_id: str, highlight: Highlight) -> str:
        """Store a highlight. Returns the id assigned by the backend."""

    @abstractmethod
    async def list_highlights(self, transcript_id: str) -> list[Highlight]:
        """Highlights ordered by start time."""

    @abstractmethod
    async def delete_highlight(self, highlight_id: str) -> None: ...

    @abstractmethod
    async def translate(
        self,
        transcript_id: str,
        target_lang: str,
        speaker_map: dict[str, str],
    ) -> list[TranslatedUtterance]: ...

    @abstractmethod
    async def export(
        self,
        transcript_id: str,
        options: ExportOptions,
        utterances: list[Utterance] | None = None,
        title: str | None = None,
    ) -> ExportResult: ...

    @abstractmethod
    async def summary(self, transcript_id: str) -> tuple[str, list[Chapter]]: ...

    @abstractmethod
    async def delete_transcript(self, transcript_id: str) -> None: ...

    async def close(self) -> None:
        """Release client resources."""
