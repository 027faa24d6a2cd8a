"""Transcript domain model: words, utterances, highlights and chapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from transcript_viewer.core.markers import normalize_color, strip_markers
from transcript_viewer.utils.timefmt import to_ms


class TimestampMode(str, Enum):
    UTTERANCE = "utterance"
    SENTENCE = "sentence"
    NONE = "none"


def _pick(d: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d:
            return d[k]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class Word:
    text: str
    start: int
    end: int
    confidence: float = 1.0

    def contains(self, time_ms: int) -> bool:
        return self.start <= time_ms <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start, "end": self.end, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Word:
        try:
            confidence = float(d.get("confidence", 1.0))
        except (TypeError, ValueError):
            confidence = 1.0
        return cls(
            text=str(_pick(d, "text", "word", default="")),
            start=to_ms(d.get("start")),
            end=to_ms(d.get("end")),
            confidence=confidence,
        )


@dataclass
class Utterance:
    speaker: str
    start: int
    end: int
    text: str
    is_edited: bool = False
    words: list[Word] = field(default_factory=list)

    @property
    def has_words(self) -> bool:
        return bool(self.words)

    @property
    def words_text(self) -> str:
        return " ".join(w.text for w in self.words)

    @property
    def plain_text(self) -> str:
        """Canonical text with highlight markers removed."""
        return strip_markers(self.text)

    def contains(self, time_ms: int) -> bool:
        return self.start <= time_ms <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "is_edited": self.is_edited,
            "words": [w.to_dict() for w in self.words],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Utterance:
        raw_words = d.get("words") or []
        words = [
            Word.from_dict(w) for w in raw_words
            if isinstance(w, dict) and _pick(w, "text", "word") is not None
        ]
        return cls(
            speaker=str(d.get("speaker", "")),
            start=to_ms(d.get("start")),
            end=to_ms(d.get("end")),
            text=str(d.get("text") or ""),
            is_edited=_as_bool(_pick(d, "is_edited", "isEdited", default=False)),
            words=words,
        )


@dataclass
class Chapter:
    start: int
    headline: str = ""
    summary: str = ""
    end: int | None = None

    @property
    def title(self) -> str:
        return self.headline or self.summary

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start, "end": self.end, "headline": self.headline, "summary": self.summary}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Chapter:
        end = d.get("end")
        return cls(
            start=to_ms(d.get("start")),
            headline=str(d.get("headline") or d.get("gist") or ""),
            summary=str(d.get("summary") or ""),
            end=to_ms(end) if end is not None else None,
        )


@dataclass
class Highlight:
    id: str
    text: str
    color: str
    start_time: int | None = None
    end_time: int | None = None
    note: str = ""

    @property
    def is_time_based(self) -> bool:
        return self.start_time is not None and self.end_time is not None

    def covers(self, time_ms: int) -> bool:
        return self.is_time_based and self.start_time <= time_ms <= self.end_time  # type: ignore[operator]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "color": self.color,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Highlight:
        start = _pick(d, "start_time", "startTime")
        end = _pick(d, "end_time", "endTime")
        return cls(
            id=str(d.get("id", "")),
            text=str(_pick(d, "text", "highlight_text", default="")),
            color=normalize_color(d.get("color")),
            start_time=to_ms(start) if start is not None else None,
            end_time=to_ms(end) if end is not None else None,
            note=str(d.get("note") or ""),
        )


@dataclass
class TranslatedUtterance:
    start: int
    end: int
    speaker: str
    display_speaker: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "speaker": self.speaker,
            "display_speaker": self.display_speaker,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TranslatedUtterance:
        speaker = str(d.get("speaker", ""))
        return cls(
            start=to_ms(d.get("start")),
            end=to_ms(d.get("end")),
            speaker=speaker,
            display_speaker=str(_pick(d, "display_speaker", "displaySpeaker", default="") or f"Speaker {speaker}"),
            text=str(d.get("text") or ""),
        )


@dataclass
class Transcript:
    transcript_id: str
    title: str
    utterances: list[Utterance]
    date: str = ""
    speaker_map: dict[str, str] = field(default_factory=dict)
    summary: str = ""
    chapters: list[Chapter] = field(default_factory=list)
    can_edit: bool = True

    @property
    def speakers(self) -> list[str]:
        """Speaker ids in first-seen order."""
        seen: list[str] = []
        for u in self.utterances:
            if u.speaker not in seen:
                seen.append(u.speaker)
        return seen

    def to_dict(self) -> dict[str, Any]:
        return {
            "transcript_id": self.transcript_id,
            "title": self.title,
            "date": self.date,
            "data": {"utterances": [u.to_dict() for u in self.utterances]},
            "speaker_map": dict(self.speaker_map),
            "summary": self.summary,
            "chapters": [c.to_dict() for c in self.chapters],
            "can_edit": self.can_edit,
        }
