"""Export dispatch: options, filenames and format selection."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from transcript_viewer.errors import ValidationError
from transcript_viewer.export.html_doc import generate_html
from transcript_viewer.export.subtitles import format_srt, format_vtt
from transcript_viewer.export.text import PARAGRAPH_MODES, format_as_text
from transcript_viewer.models import Highlight, TimestampMode, Utterance

EXPORT_FORMATS = ("txt", "srt", "vtt", "json", "html")

_BAD_FILENAME_RE = re.compile(r'[\\/:"*?<>|]+')
_WS_RE = re.compile(r"\s+")


@dataclass
class ExportOptions:
    format: str = "txt"
    include_timestamps: bool = False
    include_speakers: bool = True
    include_highlights: bool = False
    timestamp_mode: str = "utterance"
    paragraph_mode: str = "utterance"

    def normalized(self) -> ExportOptions:
        fmt = (self.format or "txt").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {self.format}")
        mode = self.timestamp_mode if self.timestamp_mode in {m.value for m in TimestampMode} else "utterance"
        include_ts = self.include_timestamps
        if not include_ts or mode == TimestampMode.NONE.value:
            include_ts, mode = False, TimestampMode.NONE.value
        paragraph = self.paragraph_mode if self.paragraph_mode in PARAGRAPH_MODES else "utterance"
        return ExportOptions(fmt, include_ts, self.include_speakers, self.include_highlights, mode, paragraph)

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "include_timestamps": self.include_timestamps,
            "include_speakers": self.include_speakers,
            "include_highlights": self.include_highlights,
            "timestamp_mode": self.timestamp_mode,
            "paragraph_mode": self.paragraph_mode,
        }


@dataclass
class ExportResult:
    filename: str
    content: str | None = None
    download_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "content": self.content, "download_url": self.download_url}


def sanitize_filename(title: str, extension: str = "") -> str:
    base = _BAD_FILENAME_RE.sub("", title or "")
    base = _WS_RE.sub(" ", base.strip()) or "transcript"
    ext = extension.lstrip(".")
    if ext and not base.endswith(f".{ext}"):
        base += f".{ext}"
    return base


def export_transcript(
    utterances: list[Utterance],
    title: str,
    options: ExportOptions,
    date: str = "",
    highlights: list[Highlight] | None = None,
) -> ExportResult:
    opts = options.normalized()
    if opts.format == "srt":
        content = format_srt(utterances)
    elif opts.format == "vtt":
        content = format_vtt(utterances)
    elif opts.format == "json":
        content = json.dumps({"utterances": [u.to_dict() for u in utterances]}, indent=4, ensure_ascii=False)
    elif opts.format == "html":
        content = generate_html(
            utterances, title, date,
            include_timestamps=opts.include_timestamps,
            include_speakers=opts.include_speakers,
            paragraph_mode=opts.paragraph_mode,
            highlights=(highlights or []) if opts.include_highlights else None,
        )
    else:
        content = format_as_text(
            utterances,
            include_timestamps=opts.include_timestamps,
            timestamp_mode=opts.timestamp_mode,
            include_speakers=opts.include_speakers,
            paragraph_mode=opts.paragraph_mode,
        )
    return ExportResult(filename=sanitize_filename(title, opts.format), content=content)
