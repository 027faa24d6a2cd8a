"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from transcript_viewer.utils.config import DEFAULT_HIGHLIGHT_COLOR


# ── Enums ─────────────────────────────────────────────────────────────────────

class ExportFormatEnum(str, Enum):
    txt = "txt"
    srt = "srt"
    vtt = "vtt"
    json = "json"
    html = "html"


class TimestampModeEnum(str, Enum):
    utterance = "utterance"
    sentence = "sentence"
    none = "none"


class ParagraphModeEnum(str, Enum):
    utterance = "utterance"
    speaker = "speaker"
    continuous = "continuous"


# ── Requests ──────────────────────────────────────────────────────────────────

class TranscriptData(BaseModel):
    utterances: list[dict[str, Any]] = Field(..., description="Full utterance array")


class SaveTranscriptRequest(BaseModel):
    transcript_data: TranscriptData
    speaker_map: dict[str, str] = {}
    notify: bool = True


class SurfaceUpdate(BaseModel):
    html: str = Field(..., description="Edited row content, or a whole rendered surface")
    row_index: int | None = Field(default=None, ge=0)
    notify: bool = True


class TitleUpdate(BaseModel):
    title: str = Field(..., min_length=1)


class HighlightCreate(BaseModel):
    text: str = Field(..., min_length=1)
    start_time: int | None = Field(default=None, ge=0)
    end_time: int | None = Field(default=None, ge=0)
    color: str = DEFAULT_HIGHLIGHT_COLOR
    note: str = ""


class ExportRequest(BaseModel):
    format: ExportFormatEnum = ExportFormatEnum.txt
    include_timestamps: bool = False
    include_speakers: bool = True
    include_highlights: bool = False
    timestamp_mode: TimestampModeEnum = TimestampModeEnum.utterance
    paragraph_mode: ParagraphModeEnum = ParagraphModeEnum.utterance
    transcript_data: TranscriptData | None = None
    title: str | None = None


class TranslateRequest(BaseModel):
    target_lang: str = Field(..., min_length=1)
    speaker_map: dict[str, str] = {}


# ── Responses ─────────────────────────────────────────────────────────────────

class SuccessResponse(BaseModel):
    success: bool = True
    id: str | None = None
    error: str | None = None


class SurfaceUpdateResponse(BaseModel):
    success: bool = True
    changed_rows: list[int] = []


class HighlightInfo(BaseModel):
    id: str
    text: str
    start_time: int | None = None
    end_time: int | None = None
    color: str = DEFAULT_HIGHLIGHT_COLOR
    note: str = ""


class ExportResponse(BaseModel):
    filename: str
    content: str | None = None
    download_url: str | None = None


class TranslatedUtteranceInfo(BaseModel):
    start: int
    end: int
    speaker: str
    display_speaker: str
    text: str


class TranslateResponse(BaseModel):
    translated_utterances: list[TranslatedUtteranceInfo] = []


class ChapterInfo(BaseModel):
    start: int
    end: int | None = None
    headline: str = ""
    summary: str = ""


class SummaryResponse(BaseModel):
    summary: str = ""
    chapters: list[ChapterInfo] = []


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    backend: str = "local"
