"""Plain text exporter with utterance, speaker or continuous paragraphs."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass

from transcript_viewer.core.markers import strip_markers
from transcript_viewer.editor.render import SENTENCE_END_RE
from transcript_viewer.models import Utterance
from transcript_viewer.utils.timefmt import format_clock

_WS_RE = re.compile(r"\s+")
_MARK_TAG_RE = re.compile(r"</?mark[^>]*>", re.I)
_TAG_RE = re.compile(r"<[^>]+>")

PARAGRAPH_MODES = ("utterance", "speaker", "continuous")


@dataclass
class SentenceChunk:
    start: int
    text: str


def strip_highlight_markup(text: str) -> str:
    """Remove markers and any stray markup, decoding entities."""
    if not text:
        return ""
    text = strip_markers(text)
    text = _MARK_TAG_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text)


def build_sentence_chunks(utt: Utterance) -> list[SentenceChunk]:
    chunks: list[SentenceChunk] = []
    buffer: list[str] = []
    start: int | None = None
    for w in utt.words:
        if start is None:
            start = w.start
        buffer.append(w.text)
        if SENTENCE_END_RE.search(w.text.strip()):
            chunks.append(SentenceChunk(start, " ".join(buffer).strip()))
            buffer, start = [], None
    if buffer:
        chunks.append(SentenceChunk(start if start is not None else utt.start, " ".join(buffer).strip()))
    return chunks


def _line_body(utt: Utterance, timestamp_mode: str) -> str:
    body = _WS_RE.sub(" ", strip_highlight_markup(utt.text)).strip()
    if timestamp_mode == "sentence" and utt.words and not utt.is_edited:
        parts = [f"[{format_clock(c.start)}] {c.text}" for c in build_sentence_chunks(utt) if c.text]
        if parts:
            return _WS_RE.sub(" ", " ".join(parts)).strip()
    # edited text has no sentence timing left, so it falls back to the utterance stamp
    if timestamp_mode in ("utterance", "sentence"):
        body = f"[{format_clock(utt.start)}] {body}"
    return _WS_RE.sub(" ", body).strip()


def format_as_text(
    utterances: list[Utterance],
    include_timestamps: bool = False,
    timestamp_mode: str = "utterance",
    include_speakers: bool = True,
    paragraph_mode: str = "utterance",
) -> str:
    if not utterances:
        return "No transcript content available."
    mode = timestamp_mode if include_timestamps else "none"

    lines: list[tuple[str, str]] = []  # (speaker, body)
    for utt in utterances:
        lines.append((utt.speaker, _line_body(utt, mode)))

    def with_speaker(speaker: str, body: str) -> str:
        return f"{speaker}: {body}" if include_speakers and speaker else body

    if paragraph_mode == "continuous":
        return " ".join(with_speaker(s, b) for s, b in lines if b).strip()

    if paragraph_mode == "speaker":
        paragraphs: list[str] = []
        current: str | None = None
        block: list[str] = []

        def flush() -> None:
            body = " ".join(block).strip()
            if not body:
                return
            paragraphs.append(f"{current}:\n{body}" if include_speakers and current else body)

        for speaker, body in lines:
            if speaker != current:
                flush()
                block = []
                current = speaker
            block.append(body)
        flush()
        return "\n\n".join(paragraphs).strip()

    return "\n\n".join(with_speaker(s, b) for s, b in lines).strip()
