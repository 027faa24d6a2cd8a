"""SRT / WebVTT exporters built from word timing."""

from __future__ import annotations

from dataclasses import dataclass

from transcript_viewer.core.markers import strip_markers
from transcript_viewer.editor.render import SENTENCE_END_RE
from transcript_viewer.models import Utterance, Word
from transcript_viewer.utils.timefmt import format_srt_time, format_vtt_time

MAX_CUE_CHARS = 70
LINE_BREAK_CHARS = 40
NO_TIMING_TEXT = "[No timing information available]"


@dataclass
class Cue:
    start: int
    end: int
    text: str


def _flush(words: list[Word]) -> Cue:
    texts = [w.text for w in words]
    text = " ".join(texts)
    if len(text) > LINE_BREAK_CHARS and len(texts) > 1:
        mid = len(texts) // 2
        text = " ".join(texts[:mid]) + "\n" + " ".join(texts[mid:])
    return Cue(words[0].start, words[-1].end, text)


def build_cues(utterances: list[Utterance]) -> list[Cue]:
    """Cut cues at sentence ends or once a cue passes the length limit.

    Utterances without word timing become one cue each.
    """
    cues: list[Cue] = []
    for utt in utterances:
        if not utt.words:
            text = strip_markers(utt.text).strip()
            if text and utt.end > utt.start:
                cues.append(Cue(utt.start, utt.end, text))
            continue
        pending: list[Word] = []
        for w in utt.words:
            pending.append(w)
            if len(" ".join(p.text for p in pending)) > MAX_CUE_CHARS or SENTENCE_END_RE.search(w.text):
                cues.append(_flush(pending))
                pending = []
        if pending:
            cues.append(Cue(pending[0].start, pending[-1].end, " ".join(p.text for p in pending)))
    return cues


def format_srt(utterances: list[Utterance]) -> str:
    cues = build_cues(utterances)
    if not cues:
        return f"1\n00:00:00,000 --> 00:00:05,000\n{NO_TIMING_TEXT}"
    lines: list[str] = []
    index = 1
    for cue in cues:
        text = cue.text.strip()
        if not text:
            continue
        lines += [str(index), f"{format_srt_time(cue.start)} --> {format_srt_time(cue.end)}", text, ""]
        index += 1
    return "\n".join(lines) + "\n"


def format_vtt(utterances: list[Utterance]) -> str:
    cues = build_cues(utterances)
    if not cues:
        return f"WEBVTT\n\n00:00:00.000 --> 00:00:05.000\n{NO_TIMING_TEXT}"
    lines = ["WEBVTT", ""]
    for cue in cues:
        text = cue.text.strip()
        if text:
            lines += [f"{format_vtt_time(cue.start)} --> {format_vtt_time(cue.end)}", text, ""]
    return "\n".join(lines) + "\n"
