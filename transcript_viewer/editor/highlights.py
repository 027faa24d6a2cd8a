"""Highlight engine: time-based marks on word units, marker-based marks in edited text."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from bs4 import Tag

from transcript_viewer.core import markers
from transcript_viewer.core.markers import TextPart, normalize_color
from transcript_viewer.errors import SurfaceRangeError, ValidationError
from transcript_viewer.models import Highlight, Utterance
from transcript_viewer.surface.nodes import css_value, has_class, new_tag, unwrap, wrap_siblings, wrap_text_range
from transcript_viewer.utils.config import DEFAULT_HIGHLIGHT_COLOR
from transcript_viewer.utils.logging import debug, warn

WORD_MARK_CLASS = "word-based-highlight"

PersistCallback = Callable[[Highlight], Awaitable[str]]


@dataclass
class Segment:
    """A coloured span over some ordered unit (characters, words, ms)."""

    start: int
    end: int
    color: str
    text: str = ""


def _word_start(el: Tag) -> int | None:
    try:
        return int(el.get("data-start") or "")
    except ValueError:
        return None


def highlight_for_time(time_ms: int, highlights: list[Highlight]) -> Highlight | None:
    """First time-based highlight whose range contains ``time_ms``."""
    for h in highlights:
        if h.covers(time_ms):
            return h
    return None


def strip_word_marks(surface: Tag) -> int:
    marks = surface.find_all("mark", class_=WORD_MARK_CLASS)
    for m in marks:
        unwrap(m)
    return len(marks)


def _word_mark(h: Highlight) -> Tag:
    return new_tag("mark", {
        "style": f"background-color: {normalize_color(h.color)}",
        "data-highlight-id": h.id,
    }, cls=WORD_MARK_CLASS)


def apply_time_highlights(surface: Tag, highlights: list[Highlight]) -> int:
    """Wrap runs of word units covered by the same time-based highlight.

    Existing word marks are removed first, so repeated calls converge on the
    same tree. Returns the number of marks created.
    """
    strip_word_marks(surface)
    timed = [h for h in highlights if h.is_time_based]
    if not timed:
        return 0

    created = 0
    for p in surface.find_all("p", class_="utterance-text"):
        words = p.find_all("span", class_="word")
        i = 0
        while i < len(words):
            start = _word_start(words[i])
            current = highlight_for_time(start, timed) if start is not None else None
            if current is None:
                i += 1
                continue
            j = i + 1
            while j < len(words):
                nxt_start = _word_start(words[j])
                nxt = highlight_for_time(nxt_start, timed) if nxt_start is not None else None
                if nxt is None or nxt.id != current.id:
                    break
                j += 1
            try:
                wrap_siblings(words[i], words[j - 1], _word_mark(current))
                created += 1
            except SurfaceRangeError as e:
                warn(f"Could not wrap highlight {current.id}: {e}")
            i = j
    return created


def merge_adjacent(segments: list[Segment]) -> list[Segment]:
    """Merge same-coloured segments that overlap or sit at most one unit apart."""
    if len(segments) <= 1:
        return list(segments)
    ordered = sorted(segments, key=lambda s: s.start)
    merged: list[Segment] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if current.end >= nxt.start - 1 and current.color == nxt.color:
            current = Segment(
                start=current.start,
                end=max(current.end, nxt.end),
                color=current.color,
                text=f"{current.text} {nxt.text}".strip(),
            )
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def highlighted_segments(utt: Utterance, highlights: list[Highlight]) -> list[TextPart]:
    """Plain/highlighted runs of one utterance, for exporters.

    Edited or word-less utterances use their inline markers. Original ones
    colour each word fully inside a time-based highlight.
    """
    if utt.is_edited or not utt.words:
        return [p for p in markers.split_markers(utt.text) if p.text]

    timed = [h for h in highlights if h.is_time_based]
    parts: list[TextPart] = []
    for w in utt.words:
        color = None
        for h in timed:
            if w.start >= h.start_time and w.end <= h.end_time:  # type: ignore[operator]
                color = h.color
                break
        if parts and parts[-1].color == color:
            parts[-1].text += " " + w.text
        else:
            parts.append(TextPart(w.text, color))
    return parts


class HighlightEngine:
    """Creates, applies and removes highlights on a rendered surface."""

    def __init__(self, persist: PersistCallback | None = None, default_color: str = DEFAULT_HIGHLIGHT_COLOR):
        self._persist = persist
        self.default_color = default_color

    def apply(self, surface: Tag, highlights: list[Highlight]) -> int:
        return apply_time_highlights(surface, highlights)

    async def create(
        self,
        selection_text: str,
        start_ms: int | None,
        end_ms: int | None,
        color: str | None = None,
        note: str = "",
    ) -> Highlight:
        text = (selection_text or "").strip()
        if not text:
            raise ValidationError("Highlight text cannot be empty")
        if (start_ms is None) != (end_ms is None):
            raise ValidationError("Highlight needs both start and end time, or neither")
        if start_ms is not None and end_ms is not None and start_ms > end_ms:
            raise ValidationError(f"Highlight range is inverted ({start_ms} > {end_ms})")

        h = Highlight(
            id="",
            text=text,
            color=normalize_color(color, self.default_color),
            start_time=start_ms,
            end_time=end_ms,
            note=note or "",
        )
        h.id = str(await self._persist(h)) if self._persist else uuid.uuid4().hex[:8]
        debug(f"Highlight {h.id} created ({'time' if h.is_time_based else 'text'}-based)")
        return h

    def wrap_surface_range(
        self,
        text_el: Tag,
        start: int,
        end: int,
        color: str | None = None,
        highlight_id: str | None = None,
    ) -> Tag:
        """Wrap a content range of one edited row in a highlight mark."""
        attrs = {"style": f"background-color: {normalize_color(color, self.default_color)};"}
        if highlight_id:
            attrs["data-highlight-id"] = highlight_id
        return wrap_text_range(text_el, start, end, new_tag("mark", attrs))

    @staticmethod
    def wrap_text_range(text: str, start: int, end: int, color: str, highlight_id: str | None = None) -> str:
        return markers.wrap_visible_range(text, start, end, color, highlight_id)

    @staticmethod
    def remove_marker(text: str, highlight: Highlight) -> tuple[str, int]:
        return markers.remove_markers(text, highlight.id, highlight.color, highlight.text)

    def remove_from_surface(self, surface: Tag, highlight: Highlight) -> int:
        """Unwrap every mark belonging to ``highlight``, keeping the inner text.

        Marks carrying the id are always removed. Id-less marks in edited
        rows match on colour plus exact inner text.
        """
        removed = 0
        target = normalize_color(highlight.color).lower()
        for mark in surface.find_all("mark"):
            if has_class(mark, "search-highlight"):
                continue
            mid = mark.get("data-highlight-id")
            if mid is not None:
                hit = mid == highlight.id
            else:
                color = css_value(mark, "background-color")
                hit = (
                    normalize_color(color).lower() == target
                    and mark.get_text().strip() == highlight.text
                )
            if hit:
                unwrap(mark)
                removed += 1
        return removed
