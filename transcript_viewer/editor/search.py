"""Search and replace over the rendered transcript, with a bounded undo stack."""

from __future__ import annotations

import copy
import re
from collections import deque
from dataclasses import dataclass

from bs4 import Tag

from transcript_viewer.core.markers import join_parts, split_markers
from transcript_viewer.errors import ValidationError
from transcript_viewer.models import Utterance
from transcript_viewer.surface.nodes import add_class, closest, content_runs, new_tag, remove_class, unwrap, wrap_text_range
from transcript_viewer.utils.logging import debug

SEARCH_MARK_CLASS = "search-highlight"
CURRENT_CLASS = "current"
MIN_QUERY_LENGTH = 2


def _pattern(query: str, match_case: bool) -> re.Pattern[str]:
    return re.compile(re.escape(query), 0 if match_case else re.IGNORECASE)


# ── Viewport ─────────────────────────────────────────────────────────────────


@dataclass
class Viewport:
    scroll_top: float
    height: float
    sticky_offset: float = 0.0
    margin: float = 100.0


def scroll_target(row_top: float, viewport: Viewport) -> float | None:
    """Scroll position that brings a row into view, or None when it is already visible."""
    top_edge = viewport.scroll_top + viewport.sticky_offset
    bottom_edge = viewport.scroll_top + viewport.height - viewport.margin
    if row_top < top_edge or row_top > bottom_edge:
        return row_top - viewport.sticky_offset - viewport.margin
    return None


# ── Search ───────────────────────────────────────────────────────────────────


class SearchEngine:
    """Wraps matches on the surface and keeps a cyclic cursor over them.

    A match that crosses element boundaries is wrapped piecewise; all pieces
    share one ``data-match`` index.
    """

    def __init__(self, min_query_length: int = MIN_QUERY_LENGTH):
        self.min_query_length = min_query_length
        self.query = ""
        self.match_case = False
        self.matches: list[list[Tag]] = []
        self.current = 0

    def __len__(self) -> int:
        return len(self.matches)

    def search(self, surface: Tag, query: str, match_case: bool = False) -> int:
        self.clear(surface)
        self.query = query or ""
        self.match_case = match_case
        if len(self.query.strip()) < self.min_query_length:
            return 0

        pattern = _pattern(self.query, match_case)
        for p in surface.find_all("p", class_="utterance-text"):
            text = "".join(t for t, _ in content_runs(p))
            for m in pattern.finditer(text):
                if m.end() > m.start():
                    self.matches.append(self._wrap_match(p, m.start(), m.end(), len(self.matches)))
        debug(f"Search {self.query!r}: {len(self.matches)} match(es)")
        if self.matches:
            self._set_current(0)
        return len(self.matches)

    def _wrap_match(self, p: Tag, start: int, end: int, index: int) -> list[Tag]:
        marks: list[Tag] = []
        pos = start
        while pos < end:
            node, off = next((t, o) for t, o in content_runs(p) if o <= pos < o + len(t))
            piece_end = min(end, off + len(node))
            mark = new_tag("mark", {"data-match": index}, cls=SEARCH_MARK_CLASS)
            marks.append(wrap_text_range(p, pos, piece_end, mark, forbid=None))
            pos = piece_end
        return marks

    def _set_current(self, index: int) -> None:
        for group in self.matches:
            for m in group:
                remove_class(m, CURRENT_CLASS)
        self.current = index
        for m in self.matches[index]:
            add_class(m, CURRENT_CLASS)

    def next(self) -> int | None:
        if not self.matches:
            return None
        self._set_current((self.current + 1) % len(self.matches))
        return self.current

    def prev(self) -> int | None:
        if not self.matches:
            return None
        self._set_current((self.current - 1) % len(self.matches))
        return self.current

    def current_row_index(self) -> int | None:
        if not self.matches:
            return None
        row = closest(self.matches[self.current][0], "utterance-row")
        if row is None:
            return None
        return int(row.get("data-index") or 0)

    def clear(self, surface: Tag) -> None:
        for mark in surface.find_all("mark", class_=SEARCH_MARK_CLASS):
            if mark.parent is not None:
                unwrap(mark)
        self.matches = []
        self.current = 0

    def counter_text(self) -> str:
        if self.matches:
            return f"{self.current + 1} / {len(self.matches)}"
        if len(self.query.strip()) >= self.min_query_length:
            return "No results"
        return ""


# ── Replace ──────────────────────────────────────────────────────────────────


def replace_all(
    utterances: list[Utterance],
    find: str,
    replacement: str,
    match_case: bool = False,
) -> int:
    """Replace every occurrence in canonical text. Returns the number of matches replaced.

    Marker syntax is never touched, only the text it wraps and the text
    around it.
    """
    if not find:
        raise ValidationError("Please enter text to find.")
    pattern = _pattern(find, match_case)
    total = 0
    for utt in utterances:
        parts = split_markers(utt.text)
        count = 0
        for part in parts:
            part.text, n = pattern.subn(lambda _m: replacement, part.text)
            count += n
        if count:
            utt.text = join_parts(parts)
            utt.is_edited = True
            total += count
    return total


class UndoStack:
    """Bounded LIFO of utterance snapshots; the oldest entry drops first."""

    def __init__(self, max_entries: int = 20):
        self._entries: deque[list[Utterance]] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def push(self, utterances: list[Utterance]) -> None:
        self._entries.append(copy.deepcopy(utterances))

    def pop(self) -> list[Utterance] | None:
        if not self._entries:
            return None
        return self._entries.pop()

    def clear(self) -> None:
        self._entries.clear()
