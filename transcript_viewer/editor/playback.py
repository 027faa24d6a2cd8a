"""Playback position mapper: active utterance/word for a playback time, and click-to-seek."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from bs4 import Tag

from transcript_viewer.editor.render import row_text, rows
from transcript_viewer.errors import SurfaceRangeError
from transcript_viewer.models import Highlight, Utterance, Word
from transcript_viewer.surface.nodes import add_class, content_text, has_class, new_tag, remove_class, unwrap, wrap_text_range
from transcript_viewer.utils.logging import debug

ACTIVE_ROW_CLASS = "active"
ACTIVE_WORD_CLASS = "active-word"

_TOKEN_RE = re.compile(r"\S+")


# ── Media element boundary ───────────────────────────────────────────────────


class MediaPlayer(ABC):
    """Opaque playback resource. Times are milliseconds.

    Events: ``timeupdate``, ``play``, ``pause``, ``ended``.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., None]]] = defaultdict(list)

    @property
    @abstractmethod
    def current_time_ms(self) -> int: ...

    @property
    @abstractmethod
    def duration_ms(self) -> int: ...

    @property
    @abstractmethod
    def paused(self) -> bool: ...

    @property
    @abstractmethod
    def playback_rate(self) -> float: ...

    @playback_rate.setter
    @abstractmethod
    def playback_rate(self, rate: float) -> None: ...

    @abstractmethod
    def play(self) -> None: ...

    @abstractmethod
    def pause(self) -> None: ...

    @abstractmethod
    def seek(self, ms: int) -> None: ...

    def add_listener(self, event: str, callback: Callable[..., None]) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def emit(self, event: str, *args: object) -> None:
        for cb in list(self._listeners.get(event, [])):
            cb(*args)


def seek_clamped(player: MediaPlayer, ms: int) -> int:
    target = max(0, int(ms))
    if player.duration_ms:
        target = min(player.duration_ms, target)
    player.seek(target)
    return target


def skip(player: MediaPlayer, seconds: float) -> int:
    return seek_clamped(player, player.current_time_ms + int(seconds * 1000))


def cycle_speed(player: MediaPlayer, speeds: list[float]) -> float:
    """Advance to the next playback rate; unknown rates restart the cycle."""
    try:
        nxt = (speeds.index(player.playback_rate) + 1) % len(speeds)
    except ValueError:
        nxt = 0
    player.playback_rate = speeds[nxt]
    return speeds[nxt]


# ── Alignment ────────────────────────────────────────────────────────────────


class AlignmentTable:
    """Maps word ordinals to character ranges of a row's visible text.

    Built once per distinct text and reused across playback ticks.
    """

    def __init__(self, text: str, ranges: list[tuple[int, int]]):
        self.text = text
        self.ranges = ranges

    @classmethod
    def build(cls, text: str) -> AlignmentTable:
        return cls(text, [(m.start(), m.end()) for m in _TOKEN_RE.finditer(text)])

    def __len__(self) -> int:
        return len(self.ranges)

    def span(self, ordinal: int) -> tuple[int, int] | None:
        if 0 <= ordinal < len(self.ranges):
            return self.ranges[ordinal]
        return None

    def ordinal_at(self, offset: int) -> int | None:
        for i, (start, end) in enumerate(self.ranges):
            if start <= offset <= end:
                return i
        return None


# ── Click-to-seek ────────────────────────────────────────────────────────────


def word_for_offset(utt: Utterance, offset: int) -> Word | None:
    """Original word under a character offset of edited text.

    Words are assumed to sit one space apart. A click between words falls
    back to the last word before it.
    """
    running = 0
    for w in utt.words:
        if running <= offset <= running + len(w.text):
            return w
        running += len(w.text) + 1
    target = None
    running = 0
    for w in utt.words:
        if running >= offset:
            break
        target = w
        running += len(w.text) + 1
    return target


def seek_time_for_click(utt: Utterance, offset: int) -> int:
    if not utt.words:
        return utt.start
    w = word_for_offset(utt, offset)
    return w.start if w is not None else utt.start


# ── Position mapper ──────────────────────────────────────────────────────────


@dataclass
class Location:
    utterance_index: int | None
    word_index: int | None = None


def _int_attr(el: Tag, name: str) -> int | None:
    try:
        return int(el.get(name) or "")
    except ValueError:
        return None


class PositionMapper:
    """Marks at most one active row and one active word on the surface."""

    def __init__(self) -> None:
        self.selecting = False
        self._tables: dict[int, AlignmentTable] = {}
        self._wrapper: Tag | None = None

    def _drop_wrapper(self) -> None:
        if self._wrapper is not None and self._wrapper.parent is not None:
            unwrap(self._wrapper)
        self._wrapper = None

    def invalidate(self) -> None:
        """Forget cached alignments and take down the active-word wrapper after a re-render or edit."""
        self._tables.clear()
        self._drop_wrapper()

    def alignment(self, index: int, text: str) -> AlignmentTable:
        table = self._tables.get(index)
        if table is None or table.text != text:
            table = AlignmentTable.build(text)
            self._tables[index] = table
        return table

    def locate(self, surface: Tag, utterances: list[Utterance], time_ms: int) -> Location:
        for row in rows(surface):
            start, end = _int_attr(row, "data-start"), _int_attr(row, "data-end")
            if start is None or end is None or not start <= time_ms <= end:
                continue
            idx = _int_attr(row, "data-index")
            words = row.find_all("span", class_="word")
            if words:
                for j, w in enumerate(words):
                    ws, we = _int_attr(w, "data-start"), _int_attr(w, "data-end")
                    if ws is not None and we is not None and ws <= time_ms <= we:
                        return Location(idx, j)
                return Location(idx, None)
            if idx is not None and 0 <= idx < len(utterances):
                for j, w in enumerate(utterances[idx].words):
                    if w.contains(time_ms):
                        return Location(idx, j)
            return Location(idx, None)
        return Location(None, None)

    def clear(self, surface: Tag) -> None:
        self._drop_wrapper()
        # Wrappers left over from an earlier mapper or an edited copy of the surface.
        for el in surface.find_all("span", class_=ACTIVE_WORD_CLASS):
            if has_class(el, "word"):
                remove_class(el, ACTIVE_WORD_CLASS)
            else:
                unwrap(el)
        for el in surface.find_all(class_=ACTIVE_ROW_CLASS):
            remove_class(el, ACTIVE_ROW_CLASS)

    def update(
        self,
        surface: Tag,
        utterances: list[Utterance],
        highlights: list[Highlight],
        time_ms: int,
    ) -> Location | None:
        """Move the active markers to ``time_ms``. No-op while a selection is in progress."""
        if self.selecting:
            return None
        self.clear(surface)
        loc = self.locate(surface, utterances, time_ms)
        if loc.utterance_index is None:
            return loc

        row = next((r for r in rows(surface) if _int_attr(r, "data-index") == loc.utterance_index), None)
        if row is None:
            return loc
        add_class(row, ACTIVE_ROW_CLASS)
        if loc.word_index is None:
            return loc

        words = row.find_all("span", class_="word")
        if words:
            add_class(words[loc.word_index], ACTIVE_WORD_CLASS)
            return loc

        word = utterances[loc.utterance_index].words[loc.word_index]
        if any(h.is_time_based and word.start >= h.start_time and word.end <= h.end_time  # type: ignore[operator]
               for h in highlights):
            return loc

        p = row_text(row)
        table = self.alignment(loc.utterance_index, content_text(p))
        span = table.span(loc.word_index)
        if span is None:
            return loc
        try:
            self._wrapper = wrap_text_range(p, span[0], span[1], new_tag("span", cls=ACTIVE_WORD_CLASS), forbid=None)
        except SurfaceRangeError as e:
            debug(f"Active word not wrapped in row {loc.utterance_index}: {e}")
        return loc
