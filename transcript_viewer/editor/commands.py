"""Explicit UI commands dispatched through ``EditorSession.dispatch``.

Offsets are character positions in a row's content text (labels excluded).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class BeginSelection:
    row_index: int | None = None


@dataclass(frozen=True)
class EndSelection:
    row_index: int
    start: int
    end: int


@dataclass(frozen=True)
class CancelSelection:
    pass


@dataclass(frozen=True)
class RequestHighlight:
    color: str | None = None
    note: str = ""


@dataclass(frozen=True)
class WordClick:
    row_index: int
    word_index: int


@dataclass(frozen=True)
class TextClick:
    row_index: int
    offset: int


@dataclass(frozen=True)
class PlaybackTick:
    time_ms: int


@dataclass(frozen=True)
class SurfaceInput:
    row_index: int | None = None


Command = Union[
    BeginSelection,
    EndSelection,
    CancelSelection,
    RequestHighlight,
    WordClick,
    TextClick,
    PlaybackTick,
    SurfaceInput,
]


@dataclass
class Selection:
    """A finished selection waiting for a highlight colour."""

    row_index: int
    start: int
    end: int
    text: str
    start_ms: int | None = None
    end_ms: int | None = None

    @property
    def is_time_based(self) -> bool:
        return self.start_ms is not None
