"""Edit reconciler: derive canonical utterance text back from the edited surface.

The surface is first flattened into typed segments, so the text rules do not
depend on how a particular host represents rich text:

* ``PlainText``       text contributed as-is
* ``HighlightRun``    text that becomes a ``[[HIGHLIGHT ...]]`` marker
* ``TimestampLabel``  label content, always dropped

Rows that still contain word units only convert the marks the highlight
engine placed on them. Rows without word units convert any highlight-style
wrapper, which covers marks the host created while editing.
"""

from __future__ import annotations

import asyncio
import copy
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Union

from bs4 import Comment, NavigableString, Tag

from transcript_viewer.core.markers import format_marker, normalize_color
from transcript_viewer.editor.highlights import WORD_MARK_CLASS
from transcript_viewer.editor.render import row_text, rows
from transcript_viewer.errors import ViewerError
from transcript_viewer.models import Utterance
from transcript_viewer.surface.nodes import css_value, has_class, is_non_content
from transcript_viewer.utils.logging import debug

_WS_RE = re.compile(r"\s+")

LABEL_CLASSES = ("sentence-timestamp", "utterance-timestamp")
# Wrappers added by search and playback. They never carry content meaning.
TRANSIENT_CLASSES = ("search-highlight", "active-word")


# ── Segment model ────────────────────────────────────────────────────────────


@dataclass
class PlainText:
    text: str


@dataclass
class HighlightRun:
    text: str
    color: str
    highlight_id: str | None = None


@dataclass
class TimestampLabel:
    text: str


Segment = Union[PlainText, HighlightRun, TimestampLabel]


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _is_label(el: Tag) -> bool:
    return is_non_content(el) or any(has_class(el, c) for c in LABEL_CLASSES)


def _is_transient(el: Tag) -> bool:
    return any(has_class(el, c) for c in TRANSIENT_CLASSES)


def _is_convertible(el: Tag, word_mode: bool) -> bool:
    if _is_transient(el):
        return False
    if word_mode:
        return el.name == "mark" and has_class(el, WORD_MARK_CLASS)
    return el.name == "mark" or css_value(el, "background-color") is not None


def _inner_text(el: Tag) -> str:
    parts: list[str] = []
    for c in el.children:
        if isinstance(c, Comment):
            continue
        if isinstance(c, NavigableString):
            parts.append(str(c))
        elif c.name == "br":
            parts.append(" ")
        elif not _is_label(c):
            parts.append(_inner_text(c))
    return "".join(parts)


def extract_segments(text_el: Tag) -> list[Segment]:
    """Flatten one row's text element into typed segments, in document order."""
    word_mode = text_el.find("span", class_="word") is not None
    segments: list[Segment] = []

    def walk(el: Tag) -> None:
        for c in el.children:
            if isinstance(c, Comment):
                continue
            if isinstance(c, NavigableString):
                segments.append(PlainText(str(c)))
            elif c.name == "br":
                segments.append(PlainText(" "))
            elif _is_label(c):
                segments.append(TimestampLabel(c.get_text()))
            elif _is_convertible(c, word_mode):
                hid = None if has_class(c, WORD_MARK_CLASS) else c.get("data-highlight-id")
                segments.append(HighlightRun(
                    _inner_text(c),
                    normalize_color(css_value(c, "background-color")),
                    hid or None,
                ))
            else:
                walk(c)

    walk(text_el)
    return segments


def segments_to_text(segments: list[Segment]) -> str:
    out: list[str] = []
    for seg in segments:
        if isinstance(seg, PlainText):
            out.append(seg.text)
        elif isinstance(seg, HighlightRun):
            if seg.text.strip():
                out.append(format_marker(seg.text, seg.color, seg.highlight_id))
            else:
                out.append(seg.text)
    return normalize_whitespace("".join(out))


def reconstruct_text(text_el: Tag) -> str:
    return segments_to_text(extract_segments(text_el))


@dataclass
class RowResult:
    text: str
    changed: bool


def reconcile_row(text_el: Tag, baseline_text: str) -> RowResult:
    text = reconstruct_text(text_el)
    return RowResult(text, text != baseline_text)


# ── Whole-transcript reconciliation ──────────────────────────────────────────


@dataclass
class Reconciliation:
    utterances: list[Utterance]
    changed_indices: list[int] = field(default_factory=list)
    speaker_map_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_indices) or self.speaker_map_changed


class Reconciler:
    """Runs row reconciliation for every utterance on the surface."""

    def reconcile(
        self,
        surface: Tag,
        utterances: list[Utterance],
        baseline_texts: list[str],
        speaker_map: dict[str, str],
        persisted_speaker_map: dict[str, str],
    ) -> Reconciliation:
        result = copy.deepcopy(utterances)
        changed: list[int] = []
        for row in rows(surface):
            try:
                idx = int(row.get("data-index") or "")
            except ValueError:
                continue
            if not 0 <= idx < len(result) or idx >= len(baseline_texts):
                debug(f"Row {idx} has no utterance, skipped")
                continue
            row_result = reconcile_row(row_text(row), baseline_texts[idx])
            if row_result.changed:
                result[idx].text = row_result.text
                result[idx].is_edited = True
                changed.append(idx)
        return Reconciliation(
            utterances=result,
            changed_indices=changed,
            speaker_map_changed=dict(speaker_map) != dict(persisted_speaker_map),
        )


# ── Save pipeline ────────────────────────────────────────────────────────────


class SaveState(str, Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"


class SaveOutcome(str, Enum):
    NO_OP = "no_op"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class SaveResult:
    outcome: SaveOutcome
    notify: bool
    changed_indices: list[int] = field(default_factory=list)
    error: ViewerError | None = None

    @property
    def message(self) -> str:
        if self.outcome == SaveOutcome.NO_OP:
            return "No changes to save."
        if self.outcome == SaveOutcome.SUCCESS:
            return "Transcript saved!"
        return str(self.error) or "Save failed"


class SavePipeline:
    """Serialises save requests: one in flight, the rest queued FIFO.

    Each queued request keeps its own ``notify`` flag and resolves exactly
    once, whether the save before it succeeded or failed.
    """

    def __init__(
        self,
        reconcile: Callable[[], Reconciliation],
        persist: Callable[[Reconciliation, bool], Awaitable[None]],
        is_dirty: Callable[[], bool],
        on_result: Callable[[SaveResult], None] | None = None,
    ):
        self._reconcile = reconcile
        self._persist = persist
        self._is_dirty = is_dirty
        self._on_result = on_result
        self._queue: deque[tuple[bool, asyncio.Future[SaveResult]]] = deque()
        self._worker: asyncio.Task[None] | None = None
        self.state = SaveState.IDLE

    @property
    def busy(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def request(self, notify: bool = True) -> SaveResult:
        fut: asyncio.Future[SaveResult] = asyncio.get_running_loop().create_future()
        self._queue.append((notify, fut))
        if self.busy:
            debug(f"Save queued (notify={notify}, pending={len(self._queue)})")
        else:
            self._worker = asyncio.ensure_future(self._drain())
        return await fut

    async def wait_idle(self) -> None:
        if self._worker is not None:
            await asyncio.shield(self._worker)

    async def _drain(self) -> None:
        try:
            while self._queue:
                notify, fut = self._queue.popleft()
                try:
                    result = await self._execute(notify)
                except Exception as e:
                    if not fut.done():
                        fut.set_exception(e)
                    continue
                if not fut.done():
                    fut.set_result(result)
        finally:
            self.state = SaveState.IDLE

    async def _execute(self, notify: bool) -> SaveResult:
        self.state = SaveState.RECONCILING
        rec = self._reconcile()
        if not rec.has_changes and not self._is_dirty():
            result = SaveResult(SaveOutcome.NO_OP, notify)
        else:
            self.state = SaveState.PERSISTING
            try:
                await self._persist(rec, notify)
            except ViewerError as e:
                result = SaveResult(SaveOutcome.FAILURE, notify, rec.changed_indices, error=e)
            else:
                result = SaveResult(SaveOutcome.SUCCESS, notify, rec.changed_indices)
        self.state = SaveState.IDLE
        if self._on_result is not None:
            self._on_result(result)
        return result
