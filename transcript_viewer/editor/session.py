"""Editor session: one open transcript, its surface and every mutable UI state.

The session owns the store, the rendered surface, the search cursor, the
undo stack, the save pipeline and its own asyncio tasks. Components receive
what they need from it; nothing is held in module globals.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from typing import Any, Callable

from bs4 import Tag
from rich.markup import escape

from transcript_viewer.core.store import UtteranceStore, load_transcript
from transcript_viewer.editor import render as renderer
from transcript_viewer.editor.commands import (
    BeginSelection,
    CancelSelection,
    Command,
    EndSelection,
    PlaybackTick,
    RequestHighlight,
    Selection,
    SurfaceInput,
    TextClick,
    WordClick,
)
from transcript_viewer.editor.highlights import HighlightEngine
from transcript_viewer.editor.playback import MediaPlayer, PositionMapper, cycle_speed, seek_clamped, seek_time_for_click, skip
from transcript_viewer.editor.reconcile import (
    Reconciler,
    Reconciliation,
    SaveOutcome,
    SavePipeline,
    SaveResult,
    reconstruct_text,
)
from transcript_viewer.editor.search import SearchEngine, UndoStack, replace_all
from transcript_viewer.errors import (
    LoadError,
    NetworkError,
    PermissionDeniedError,
    SurfaceRangeError,
    ValidationError,
    ViewerError,
)
from transcript_viewer.export.formats import ExportOptions, ExportResult
from transcript_viewer.models import Highlight, TimestampMode, Transcript, Utterance
from transcript_viewer.service.base import TranscriptService
from transcript_viewer.surface.html import parse_fragment, parse_html
from transcript_viewer.surface.nodes import add_class, closest, content_runs, content_text, has_class, normalize, remove_class, unwrap
from transcript_viewer.utils.config import AppConfig
from transcript_viewer.utils.logging import debug, error, info, notify, set_session_id, warn

Notifier = Callable[[str, str], None]
ConfirmHook = Callable[[str], bool]


def _refuse(_message: str) -> bool:
    return False


class EditorSession:
    """Explicit session context for a single open transcript."""

    def __init__(
        self,
        transcript_id: str,
        service: TranscriptService,
        config: AppConfig | None = None,
        notifier: Notifier | None = None,
        player: MediaPlayer | None = None,
        confirm: ConfirmHook | None = None,
    ):
        self.transcript_id = transcript_id
        self.service = service
        self.config = config or AppConfig()
        self.notify = notifier or notify
        self.player = player
        self.confirm = confirm or _refuse
        self.session_id = uuid.uuid4().hex[:8]

        self.store: UtteranceStore | None = None
        self.load_error: ViewerError | None = None
        self.highlights: list[Highlight] = []
        self.surface: Tag = renderer.render_error("Loading transcript...")
        self.translation_surface: Tag | None = None
        self.summary_surface: Tag | None = None
        self.timestamp_mode = TimestampMode(self.config.render.timestamp_mode)

        self.editing = False
        self.highlight_mode = False
        self.dirty = False
        self.selection: Selection | None = None
        self.closed = False

        self.engine = HighlightEngine(self._persist_highlight, self.config.highlights.default_color)
        self.mapper = PositionMapper()
        self.search_engine = SearchEngine(self.config.editor.min_query_length)
        self.undo_stack = UndoStack(self.config.editor.undo_limit)
        self.reconciler = Reconciler()
        self.pipeline = SavePipeline(self._reconcile_for_save, self._persist, lambda: self.dirty, self._on_save_result)

        self._persisted_speaker_map: dict[str, str] = {}
        self._edit_seq = 0
        self._reconciled_seq = 0
        self._autosave_task: asyncio.Task[None] | None = None
        self._search_task: asyncio.Task[int] | None = None
        self._listeners: list[tuple[str, Callable[..., None]]] = []

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @classmethod
    async def open(
        cls,
        transcript_id: str,
        service: TranscriptService,
        config: AppConfig | None = None,
        notifier: Notifier | None = None,
        player: MediaPlayer | None = None,
        confirm: ConfirmHook | None = None,
    ) -> EditorSession:
        session = cls(transcript_id, service, config, notifier, player, confirm)
        set_session_id(session.session_id)
        await session._load()
        if session.store is not None:
            session._attach_player()
            session._start_autosave()
        return session

    async def _load(self) -> None:
        try:
            raw = await self.service.load(self.transcript_id)
            transcript = load_transcript(raw, self.transcript_id)
        except (LoadError, NetworkError, PermissionDeniedError) as e:
            self.load_error = e
            self.surface = renderer.render_error(f"Error loading transcript: {e}")
            error(f"Transcript {self.transcript_id} failed to load: {escape(str(e))}")
            return

        self.store = UtteranceStore(transcript)
        self._mark_persisted()
        try:
            self.highlights = await self.service.list_highlights(self.transcript_id)
        except NetworkError as e:
            self.highlights = []
            self.notify(f"Could not load highlights: {e}", "error")
        self.render()
        info(f"Opened transcript {self.transcript_id} ({len(self.store)} utterances, "
             f"{len(self.highlights)} highlights)")

    async def close(self) -> None:
        """Cancel owned tasks and detach player listeners. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        tasks = [t for t in (self._autosave_task, self._search_task) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._autosave_task = self._search_task = None
        if self.player is not None:
            for event, callback in self._listeners:
                self.player.remove_listener(event, callback)
        self._listeners.clear()
        debug(f"Session {self.session_id} closed")

    async def __aenter__(self) -> EditorSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _attach_player(self) -> None:
        if self.player is None:
            return

        def on_timeupdate(*_args: Any) -> None:
            if self.player is not None:
                self._tick(self.player.current_time_ms)

        self.player.add_listener("timeupdate", on_timeupdate)
        self._listeners.append(("timeupdate", on_timeupdate))

    def _start_autosave(self) -> None:
        interval = self.config.editor.autosave_interval_s
        if interval > 0:
            self._autosave_task = asyncio.ensure_future(self._autosave_loop(interval))

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.autosave_tick()

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def transcript(self) -> Transcript | None:
        return self.store.transcript if self.store is not None else None

    @property
    def can_edit(self) -> bool:
        return self.store is not None and self.store.transcript.can_edit

    def _require_store(self) -> UtteranceStore:
        if self.store is None:
            raise LoadError(str(self.load_error or "Transcript not loaded"))
        return self.store

    def _mark_persisted(self) -> None:
        store = self._require_store()
        self._persisted_speaker_map = dict(store.speaker_map)

    def render(self) -> Tag:
        """Rebuild the surface from canonical state. Search marks and active markers are lost."""
        store = self._require_store()
        self.surface = renderer.render(
            store.transcript,
            store.speaker_map,
            self.highlights,
            self.timestamp_mode,
            self.config.render.speaker_palette,
        )
        self.search_engine.matches = []
        self.mapper.invalidate()
        self._apply_edit_state()
        return self.surface

    def _apply_edit_state(self) -> None:
        if self.editing:
            add_class(self.surface, "editing")
        else:
            remove_class(self.surface, "editing")
        for p in self.surface.find_all("p", class_="utterance-text"):
            p["contenteditable"] = "true" if self.editing else "false"

    def _row_text(self, row_index: int) -> Tag | None:
        for row in renderer.rows(self.surface):
            if row.get("data-index") == str(row_index):
                return renderer.row_text(row)
        return None

    def _sync_surface(self) -> list[int]:
        """Fold unsaved surface edits into the store before a store-level change."""
        store = self._require_store()
        rec = self._reconcile()
        for idx in rec.changed_indices:
            store.set_utterance_text(idx, rec.utterances[idx].text)
        return rec.changed_indices

    # ── Commands ─────────────────────────────────────────────────────────────

    async def dispatch(self, cmd: Command) -> Any:
        if isinstance(cmd, PlaybackTick):
            return self._tick(cmd.time_ms)
        if isinstance(cmd, SurfaceInput):
            if self.editing:
                self.dirty = True
                self._edit_seq += 1
                self.mapper.invalidate()
            return self.dirty
        if isinstance(cmd, (WordClick, TextClick)):
            if self.editing or self.highlight_mode:
                return None
            if isinstance(cmd, WordClick):
                return self._word_click(cmd)
            return self._text_click(cmd)
        if isinstance(cmd, BeginSelection):
            if not self.highlight_mode:
                return False
            self.mapper.selecting = True
            self.selection = None
            return True
        if isinstance(cmd, EndSelection):
            self.mapper.selecting = False
            if not self.highlight_mode:
                return None
            self.selection = self._make_selection(cmd)
            return self.selection
        if isinstance(cmd, CancelSelection):
            self.mapper.selecting = False
            self.selection = None
            return None
        if isinstance(cmd, RequestHighlight):
            return await self._create_highlight(cmd)
        raise TypeError(f"Unknown command: {cmd!r}")

    def _tick(self, time_ms: int) -> Any:
        if self.store is None:
            return None
        return self.mapper.update(self.surface, self.store.utterances, self.highlights, time_ms)

    def _word_click(self, cmd: WordClick) -> int | None:
        p = self._row_text(cmd.row_index)
        if p is None or self.player is None:
            return None
        words = p.find_all("span", class_="word")
        if not 0 <= cmd.word_index < len(words):
            return None
        try:
            start = int(words[cmd.word_index].get("data-start") or "")
        except ValueError:
            return None
        return seek_clamped(self.player, start)

    def _text_click(self, cmd: TextClick) -> int | None:
        store = self._require_store()
        if self.player is None or not 0 <= cmd.row_index < len(store):
            return None
        utt = store.get_utterance(cmd.row_index)
        return seek_clamped(self.player, seek_time_for_click(utt, cmd.offset))

    def selection_offsets(self, row_index: int, text: str, occurrence: int = 0) -> tuple[int, int] | None:
        """Content offsets of the n-th occurrence of ``text`` in a row, as a host selection would give."""
        p = self._row_text(row_index)
        if p is None or not text:
            return None
        content = content_text(p)
        pos = -1
        for _ in range(occurrence + 1):
            pos = content.find(text, pos + 1)
            if pos < 0:
                return None
        return pos, pos + len(text)

    def _make_selection(self, cmd: EndSelection) -> Selection | None:
        p = self._row_text(cmd.row_index)
        if p is None or cmd.end <= cmd.start:
            return None
        content = content_text(p)
        start, end = max(0, cmd.start), min(len(content), cmd.end)
        text = content[start:end].strip()
        if not text:
            return None
        words = _words_in_range(p, start, end)
        if words:
            try:
                start_ms = int(words[0].get("data-start") or "")
                end_ms = int(words[-1].get("data-end") or "")
            except ValueError:
                return Selection(cmd.row_index, start, end, text)
            return Selection(cmd.row_index, start, end, text, start_ms, end_ms)
        return Selection(cmd.row_index, start, end, text)

    # ── Highlights ───────────────────────────────────────────────────────────

    async def _persist_highlight(self, highlight: Highlight) -> str:
        return await self.service.create_highlight(self.transcript_id, highlight)

    def toggle_highlight_mode(self) -> bool:
        self.highlight_mode = not self.highlight_mode
        if not self.highlight_mode:
            self.selection = None
            self.mapper.selecting = False
        return self.highlight_mode

    async def _create_highlight(self, cmd: RequestHighlight) -> Highlight | None:
        sel = self.selection
        if not self.highlight_mode or sel is None:
            return None
        self.selection = None
        if sel.is_time_based:
            return await self._create_time_highlight(sel, cmd)
        return await self._create_text_highlight(sel, cmd)

    async def _create_time_highlight(self, sel: Selection, cmd: RequestHighlight) -> Highlight | None:
        try:
            h = await self.engine.create(sel.text, sel.start_ms, sel.end_ms, cmd.color, cmd.note)
        except ValidationError as e:
            self.notify(str(e), "warning")
            return None
        except ViewerError as e:
            self.notify(f"Error saving highlight: {e}", "error")
            return None
        self.highlights.append(h)
        self.engine.apply(self.surface, self.highlights)
        self.mapper.invalidate()
        self.notify("Highlight saved", "success")
        return h

    async def _create_text_highlight(self, sel: Selection, cmd: RequestHighlight) -> Highlight | None:
        p = self._row_text(sel.row_index)
        if p is None:
            return None
        self.mapper.clear(self.surface)
        try:
            mark = self.engine.wrap_surface_range(p, sel.start, sel.end, cmd.color)
        except SurfaceRangeError as e:
            debug(f"Highlight skipped in row {sel.row_index}: {e}")
            return None
        try:
            h = await self.engine.create(sel.text, None, None, cmd.color, cmd.note)
        except ViewerError as e:
            unwrap(mark)
            level = "warning" if isinstance(e, ValidationError) else "error"
            self.notify(f"Error saving highlight: {e}", level)
            return None
        mark["data-highlight-id"] = h.id
        self.highlights.append(h)
        self._require_store().set_utterance_text(sel.row_index, reconstruct_text(p))
        self.dirty = True
        self.mapper.invalidate()
        self.notify("Highlight saved", "success")
        return h

    async def delete_highlight(self, highlight_id: str) -> bool:
        h = next((x for x in self.highlights if x.id == str(highlight_id)), None)
        if h is None:
            self.notify("Highlight not found", "warning")
            return False
        if not self.confirm("Delete this highlight?"):
            return False
        try:
            await self.service.delete_highlight(h.id)
        except ViewerError as e:
            self.notify(f"Error deleting highlight: {e}", "error")
            return False
        self.highlights.remove(h)
        if self.engine.remove_from_surface(self.surface, h) and self._reconcile().has_changes:
            self.dirty = True
        self.mapper.invalidate()
        self.notify("Highlight deleted", "success")
        return True

    # ── Editing & saving ─────────────────────────────────────────────────────

    async def toggle_edit(self) -> bool:
        """Enter or leave edit mode. Leaving saves with a notification."""
        if not self.editing and not self.can_edit:
            self.notify("You do not have permission to edit this transcript.", "error")
            return False
        self.editing = not self.editing
        self._apply_edit_state()
        if self.editing:
            self.highlight_mode = False
            self.selection = None
            self.mapper.clear(self.surface)
        else:
            await self.save(notify=True)
        return self.editing

    async def save(self, notify: bool = True) -> SaveResult:
        return await self.pipeline.request(notify)

    async def autosave_tick(self) -> SaveResult | None:
        if not self.editing or not self.dirty or self.pipeline.busy:
            return None
        debug("Autosave tick")
        return await self.save(notify=False)

    def apply_edited_html(self, markup: str, row_index: int | None = None) -> list[int]:
        """Replace row content on the surface with HTML edited by a host UI.

        With ``row_index`` the markup is that row's new content, either the
        inner HTML or the whole ``p.utterance-text``. Without it the markup is
        a rendered surface and every row it carries replaces the row with the
        same ``data-index``. Returns the indices of the rows replaced; the next
        save reconciles them like any other surface edit.
        """
        self._require_store()
        if not self.editing:
            raise ValidationError("Enter edit mode before applying edits.")

        updates: list[tuple[int, list]] = []
        if row_index is not None:
            nodes = parse_fragment(markup)
            tags = [n for n in nodes if isinstance(n, Tag)]
            if len(tags) == 1 and tags[0].name == "p" and has_class(tags[0], "utterance-text"):
                nodes = list(tags[0].contents)
            updates.append((row_index, nodes))
        else:
            edited = parse_html(markup)
            for row in renderer.rows(edited):
                try:
                    idx = int(row.get("data-index") or "")
                except ValueError:
                    continue
                updates.append((idx, list(renderer.row_text(row).contents)))

        targets = []
        for idx, nodes in updates:
            p = self._row_text(idx)
            if p is None:
                raise ValidationError(f"No utterance row {idx} on the surface")
            targets.append((idx, p, nodes))

        self.search_engine.clear(self.surface)
        self.mapper.invalidate()
        for _idx, p, nodes in targets:
            p.clear()
            p.extend([n.extract() for n in nodes])
            normalize(p)
        applied = [idx for idx, _p, _nodes in targets]
        if applied:
            self.dirty = True
            self._edit_seq += 1
        debug(f"Applied edited HTML to row(s) {applied}")
        return applied

    def _reconcile(self) -> Reconciliation:
        """Compare the surface with the store. Session-level store changes set ``dirty`` instead."""
        store = self._require_store()
        return self.reconciler.reconcile(
            self.surface,
            store.utterances,
            [u.text for u in store.utterances],
            store.speaker_map,
            self._persisted_speaker_map,
        )

    def _reconcile_for_save(self) -> Reconciliation:
        self._reconciled_seq = self._edit_seq
        return self._reconcile()

    async def _persist(self, rec: Reconciliation, notify: bool) -> None:
        store = self._require_store()
        if not store.transcript.can_edit:
            raise PermissionDeniedError("You do not have permission to edit this transcript.")
        seq = self._reconciled_seq
        speaker_map = dict(store.speaker_map)
        await self.service.save(self.transcript_id, rec.utterances, speaker_map, notify)
        self._persisted_speaker_map = speaker_map
        if seq != self._edit_seq:
            # Edits landed while the request was in flight; the next save picks them up.
            debug("Surface changed during save, session stays dirty")
            return
        store.replace_utterances(copy.deepcopy(rec.utterances))
        self.dirty = False
        if notify:
            self.render()

    def _on_save_result(self, result: SaveResult) -> None:
        if result.outcome == SaveOutcome.SUCCESS:
            if result.notify:
                self.notify(result.message, "success")
            else:
                debug(f"Autosave successful ({len(result.changed_indices)} row(s))")
        elif result.outcome == SaveOutcome.NO_OP:
            if result.notify:
                self.notify(result.message, "info")
        elif result.notify or isinstance(result.error, PermissionDeniedError):
            self.notify(f"Error saving transcript: {result.message}", "error")
        else:
            warn(f"Autosave failed: {escape(result.message)}")

    async def rename_speaker(self, speaker: str, name: str) -> bool:
        store = self._require_store()
        try:
            changed = store.set_speaker_display_name(speaker, name)
        except ValidationError as e:
            renderer.update_speaker_labels(self.surface, speaker, store.display_name(speaker))
            self.notify(str(e), "warning")
            return False
        if not changed:
            return False
        renderer.update_speaker_labels(self.surface, speaker, store.display_name(speaker))
        self.notify(f"Speaker renamed to {store.display_name(speaker)}", "success")
        await self.save(notify=True)
        return True

    async def save_title(self, title: str) -> bool:
        store = self._require_store()
        title = (title or "").strip()
        if not title:
            self.notify("Title cannot be empty", "warning")
            return False
        previous = store.transcript.title
        if title == previous:
            return False
        store.transcript.title = title
        try:
            await self.service.save_title(self.transcript_id, title)
        except ViewerError as e:
            store.transcript.title = previous
            self.notify(f"Error saving title: {e}", "error")
            return False
        self.notify("Title saved", "success")
        return True

    def set_timestamp_mode(self, mode: TimestampMode | str) -> TimestampMode:
        self.timestamp_mode = renderer.set_timestamp_mode(self.surface, mode)
        return self.timestamp_mode

    # ── Search & replace ─────────────────────────────────────────────────────

    def search(self, query: str, match_case: bool = False) -> int:
        self.mapper.clear(self.surface)
        return self.search_engine.search(self.surface, query, match_case)

    def search_debounced(self, query: str, match_case: bool = False) -> asyncio.Task[int]:
        """Run ``search`` after the debounce delay; a newer call supersedes a pending one."""
        if self._search_task is not None and not self._search_task.done():
            self._search_task.cancel()
        delay = self.config.editor.search_debounce_ms / 1000

        async def run() -> int:
            await asyncio.sleep(delay)
            return self.search(query, match_case)

        self._search_task = asyncio.ensure_future(run())
        return self._search_task

    def next_match(self) -> int | None:
        return self.search_engine.next()

    def prev_match(self) -> int | None:
        return self.search_engine.prev()

    def clear_search(self) -> None:
        self.search_engine.clear(self.surface)
        self.search_engine.query = ""

    def replace_all(self, find: str, replacement: str, match_case: bool = False) -> int:
        store = self._require_store()
        if not find:
            self.notify("Please enter text to find.", "warning")
            return 0
        if not self.confirm(f'Replace all occurrences of "{find}" with "{replacement}"?'):
            return 0
        self.clear_search()
        self._sync_surface()
        snapshot = store.snapshot()
        count = replace_all(store.utterances, find, replacement, match_case)
        if not count:
            self.notify(f'"{find}" not found in transcript.', "info")
            return 0
        self.undo_stack.push(snapshot)
        self.dirty = True
        self._edit_seq += 1
        if not self.editing and self.can_edit:
            self.editing = True
        self.render()
        self.notify(f"Replaced {count} occurrence(s).", "success")
        return count

    def undo(self) -> bool:
        store = self._require_store()
        snapshot = self.undo_stack.pop()
        if snapshot is None:
            self.notify("Nothing to undo.", "info")
            return False
        store.restore(snapshot)
        self.dirty = True
        self._edit_seq += 1
        self.render()
        self.notify("Undo applied.", "success")
        return True

    # ── Side views ───────────────────────────────────────────────────────────

    async def translate(self, target_lang: str) -> Tag | None:
        store = self._require_store()
        if not target_lang:
            self.notify("Please select a language.", "warning")
            return self.translation_surface
        try:
            translated = await self.service.translate(self.transcript_id, target_lang, dict(store.speaker_map))
        except ViewerError as e:
            self.notify(f"Translation failed: {e}", "error")
            self.translation_surface = renderer.render_error(f"Translation failed: {e}")
            return self.translation_surface
        self.translation_surface = renderer.render_translation(
            translated, store.utterances, self.config.render.speaker_palette,
        )
        return self.translation_surface

    async def load_summary(self) -> Tag:
        try:
            summary, chapters = await self.service.summary(self.transcript_id)
        except ViewerError as e:
            self.notify(f"Could not load summary: {e}", "error")
            self.summary_surface = renderer.render_error(f"Could not load summary: {e}")
            return self.summary_surface
        self.summary_surface = renderer.render_summary(summary, chapters)
        return self.summary_surface

    def _display_utterances(self, utterances: list[Utterance]) -> list[Utterance]:
        store = self._require_store()
        out = copy.deepcopy(utterances)
        for u in out:
            u.speaker = store.display_name(u.speaker)
        return out

    async def export(self, options: ExportOptions) -> ExportResult:
        """Export canonical text plus any unsaved surface edits, with display names."""
        store = self._require_store()
        options = options.normalized()
        utterances = self._display_utterances(self._reconcile().utterances)
        result = await self.service.export(
            self.transcript_id, options, utterances=utterances, title=store.transcript.title,
        )
        info(f"Exported {result.filename}")
        return result

    def copy_text(self, translation: bool = False) -> str:
        if translation:
            if self.translation_surface is None:
                self.notify("Nothing to copy.", "warning")
                return ""
            text = renderer.build_copy_text(self.translation_surface, include_utterance_timestamps=True)
        else:
            text = renderer.build_copy_text(
                self.surface,
                include_utterance_timestamps=self.timestamp_mode == TimestampMode.UTTERANCE,
                include_sentence_timestamps=self.timestamp_mode == TimestampMode.SENTENCE,
            )
        if not text:
            self.notify("Nothing to copy.", "warning")
        return text

    async def delete_transcript(self) -> bool:
        if not self.confirm("Permanently delete this transcript? This cannot be undone."):
            return False
        try:
            await self.service.delete_transcript(self.transcript_id)
        except ViewerError as e:
            self.notify(f"Error deleting transcript: {e}", "error")
            return False
        self.notify("Transcript deleted", "success")
        await self.close()
        return True

    # ── Playback ─────────────────────────────────────────────────────────────

    def cycle_speed(self) -> float | None:
        if self.player is None:
            return None
        return cycle_speed(self.player, self.config.playback.speeds)

    def skip(self, seconds: float | None = None) -> int | None:
        if self.player is None:
            return None
        return skip(self.player, self.config.playback.skip_seconds if seconds is None else seconds)


def _words_in_range(p: Tag, start: int, end: int) -> list[Tag]:
    """Word units of a row whose content text intersects ``[start, end)``."""
    words: list[Tag] = []
    for t, off in content_runs(p):
        if off >= end or off + len(t) <= start or not t.strip():
            continue
        span = closest(t, "word")
        if span is not None and span.name == "span" and not any(w is span for w in words):
            words.append(span)
    return words
