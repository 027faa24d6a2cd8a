"""End-to-end tests for EditorSession against the file-backed service."""

from __future__ import annotations

import asyncio

import pytest

from transcript_viewer.editor.commands import (
    BeginSelection,
    CancelSelection,
    EndSelection,
    PlaybackTick,
    RequestHighlight,
    SurfaceInput,
    TextClick,
    WordClick,
)
from transcript_viewer.editor.reconcile import SaveOutcome
from transcript_viewer.editor.render import row_text, rows
from transcript_viewer.errors import LoadError, NetworkError, PermissionDeniedError, ValidationError
from transcript_viewer.export.formats import ExportOptions
from transcript_viewer.service.local import LocalTranscriptService
from transcript_viewer.surface.html import parse_html
from transcript_viewer.surface.nodes import css_value, has_class


async def _stored(service, transcript_id="t1"):
    return await service.load(transcript_id)


def _labels(session):
    return [el.get_text() for el in session.surface.find_all("span", class_="speaker-label")]


async def _select(session, row, text):
    await session.dispatch(BeginSelection(row))
    start, end = session.selection_offsets(row, text)
    return await session.dispatch(EndSelection(row, start, end))


# ── Lifecycle ────────────────────────────────────────────────────────────────

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open_renders(self, open_session, player):
        session = await open_session()
        assert session.load_error is None
        assert len(rows(session.surface)) == 3
        assert session.transcript.title == "Weekly sync"
        assert player.listener_count("timeupdate") == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_load_error_shows_error_surface(self, open_session, player):
        session = await open_session("missing")
        assert isinstance(session.load_error, LoadError)
        assert session.store is None
        message = session.surface.find("div", class_="error-message").get_text()
        assert message.startswith("Error loading transcript:")
        assert player.listener_count() == 0
        with pytest.raises(LoadError):
            session.render()

    @pytest.mark.asyncio
    async def test_highlight_list_failure_is_not_fatal(self, tmp_path, sample_raw, open_session, notes):
        class NoHighlights(LocalTranscriptService):
            async def list_highlights(self, transcript_id):
                raise NetworkError("highlights offline")

        svc = NoHighlights(tmp_path / "other")
        svc.put_transcript(sample_raw, "t1")
        session = await open_session(svc=svc)
        assert session.store is not None
        assert ("Could not load highlights: highlights offline", "error") in notes
        await session.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, open_session, player):
        session = await open_session()
        session.search_debounced("um")
        await session.close()
        await session.close()
        assert session.closed
        assert player.listener_count() == 0

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, open_session, player):
        async with await open_session() as session:
            assert player.listener_count("timeupdate") == 1
        assert session.closed
        assert player.listener_count() == 0

    @pytest.mark.asyncio
    async def test_autosave_task_started_and_cancelled(self, service, player):
        from transcript_viewer.editor.session import EditorSession
        from transcript_viewer.utils.config import AppConfig, merge_cli_overrides

        cfg = merge_cli_overrides(AppConfig(), {"editor.autosave_interval_s": 60})
        session = await EditorSession.open("t1", service, cfg, notifier=lambda *_: None, player=player)
        task = session._autosave_task
        assert task is not None and not task.done()
        await session.close()
        assert task.cancelled()


# ── Playback & clicks ────────────────────────────────────────────────────────

class TestPlayback:
    @pytest.mark.asyncio
    async def test_timeupdate_moves_active_word(self, open_session, player):
        session = await open_session()
        player.tick(600)
        active = session.surface.find_all(class_="active-word")
        assert [el.get_text() for el in active] == ["world"]
        await session.dispatch(PlaybackTick(1350))
        active = session.surface.find_all(class_="active-word")
        assert [el.get_text() for el in active] == ["this"]
        await session.close()

    @pytest.mark.asyncio
    async def test_word_and_text_click_seek(self, open_session, player):
        session = await open_session()
        assert await session.dispatch(WordClick(0, 1)) == 500
        assert player.current_time_ms == 500
        assert await session.dispatch(TextClick(2, 11)) == 4000
        assert player.current_time_ms == 4000
        await session.close()

    @pytest.mark.asyncio
    async def test_clicks_ignored_while_editing_or_highlighting(self, open_session, player):
        session = await open_session()
        await session.toggle_edit()
        assert await session.dispatch(WordClick(0, 1)) is None
        await session.toggle_edit()
        session.toggle_highlight_mode()
        assert await session.dispatch(TextClick(2, 11)) is None
        assert player.current_time_ms == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_speed_and_skip(self, open_session, player):
        session = await open_session()
        assert session.cycle_speed() == 1.25
        assert session.skip() == 5000
        assert session.skip(-10) == 0
        await session.close()


# ── Highlights ───────────────────────────────────────────────────────────────

class TestHighlightFlow:
    @pytest.mark.asyncio
    async def test_time_based_highlight_then_save(self, open_session, service, notes):
        session = await open_session()
        session.toggle_highlight_mode()
        selection = await _select(session, 0, "world")
        assert selection.is_time_based
        assert (selection.start_ms, selection.end_ms) == (500, 900)

        h = await session.dispatch(RequestHighlight())
        assert h.id == "1"
        assert h.color == "#ffeb3b"
        assert session.surface.find("mark", class_="word-based-highlight") is not None
        assert ("Highlight saved", "success") in notes
        assert not session.dirty

        result = await session.save(notify=True)
        assert result.outcome == SaveOutcome.SUCCESS
        stored = (await _stored(service))["data"]["utterances"][0]
        assert stored["text"] == 'Hello [[HIGHLIGHT color="#ffeb3b"]]world[[/HIGHLIGHT]]'
        assert stored["is_edited"] is True
        assert [x.id for x in await service.list_highlights("t1")] == ["1"]
        await session.close()

        reopened = await open_session()
        p = row_text(rows(reopened.surface)[0])
        assert p.find("span", class_="word") is None
        assert p.contents[0] == "Hello "
        mark = p.find("mark")
        assert mark.get_text() == "world"
        assert css_value(mark, "background-color") == "#ffeb3b"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_text_based_highlight_in_edited_row(self, open_session, service):
        session = await open_session()
        session.toggle_highlight_mode()
        selection = await _select(session, 2, "on it")
        assert (selection.start, selection.end) == (10, 15)
        assert not selection.is_time_based

        h = await session.dispatch(RequestHighlight(color="#00ff00"))
        assert h.start_time is None
        expected = (
            'We [[HIGHLIGHT color="#a7ffeb"]]agreed[[/HIGHLIGHT]] '
            f'[[HIGHLIGHT color="#00ff00" id="{h.id}"]]on it[[/HIGHLIGHT]]'
        )
        assert session.store.get_utterance(2).text == expected
        assert session.dirty

        await session.save(notify=False)
        assert (await _stored(service))["data"]["utterances"][2]["text"] == expected
        assert not session.dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_selection_overlapping_mark_is_skipped(self, open_session, service):
        session = await open_session()
        session.toggle_highlight_mode()
        await session.dispatch(BeginSelection(2))
        await session.dispatch(EndSelection(2, 3, 12))
        before = session.surface.decode()
        assert await session.dispatch(RequestHighlight()) is None
        assert session.surface.decode() == before
        assert await service.list_highlights("t1") == []
        await session.close()

    @pytest.mark.asyncio
    async def test_text_highlight_after_edit_with_active_word(self, open_session, player, service):
        session = await open_session()
        await session.toggle_edit()
        player.tick(4100)
        await session.dispatch(SurfaceInput(2))
        player.tick(4100)
        session.toggle_highlight_mode()
        selection = await _select(session, 2, "on it")
        assert selection is not None
        h = await session.dispatch(RequestHighlight())
        assert h is not None
        p = row_text(rows(session.surface)[2])
        assert [s for s in p.find_all("span") if not s.get("class")] == []
        assert session.store.get_utterance(2).text.endswith(f'[[HIGHLIGHT color="#ffeb3b" id="{h.id}"]]on it[[/HIGHLIGHT]]')
        await session.close()

    @pytest.mark.asyncio
    async def test_selection_requires_highlight_mode(self, open_session):
        session = await open_session()
        assert await session.dispatch(BeginSelection(0)) is False
        assert await session.dispatch(EndSelection(0, 7, 12)) is None
        assert await session.dispatch(RequestHighlight()) is None
        await session.close()

    @pytest.mark.asyncio
    async def test_selection_pauses_active_word_updates(self, open_session, player):
        session = await open_session()
        session.toggle_highlight_mode()
        await session.dispatch(BeginSelection(0))
        player.tick(600)
        assert not session.surface.find_all(class_="active-word")
        await session.dispatch(CancelSelection())
        player.tick(600)
        assert session.surface.find_all(class_="active-word")
        await session.close()

    @pytest.mark.asyncio
    async def test_delete_time_highlight(self, open_session, service, notes):
        session = await open_session()
        session.toggle_highlight_mode()
        await _select(session, 0, "world")
        h = await session.dispatch(RequestHighlight())
        assert await session.delete_highlight(h.id)
        assert session.surface.find("mark", class_="word-based-highlight") is None
        assert await service.list_highlights("t1") == []
        assert ("Highlight deleted", "success") in notes
        assert not session.dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_delete_text_highlight_marks_dirty(self, open_session, service):
        session = await open_session()
        session.toggle_highlight_mode()
        await _select(session, 2, "on it")
        h = await session.dispatch(RequestHighlight())
        await session.save(notify=False)
        assert await session.delete_highlight(h.id)
        assert session.dirty
        await session.save(notify=False)
        stored = (await _stored(service))["data"]["utterances"][2]["text"]
        assert stored == 'We [[HIGHLIGHT color="#a7ffeb"]]agreed[[/HIGHLIGHT]] on it'
        await session.close()

    @pytest.mark.asyncio
    async def test_delete_highlight_needs_confirmation(self, open_session, service):
        session = await open_session()
        session.toggle_highlight_mode()
        await _select(session, 0, "world")
        h = await session.dispatch(RequestHighlight())
        session.confirm = lambda _msg: False
        assert not await session.delete_highlight(h.id)
        assert len(await service.list_highlights("t1")) == 1
        await session.close()


# ── Editing & saving ─────────────────────────────────────────────────────────

class TestEditing:
    @pytest.mark.asyncio
    async def test_input_marks_dirty_only_in_edit_mode(self, open_session):
        session = await open_session()
        assert await session.dispatch(SurfaceInput(0)) is False
        await session.toggle_edit()
        assert has_class(session.surface, "editing")
        assert row_text(rows(session.surface)[0]).get("contenteditable") == "true"
        assert await session.dispatch(SurfaceInput(0)) is True
        await session.close()

    @pytest.mark.asyncio
    async def test_leaving_edit_mode_saves(self, open_session, service, notes):
        session = await open_session()
        await session.toggle_edit()
        p = row_text(rows(session.surface)[2])
        p.contents[-1].replace_with(" on it, finally")
        await session.dispatch(SurfaceInput(2))
        assert await session.toggle_edit() is False
        assert ("Transcript saved!", "success") in notes
        stored = (await _stored(service))["data"]["utterances"][2]["text"]
        assert stored.endswith("on it, finally")
        assert not session.dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_apply_edited_row_html(self, open_session, service):
        session = await open_session()
        await session.toggle_edit()
        applied = session.apply_edited_html('Hello <mark style="background-color: #a7ffeb;">brave</mark> world', 0)
        assert applied == [0]
        assert session.dirty
        await session.save(notify=False)
        stored = (await _stored(service))["data"]["utterances"][0]["text"]
        assert stored == 'Hello [[HIGHLIGHT color="#a7ffeb"]]brave[[/HIGHLIGHT]] world'
        await session.close()

    @pytest.mark.asyncio
    async def test_apply_edited_row_accepts_whole_text_element(self, open_session):
        session = await open_session()
        await session.toggle_edit()
        session.apply_edited_html('<p class="utterance-text" data-index="1">Um, this is <b>fine</b>.</p>', 1)
        p = row_text(rows(session.surface)[1])
        assert p.get("contenteditable") == "true"
        assert p.get_text() == "Um, this is fine."
        await session.save(notify=False)
        assert session.store.get_utterance(1).text == "Um, this is fine."
        await session.close()

    @pytest.mark.asyncio
    async def test_apply_edited_surface_html(self, open_session, service):
        session = await open_session()
        await session.toggle_edit()
        edited = parse_html(session.surface.decode())
        row_text(rows(edited)[2]).contents[-1].replace_with(" on it, finally")
        assert session.apply_edited_html(edited.decode()) == [0, 1, 2]
        result = await session.save(notify=False)
        assert result.changed_indices == [2]
        stored = (await _stored(service))["data"]["utterances"][2]["text"]
        assert stored == 'We [[HIGHLIGHT color="#a7ffeb"]]agreed[[/HIGHLIGHT]] on it, finally'
        await session.close()

    @pytest.mark.asyncio
    async def test_apply_edited_html_rejections(self, open_session):
        session = await open_session()
        with pytest.raises(ValidationError):
            session.apply_edited_html("Hello", 0)
        await session.toggle_edit()
        with pytest.raises(ValidationError):
            session.apply_edited_html("Hello", 7)
        assert not session.dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_manual_save_without_changes(self, open_session, notes):
        session = await open_session()
        result = await session.save(notify=True)
        assert result.outcome == SaveOutcome.NO_OP
        assert ("No changes to save.", "info") in notes
        await session.close()

    @pytest.mark.asyncio
    async def test_autosave_only_when_dirty(self, open_session, notes):
        session = await open_session()
        await session.toggle_edit()
        assert await session.autosave_tick() is None
        p = row_text(rows(session.surface)[2])
        p.contents[-1].replace_with(" on it!")
        await session.dispatch(SurfaceInput(2))
        result = await session.autosave_tick()
        assert result.outcome == SaveOutcome.SUCCESS
        assert not result.notify
        assert ("Transcript saved!", "success") not in notes
        await session.close()

    @pytest.mark.asyncio
    async def test_edit_during_save_keeps_session_dirty(self, tmp_path, sample_raw, open_session):
        gate = asyncio.Event()

        class SlowService(LocalTranscriptService):
            async def save(self, *args, **kwargs):
                await gate.wait()
                await super().save(*args, **kwargs)

        svc = SlowService(tmp_path / "slow")
        svc.put_transcript(sample_raw, "t1")
        session = await open_session(svc=svc)
        await session.toggle_edit()
        p = row_text(rows(session.surface)[2])
        p.contents[-1].replace_with(" on it, first")
        await session.dispatch(SurfaceInput(2))

        pending = asyncio.ensure_future(session.save(notify=False))
        for _ in range(5):
            await asyncio.sleep(0)
        p.contents[-1].replace_with(" on it, second")
        await session.dispatch(SurfaceInput(2))
        gate.set()

        assert (await pending).outcome == SaveOutcome.SUCCESS
        assert session.dirty
        await session.save(notify=False)
        stored = (await svc.load("t1"))["data"]["utterances"][2]["text"]
        assert stored.endswith("on it, second")
        assert not session.dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_read_only_transcript(self, tmp_path, sample_raw, open_session, notes):
        sample_raw["can_edit"] = False
        svc = LocalTranscriptService(tmp_path / "ro")
        svc.put_transcript(sample_raw, "ro")
        session = await open_session("ro", svc=svc)
        assert await session.toggle_edit() is False
        assert ("You do not have permission to edit this transcript.", "error") in notes

        session.replace_all("um", "uh")
        assert not session.editing
        result = await session.save(notify=False)
        assert result.outcome == SaveOutcome.FAILURE
        assert isinstance(result.error, PermissionDeniedError)
        assert notes[-1][1] == "error"
        await session.close()


# ── Speakers & title ─────────────────────────────────────────────────────────

class TestSpeakersAndTitle:
    @pytest.mark.asyncio
    async def test_rename_speaker_saves(self, open_session, service):
        session = await open_session()
        assert await session.rename_speaker("B", "Bob")
        assert _labels(session) == ["Alice", "Bob", "Alice"]
        assert (await _stored(service))["speaker_map"] == {"A": "Alice", "B": "Bob"}
        await session.close()

    @pytest.mark.asyncio
    async def test_duplicate_name_reverts_label(self, open_session, service, notes):
        session = await open_session()
        label = session.surface.find_all("span", class_="speaker-label")[1]
        label.string = "Alice"
        assert not await session.rename_speaker("B", "Alice")
        assert _labels(session) == ["Alice", "Speaker B", "Alice"]
        assert notes[-1][1] == "warning"
        assert (await _stored(service))["speaker_map"] == {"A": "Alice"}
        await session.close()

    @pytest.mark.asyncio
    async def test_title_saved(self, open_session, service):
        session = await open_session()
        assert await session.save_title("  Retro  ")
        assert session.transcript.title == "Retro"
        assert (await _stored(service))["title"] == "Retro"
        await session.close()

    @pytest.mark.asyncio
    async def test_title_rolls_back_on_failure(self, tmp_path, sample_raw, open_session, notes):
        class BrokenTitles(LocalTranscriptService):
            async def save_title(self, transcript_id, title):
                raise NetworkError("offline")

        svc = BrokenTitles(tmp_path / "broken")
        svc.put_transcript(sample_raw, "t1")
        session = await open_session(svc=svc)
        assert not await session.save_title("Retro")
        assert session.transcript.title == "Weekly sync"
        assert ("Error saving title: offline", "error") in notes
        await session.close()

    @pytest.mark.asyncio
    async def test_empty_title_rejected(self, open_session, notes):
        session = await open_session()
        assert not await session.save_title("   ")
        assert notes[-1] == ("Title cannot be empty", "warning")
        await session.close()


# ── Search & replace ─────────────────────────────────────────────────────────

class TestSearchReplace:
    @pytest.mark.asyncio
    async def test_debounced_search_supersedes(self, open_session):
        session = await open_session()
        first = session.search_debounced("um")
        second = session.search_debounced("world")
        assert await second == 1
        assert first.cancelled()
        assert session.search_engine.counter_text() == "1 / 1"
        await session.close()

    @pytest.mark.asyncio
    async def test_replace_requires_confirmation(self, open_session, service):
        session = await open_session(confirm=False)
        assert session.replace_all("um", "uh") == 0
        assert session.store.get_utterance(1).text == "Um, this is fine. Next um"
        assert len(session.undo_stack) == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_replace_then_undo(self, open_session, notes):
        session = await open_session()
        session.search("um")
        assert session.replace_all("um", "uh") == 2
        assert ("Replaced 2 occurrence(s).", "success") in notes
        assert session.store.get_utterance(1).text == "uh, this is fine. Next uh"
        assert session.editing and session.dirty
        assert session.surface.find("mark", class_="search-highlight") is None
        assert len(session.undo_stack) == 1

        assert session.undo()
        assert session.store.get_utterance(1).text == "Um, this is fine. Next um"
        assert not session.undo()
        assert notes[-1] == ("Nothing to undo.", "info")
        await session.close()

    @pytest.mark.asyncio
    async def test_replace_not_found_and_empty(self, open_session, notes):
        session = await open_session()
        assert session.replace_all("zzz", "y") == 0
        assert notes[-1] == ('"zzz" not found in transcript.', "info")
        assert session.replace_all("", "y") == 0
        assert notes[-1] == ("Please enter text to find.", "warning")
        assert len(session.undo_stack) == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_replace_keeps_unsaved_surface_edits(self, open_session, service):
        session = await open_session()
        await session.toggle_edit()
        row_text(rows(session.surface)[0]).find_all("span", class_="word")[1].string = "there"
        await session.dispatch(SurfaceInput(0))
        session.replace_all("um", "uh")
        assert session.store.get_utterance(0).text == "Hello there"
        await session.save(notify=False)
        stored = (await _stored(service))["data"]["utterances"]
        assert [u["text"] for u in stored[:2]] == ["Hello there", "uh, this is fine. Next uh"]
        await session.close()


# ── Side views, export, delete ───────────────────────────────────────────────

class TestSideViews:
    @pytest.mark.asyncio
    async def test_translate_without_backend(self, open_session, notes):
        session = await open_session()
        view = await session.translate("de")
        assert view.find("div", class_="error-message") is not None
        assert notes[-1][1] == "error"
        await session.close()

    @pytest.mark.asyncio
    async def test_translate(self, tmp_path, sample_raw, open_session):
        svc = LocalTranscriptService(tmp_path / "tr", translator=lambda texts, lang: [t.upper() for t in texts])
        svc.put_transcript(sample_raw, "t1")
        session = await open_session(svc=svc)
        view = await session.translate("de")
        assert [p.get_text() for p in view.find_all("p", class_="utterance-text")][0] == "HELLO WORLD"
        assert session.copy_text(translation=True).splitlines()[0] == "[00:00] Alice: HELLO WORLD"
        assert len(rows(session.surface)) == 3
        await session.close()

    @pytest.mark.asyncio
    async def test_translate_requires_language(self, open_session, notes):
        session = await open_session()
        assert await session.translate("") is None
        assert notes[-1] == ("Please select a language.", "warning")
        await session.close()

    @pytest.mark.asyncio
    async def test_summary(self, open_session):
        session = await open_session()
        view = await session.load_summary()
        assert "Short weekly sync." in view.get_text()
        assert view.find("span", class_="chapter-title").get_text() == "Opening"
        await session.close()

    @pytest.mark.asyncio
    async def test_copy_text_follows_timestamp_mode(self, open_session):
        session = await open_session()
        assert session.copy_text().splitlines()[0] == "[00:00] Alice: Hello world"
        session.set_timestamp_mode("none")
        assert session.copy_text().splitlines()[0] == "Alice: Hello world"
        await session.close()

    @pytest.mark.asyncio
    async def test_export_uses_display_names_and_unsaved_edits(self, open_session):
        session = await open_session()
        await session.toggle_edit()
        p = row_text(rows(session.surface)[2])
        p.contents[-1].replace_with(" on it, finally")
        result = await session.export(ExportOptions(format="txt"))
        assert result.filename == "Weekly sync.txt"
        assert result.content.split("\n\n") == [
            "Alice: Hello world",
            "Speaker B: Um, this is fine. Next um",
            "Alice: We agreed on it, finally",
        ]
        await session.close()

    @pytest.mark.asyncio
    async def test_delete_transcript(self, open_session, service):
        session = await open_session(confirm=False)
        assert not await session.delete_transcript()
        session.confirm = lambda _msg: True
        assert await session.delete_transcript()
        assert session.closed
        with pytest.raises(LoadError):
            await service.load("t1")
