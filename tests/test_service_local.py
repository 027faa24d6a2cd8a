"""Tests for the file-backed transcript service."""

from __future__ import annotations

import asyncio
import json
import threading

import pytest

from transcript_viewer.errors import InvalidShape, LoadError, NetworkError, PermissionDeniedError
from transcript_viewer.export.formats import ExportOptions
from transcript_viewer.models import Highlight, Utterance
from transcript_viewer.service.base import sanitize_utterances
from transcript_viewer.service.local import LocalTranscriptService


class TestSanitizeUtterances:
    def test_coerces_and_drops(self):
        clean = sanitize_utterances([
            {"speaker": " A ", "start": "1.6", "end": 900, "text": None, "isEdited": 1, "extra": "x",
             "words": [{"text": " hi ", "start": 0, "end": 10}, {"text": "lost", "start": 5}]},
            "not a dict",
        ])
        assert clean == [{
            "speaker": "A", "start": 2, "end": 900, "text": "", "is_edited": True,
            "words": [{"text": "hi", "start": 0, "end": 10, "confidence": 0.0}],
        }]

    def test_non_list(self):
        assert sanitize_utterances({"utterances": []}) == []


class TestTranscripts:
    def test_put_and_load(self, service, tmp_path):
        raw = json.loads((tmp_path / "transcripts" / "t1.json").read_text())
        assert raw["owner"] == "local"
        assert raw["date"] == "2024-03-01"

    def test_put_fills_missing_date(self, tmp_path):
        svc = LocalTranscriptService(tmp_path)
        svc.put_transcript({"data": {"utterances": []}}, "empty")
        assert json.loads((tmp_path / "empty.json").read_text())["date"]

    def test_put_rejects_bad_shape(self, tmp_path):
        with pytest.raises(InvalidShape):
            LocalTranscriptService(tmp_path).put_transcript({"title": "x"}, "bad")

    @pytest.mark.asyncio
    async def test_ids_are_sanitised(self, service):
        raw = await service.load("../t1")
        assert raw["title"] == "Weekly sync"
        with pytest.raises(LoadError):
            await service.load("../..")

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        svc = LocalTranscriptService(tmp_path)
        (tmp_path / "broken.json").write_text("{nope")
        with pytest.raises(LoadError):
            await svc.load("broken")

    @pytest.mark.asyncio
    async def test_save_replaces_utterances(self, service):
        await service.save("t1", [Utterance("A", 0, 500, "Only one", True)], {"A": "Ann "})
        raw = await service.load("t1")
        assert [u["text"] for u in raw["data"]["utterances"]] == ["Only one"]
        assert raw["speaker_map"] == {"A": "Ann"}

    @pytest.mark.asyncio
    async def test_other_owner_cannot_delete(self, service, tmp_path):
        intruder = LocalTranscriptService(tmp_path / "transcripts", user="mallory")
        with pytest.raises(PermissionDeniedError):
            await intruder.delete_transcript("t1")


class TestHighlights:
    @pytest.mark.asyncio
    async def test_ids_increment_and_order(self, service):
        a = await service.create_highlight("t1", Highlight("", "late", "#ffeb3b", 3000, 3500))
        b = await service.create_highlight("t1", Highlight("", "text only", "#ffeb3b"))
        c = await service.create_highlight("t1", Highlight("", "early", "#ffeb3b", 100, 200))
        assert (a, b, c) == ("1", "2", "3")
        assert [h.text for h in await service.list_highlights("t1")] == ["early", "late", "text only"]

    @pytest.mark.asyncio
    async def test_delete_checks_owner(self, service, tmp_path):
        hid = await service.create_highlight("t1", Highlight("", "x", "#ffeb3b"))
        intruder = LocalTranscriptService(tmp_path / "transcripts", user="mallory")
        with pytest.raises(PermissionDeniedError):
            await intruder.delete_highlight(hid)
        with pytest.raises(NetworkError):
            await service.delete_highlight("999")

    @pytest.mark.asyncio
    async def test_deleting_transcript_drops_its_highlights(self, service, sample_raw):
        service.put_transcript(sample_raw, "t2")
        await service.create_highlight("t1", Highlight("", "x", "#ffeb3b"))
        await service.create_highlight("t2", Highlight("", "y", "#ffeb3b"))
        await service.delete_transcript("t1")
        assert [h.text for h in await service.list_highlights("t2")] == ["y"]
        assert await service.list_highlights("t1") == []

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_ids(self, service):
        ids = await asyncio.gather(*[
            service.create_highlight("t1", Highlight("", f"h{i}", "#ffeb3b")) for i in range(8)
        ])
        assert sorted(ids, key=int) == [str(i) for i in range(1, 9)]
        assert len(await service.list_highlights("t1")) == 8


class TestFileWorker:
    @pytest.mark.asyncio
    async def test_file_reads_run_off_the_event_loop_thread(self, service, monkeypatch):
        seen: list[str] = []
        read = service._read

        def recording_read(transcript_id):
            seen.append(threading.current_thread().name)
            return read(transcript_id)

        monkeypatch.setattr(service, "_read", recording_read)
        await service.load("t1")
        assert seen and seen[0].startswith("transcript-store")
        assert seen[0] != threading.current_thread().name

    @pytest.mark.asyncio
    async def test_usable_after_close(self, service):
        await service.load("t1")
        await service.close()
        await service.close()
        assert (await service.load("t1"))["title"] == "Weekly sync"


class TestDerivedViews:
    @pytest.mark.asyncio
    async def test_translate_uses_speaker_map(self, tmp_path, sample_raw):
        svc = LocalTranscriptService(tmp_path, translator=lambda texts, lang: [f"{lang}:{t}" for t in texts])
        svc.put_transcript(sample_raw, "t1")
        out = await svc.translate("t1", "de", {"B": "Bob"})
        assert [t.display_speaker for t in out] == ["Alice", "Bob", "Alice"]
        assert out[2].text == "de:We agreed on it"

    @pytest.mark.asyncio
    async def test_translate_length_mismatch(self, tmp_path, sample_raw):
        svc = LocalTranscriptService(tmp_path, translator=lambda texts, lang: texts[:1])
        svc.put_transcript(sample_raw, "t1")
        with pytest.raises(NetworkError):
            await svc.translate("t1", "de", {})

    @pytest.mark.asyncio
    async def test_export_html_with_highlights(self, service):
        await service.create_highlight("t1", Highlight("", "world", "#ff0000", 500, 900))
        result = await service.export("t1", ExportOptions(format="html", include_highlights=True))
        assert result.filename == "Weekly sync.html"
        assert '<mark style="background-color:#ff0000;">world</mark>' in result.content
        assert '<mark style="background-color:#a7ffeb;">agreed</mark>' in result.content

    @pytest.mark.asyncio
    async def test_summary(self, service):
        summary, chapters = await service.summary("t1")
        assert summary == "Short weekly sync."
        assert chapters[0].title == "Opening"
