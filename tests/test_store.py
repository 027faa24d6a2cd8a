"""Tests for transcript loading and the utterance store."""

from __future__ import annotations

import json

import pytest

from transcript_viewer.core.store import UtteranceStore, load_transcript
from transcript_viewer.errors import DuplicateSpeakerName, InvalidShape, ValidationError


# ── Loading ──────────────────────────────────────────────────────────────────

class TestLoadTranscript:
    def test_basic(self, sample_raw):
        t = load_transcript(sample_raw, "t1")
        assert t.transcript_id == "t1"
        assert t.title == "Weekly sync"
        assert len(t.utterances) == 3
        assert t.utterances[0].words[1].text == "world"
        assert t.speaker_map == {"A": "Alice"}
        assert t.chapters[0].title == "Opening"

    def test_missing_utterances(self):
        with pytest.raises(InvalidShape):
            load_transcript({"data": {}})
        with pytest.raises(InvalidShape):
            load_transcript({"title": "no data"})
        with pytest.raises(InvalidShape):
            load_transcript(["not", "a", "dict"])

    def test_data_as_json_string(self, sample_raw):
        sample_raw["data"] = json.dumps(sample_raw["data"])
        t = load_transcript(sample_raw, "t1")
        assert len(t.utterances) == 3

    def test_bad_json_string(self):
        with pytest.raises(InvalidShape):
            load_transcript({"data": "{not json"})

    def test_unedited_text_regenerated_from_words(self, sample_raw):
        sample_raw["data"]["utterances"][0]["text"] = "Hallo welt"
        t = load_transcript(sample_raw)
        assert t.utterances[0].text == "Hello world"

    def test_edited_text_kept(self, sample_raw):
        t = load_transcript(sample_raw)
        assert t.utterances[2].text.startswith("We [[HIGHLIGHT")

    def test_camel_case_aliases(self, sample_raw):
        sample_raw["speakerMap"] = sample_raw.pop("speaker_map")
        sample_raw["canEdit"] = False
        sample_raw["data"]["utterances"][2]["isEdited"] = sample_raw["data"]["utterances"][2].pop("is_edited")
        t = load_transcript(sample_raw)
        assert t.speaker_map == {"A": "Alice"}
        assert t.can_edit is False
        assert t.utterances[2].is_edited is True

    def test_speakers_first_seen_order(self, sample_raw):
        assert load_transcript(sample_raw).speakers == ["A", "B"]


# ── Store ────────────────────────────────────────────────────────────────────

class TestUtteranceStore:
    @pytest.fixture
    def store(self, sample_raw):
        return UtteranceStore(load_transcript(sample_raw, "t1"))

    def test_display_name_fallback(self, store):
        assert store.display_name("A") == "Alice"
        assert store.display_name("B") == "Speaker B"

    def test_set_text_marks_edited(self, store):
        utt = store.set_utterance_text(1, "Changed")
        assert utt.is_edited
        assert store.get_utterance(1).text == "Changed"

    def test_rename(self, store):
        assert store.set_speaker_display_name("B", "  Bob ") is True
        assert store.speaker_map["B"] == "Bob"

    def test_rename_unchanged(self, store):
        assert store.set_speaker_display_name("A", "Alice") is False

    def test_rename_empty(self, store):
        with pytest.raises(ValidationError):
            store.set_speaker_display_name("B", "   ")

    def test_rename_duplicate(self, store):
        with pytest.raises(DuplicateSpeakerName) as exc:
            store.set_speaker_display_name("B", "Alice")
        assert exc.value.owner == "A"
        assert "B" not in store.speaker_map

    def test_rename_duplicate_of_default_label(self, store):
        with pytest.raises(DuplicateSpeakerName):
            store.set_speaker_display_name("A", "Speaker B")

    def test_snapshot_is_independent(self, store):
        snap = store.snapshot()
        store.set_utterance_text(0, "Mutated")
        assert snap[0].text == "Hello world"
        store.restore(snap)
        assert store.get_utterance(0).text == "Hello world"
        snap[0].text = "after restore"
        assert store.get_utterance(0).text == "Hello world"
