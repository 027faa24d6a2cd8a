"""Time-indexed utterance store: the canonical transcript held by a session."""

from __future__ import annotations

import copy
import json
from typing import Any

from transcript_viewer.errors import DuplicateSpeakerName, InvalidShape, ValidationError
from transcript_viewer.models import Chapter, Transcript, Utterance
from transcript_viewer.utils.logging import debug


def _maybe_json(value: Any, what: str) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise InvalidShape(f"{what} is not valid JSON: {e}") from e
    return value


def load_transcript(raw: Any, transcript_id: str | None = None) -> Transcript:
    """Build a Transcript from a load response payload.

    Raises InvalidShape when ``data.utterances`` is missing or malformed.
    Un-edited utterances whose text drifted from their words get their
    text regenerated from the words.
    """
    if not isinstance(raw, dict):
        raise InvalidShape("Transcript payload must be an object")
    data = _maybe_json(raw.get("data"), "data")
    if not isinstance(data, dict) or not isinstance(data.get("utterances"), list):
        raise InvalidShape("Transcript payload has no data.utterances sequence")

    utterances: list[Utterance] = []
    for i, u in enumerate(data["utterances"]):
        if not isinstance(u, dict):
            raise InvalidShape(f"Utterance {i} is not an object")
        utt = Utterance.from_dict(u)
        if not utt.is_edited and utt.words and utt.text != utt.words_text:
            debug(f"Utterance {i}: text regenerated from {len(utt.words)} words")
            utt.text = utt.words_text
        utterances.append(utt)

    speaker_map = _maybe_json(raw.get("speaker_map", raw.get("speakerMap")) or {}, "speaker_map")
    if not isinstance(speaker_map, dict):
        raise InvalidShape("speaker_map must be an object")

    chapters_raw = raw.get("chapters") or []
    chapters = [Chapter.from_dict(c) for c in chapters_raw if isinstance(c, dict)]

    can_edit = raw.get("can_edit", raw.get("canEdit", True))
    return Transcript(
        transcript_id=str(transcript_id or raw.get("transcript_id") or raw.get("id") or ""),
        title=str(raw.get("title") or ""),
        date=str(raw.get("date") or raw.get("created_at") or ""),
        utterances=utterances,
        speaker_map={str(k): str(v) for k, v in speaker_map.items()},
        summary=str(raw.get("summary") or ""),
        chapters=chapters,
        can_edit=bool(can_edit),
    )


class UtteranceStore:
    """In-memory owner of the utterance sequence and speaker map.

    Every mutation of shared transcript state goes through this class.
    """

    def __init__(self, transcript: Transcript):
        self.transcript = transcript

    @property
    def utterances(self) -> list[Utterance]:
        return self.transcript.utterances

    @property
    def speaker_map(self) -> dict[str, str]:
        return self.transcript.speaker_map

    def __len__(self) -> int:
        return len(self.transcript.utterances)

    def get_utterance(self, index: int) -> Utterance:
        return self.transcript.utterances[index]

    def set_utterance_text(self, index: int, text: str) -> Utterance:
        utt = self.transcript.utterances[index]
        utt.text = text
        utt.is_edited = True
        return utt

    # ── Speakers ─────────────────────────────────────────────────────────────

    def display_name(self, speaker: str) -> str:
        return self.transcript.speaker_map.get(speaker) or f"Speaker {speaker}"

    def set_speaker_display_name(self, speaker: str, name: str) -> bool:
        """Rename a speaker. Returns False when the name is unchanged."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Speaker name cannot be empty")
        if name == self.display_name(speaker):
            return False
        for other in self.transcript.speakers + list(self.transcript.speaker_map):
            if other != speaker and self.display_name(other) == name:
                raise DuplicateSpeakerName(name, other)
        self.transcript.speaker_map[speaker] = name
        return True

    # ── Snapshots ────────────────────────────────────────────────────────────

    def snapshot(self) -> list[Utterance]:
        return copy.deepcopy(self.transcript.utterances)

    def restore(self, snapshot: list[Utterance]) -> None:
        self.transcript.utterances = copy.deepcopy(snapshot)

    def replace_utterances(self, utterances: list[Utterance]) -> None:
        self.transcript.utterances = utterances
