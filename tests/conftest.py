"""Shared test fixtures.

Provides:
- Sample transcript payloads in the load-response shape
- A file-backed service rooted in tmp_path
- A scriptable media player
- A session factory with autosave disabled and notifications recorded
- FastAPI TestClient with the service injected
"""

from __future__ import annotations

import copy

import pytest

from transcript_viewer.editor.playback import MediaPlayer
from transcript_viewer.editor.session import EditorSession
from transcript_viewer.service.local import LocalTranscriptService
from transcript_viewer.utils.config import AppConfig, merge_cli_overrides


# ── Seed data ────────────────────────────────────────────────────────────────

SAMPLE_TRANSCRIPT = {
    "title": "Weekly sync",
    "date": "2024-03-01",
    "data": {
        "utterances": [
            {
                "speaker": "A", "start": 0, "end": 900, "text": "Hello world", "is_edited": False,
                "words": [
                    {"text": "Hello", "start": 0, "end": 400, "confidence": 0.98},
                    {"text": "world", "start": 500, "end": 900, "confidence": 0.95},
                ],
            },
            {
                "speaker": "B", "start": 1000, "end": 3000, "text": "Um, this is fine. Next um",
                "is_edited": False,
                "words": [
                    {"text": "Um,", "start": 1000, "end": 1200},
                    {"text": "this", "start": 1300, "end": 1500},
                    {"text": "is", "start": 1600, "end": 1700},
                    {"text": "fine.", "start": 1800, "end": 2000},
                    {"text": "Next", "start": 2100, "end": 2400},
                    {"text": "um", "start": 2500, "end": 3000},
                ],
            },
            {
                "speaker": "A", "start": 3000, "end": 5000,
                "text": 'We [[HIGHLIGHT color="#a7ffeb"]]agreed[[/HIGHLIGHT]] on it',
                "is_edited": True,
                "words": [
                    {"text": "We", "start": 3000, "end": 3300},
                    {"text": "agreed", "start": 3400, "end": 3900},
                    {"text": "on", "start": 4000, "end": 4200},
                    {"text": "it", "start": 4300, "end": 5000},
                ],
            },
        ]
    },
    "speaker_map": {"A": "Alice"},
    "summary": "Short weekly sync.",
    "chapters": [{"start": 0, "end": 3000, "headline": "Opening"}],
}


@pytest.fixture
def sample_raw():
    """Return a deep copy of the sample load payload."""
    return copy.deepcopy(SAMPLE_TRANSCRIPT)


@pytest.fixture
def service(tmp_path, sample_raw):
    svc = LocalTranscriptService(tmp_path / "transcripts")
    svc.put_transcript(sample_raw, "t1")
    return svc


# ── Media player ─────────────────────────────────────────────────────────────

class FakePlayer(MediaPlayer):
    def __init__(self, duration_ms: int = 10_000):
        super().__init__()
        self._time = 0
        self._duration = duration_ms
        self._paused = True
        self._rate = 1.0

    @property
    def current_time_ms(self) -> int:
        return self._time

    @property
    def duration_ms(self) -> int:
        return self._duration

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, rate: float) -> None:
        self._rate = rate

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def seek(self, ms: int) -> None:
        self._time = ms

    def tick(self, ms: int) -> None:
        self._time = ms
        self.emit("timeupdate")


@pytest.fixture
def player():
    return FakePlayer()


# ── Sessions ─────────────────────────────────────────────────────────────────

class Notes(list):
    """Records (message, level) pairs sent to the notifier."""

    def __call__(self, message: str, level: str = "info") -> None:
        self.append((message, level))

    def __bool__(self) -> bool:
        # Always truthy so ``notifier or default`` wiring picks up the recorder.
        return True

    def levels(self) -> list[str]:
        return [lvl for _, lvl in self]

    def messages(self) -> list[str]:
        return [msg for msg, _ in self]


@pytest.fixture
def notes():
    return Notes()


@pytest.fixture
def config():
    return merge_cli_overrides(AppConfig(), {"editor.autosave_interval_s": 0, "editor.search_debounce_ms": 10})


@pytest.fixture
def open_session(service, config, notes, player):
    """Async factory: ``await open_session(confirm=True)``."""

    async def _open(transcript_id: str = "t1", confirm: bool = True, svc=None) -> EditorSession:
        return await EditorSession.open(
            transcript_id,
            svc or service,
            config,
            notifier=notes,
            player=player,
            confirm=lambda _msg: confirm,
        )

    return _open


# ── TestClient ───────────────────────────────────────────────────────────────

@pytest.fixture
def client(service, monkeypatch):
    """FastAPI TestClient bound to the file-backed service, no API token."""
    from fastapi.testclient import TestClient

    from main import app
    from transcript_viewer.api.routes import set_service

    monkeypatch.delenv("TRANSCRIPT_API_TOKEN", raising=False)
    set_service(service)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    set_service(None)
