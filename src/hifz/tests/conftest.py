"""Test configuration."""
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp(prefix='hifz-test-')) / 'hifz.db'}")
os.environ.pop("METRICS_PORT", None)

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import Session

from hifz.config import ensure_directories
from hifz.exceptions import TextNotFoundError
from hifz.models.base import SessionLocal, init_db
from hifz.models.learning_models import AyahText
from hifz.services.collaborators import (
    AudioPlayer,
    ErrorCallback,
    RecognitionHandle,
    ResultCallback,
    SpeechRecognizer,
    TextSource,
)


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeHandle(RecognitionHandle):
    """Recognition run driven by the test."""

    def __init__(self, expected_text: str, on_result: ResultCallback, on_error: ErrorCallback,
                 fail_on_start: Optional[Exception] = None):
        self.expected_text = expected_text
        self.on_result = on_result
        self.on_error = on_error
        self.fail_on_start = fail_on_start
        self.started = False
        self.stopped = False

    def start(self) -> None:
        if self.fail_on_start:
            raise self.fail_on_start
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def deliver(self, transcript: str) -> None:
        self.on_result(transcript)

    def fail(self, error: Exception) -> None:
        self.on_error(error)


class FakeRecognizer(SpeechRecognizer):
    """Recognizer that keeps every created run so tests can answer any of them."""

    def __init__(self, supported: bool = True):
        self.supported = supported
        self.fail_on_start: Optional[Exception] = None
        self.handles: List[FakeHandle] = []

    def is_supported(self) -> bool:
        return self.supported

    def create(self, expected_text: str, on_result: ResultCallback, on_error: ErrorCallback) -> FakeHandle:
        handle = FakeHandle(expected_text, on_result, on_error, self.fail_on_start)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class FakeAudioPlayer(AudioPlayer):
    """Audio player whose playback ends when the test says so."""

    def __init__(self):
        self.played: List[str] = []
        self.stopped = 0
        self.fail_with: Optional[Exception] = None
        self._on_ended: Optional[Callable[[], None]] = None

    def play(self, url: str) -> None:
        if self.fail_with:
            raise self.fail_with
        self.played.append(url)

    def stop(self) -> None:
        self.stopped += 1

    def on_ended(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_ended = callback

    def end(self) -> None:
        if self._on_ended:
            self._on_ended()


class StubTextSource(TextSource):
    """In-memory text source; unknown ayahs raise TextNotFoundError."""

    def __init__(self, texts: Dict[int, str], surah: int = 1, audio: bool = True):
        self.texts = texts
        self.surah = surah
        self.audio = audio

    def get_ayah(self, surah: int, ayah: int) -> AyahText:
        if surah != self.surah or ayah not in self.texts:
            raise TextNotFoundError(surah, ayah)
        return AyahText(surah=surah, ayah=ayah, text=self.texts[ayah])

    def get_audio_url(self, surah: int, ayah: int) -> Optional[str]:
        return f"https://audio.test/{surah:03d}{ayah:03d}.mp3" if self.audio else None

    def get_ayah_count(self, surah: int) -> int:
        return len(self.texts) if surah == self.surah else 0


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def audio_player() -> FakeAudioPlayer:
    return FakeAudioPlayer()


@pytest.fixture
def events() -> List:
    """Collects emitted session events."""
    return []
