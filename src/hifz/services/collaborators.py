"""Interfaces of the collaborators a practice session depends on."""
from abc import ABC, abstractmethod
from typing import Callable, Optional

from hifz.models.learning_models import AyahText

# on_result(transcript) and on_error(error) callbacks of a recognition run
ResultCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class RecognitionHandle(ABC):
    """A single recognition run created for one expected text."""

    @abstractmethod
    def start(self) -> None:
        """Start listening. May raise RecognitionUnsupportedError."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def stop(self) -> None:
        """Stop listening; a result still pending is discarded."""
        raise NotImplementedError("Subclasses must implement this method")


class SpeechRecognizer(ABC):
    """Speech recognition service delivering transcripts via callbacks."""

    def is_supported(self) -> bool:
        return True

    @abstractmethod
    def create(self, expected_text: str, on_result: ResultCallback, on_error: ErrorCallback) -> RecognitionHandle:
        """Create a recognition run for ``expected_text``."""
        raise NotImplementedError("Subclasses must implement this method")


class AudioPlayer(ABC):
    """Reference recitation playback."""

    @abstractmethod
    def play(self, url: str) -> None:
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def on_ended(self, callback: Optional[Callable[[], None]]) -> None:
        """Register the callback fired when playback finishes on its own."""
        raise NotImplementedError("Subclasses must implement this method")


class TextSource(ABC):
    """Read-only supplier of ayah text and reference audio locations."""

    @abstractmethod
    def get_ayah(self, surah: int, ayah: int) -> AyahText:
        """Get the text of an ayah. Raises TextNotFoundError if unknown."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def get_audio_url(self, surah: int, ayah: int) -> Optional[str]:
        raise NotImplementedError("Subclasses must implement this method")

    def get_ayah_count(self, surah: int) -> int:
        """Number of ayahs in a surah, 0 if unknown."""
        return 0
