"""Collaborators for chat front ends where the learner types the recitation."""
import logging
from typing import Callable, List, Optional

from hifz.services.collaborators import (
    AudioPlayer,
    ErrorCallback,
    RecognitionHandle,
    ResultCallback,
    SpeechRecognizer,
)


logger = logging.getLogger(__name__)


class TypedRecognitionHandle(RecognitionHandle):
    """Recognition run that completes when the learner sends a message."""

    def __init__(self, recognizer: "TypedTranscriptRecognizer", on_result: ResultCallback, on_error: ErrorCallback):
        self.recognizer = recognizer
        self.on_result = on_result
        self.on_error = on_error

    def start(self) -> None:
        self.recognizer.active = self

    def stop(self) -> None:
        if self.recognizer.active is self:
            self.recognizer.active = None


class TypedTranscriptRecognizer(SpeechRecognizer):
    """Treats the next text message as the final transcript of the running attempt."""

    def __init__(self):
        self.active: Optional[TypedRecognitionHandle] = None

    def create(self, expected_text: str, on_result: ResultCallback, on_error: ErrorCallback) -> TypedRecognitionHandle:
        return TypedRecognitionHandle(self, on_result, on_error)

    @property
    def is_listening(self) -> bool:
        return self.active is not None

    def submit(self, transcript: str) -> bool:
        """Deliver a transcript to the running attempt. Returns False if nothing is listening."""
        handle, self.active = self.active, None
        if handle is None:
            return False
        transcript = transcript.strip()
        if not transcript:
            handle.on_error(ValueError("Empty transcript"))
        else:
            handle.on_result(transcript)
        return True


class DeferredAudioPlayer(AudioPlayer):
    """Queues audio URLs for the front end to send; playback ends once they are sent."""

    def __init__(self):
        self.pending: List[str] = []
        self._on_ended: Optional[Callable[[], None]] = None

    def play(self, url: str) -> None:
        self.pending.append(url)

    def stop(self) -> None:
        self.pending.clear()

    def on_ended(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_ended = callback

    def take_pending(self) -> List[str]:
        pending, self.pending = self.pending, []
        return pending

    def finish(self) -> None:
        """Signal that queued audio has been delivered."""
        callback, self._on_ended = self._on_ended, None
        if callback:
            callback()
