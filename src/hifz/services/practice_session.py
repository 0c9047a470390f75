"""Event-driven base for practice sessions."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, final

from hifz.exceptions import RecognitionUnsupportedError
from hifz.models.learning_models import Activity, InputEvent, SessionEvent, SessionEventKind
from hifz.monitoring import recognition_errors
from hifz.services.collaborators import AudioPlayer, RecognitionHandle, SpeechRecognizer
from hifz.services.recitation_scorer import RecitationScorer


logger = logging.getLogger(__name__)

Observer = Callable[[SessionEvent], None]

MSG_RECOGNITION_UNSUPPORTED = "Speech recognition is not available. Check microphone permissions and try again."
MSG_RECOGNITION_ERROR = "Recognition error. Please try again."
MSG_NO_AUDIO = "No reference audio available for this āyah."


class PracticeSession(ABC):
    """Owns the activity state of one practice session and dispatches learner input.

    All mutation happens in response to discrete events: learner input,
    recognition results and audio end. Exactly one activity is current at
    a time, so a new attempt cannot start while another is pending.
    Results delivered by a recognition run that has been stopped or
    superseded are dropped.
    """

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        audio_player: AudioPlayer,
        scorer: Optional[RecitationScorer] = None,
    ):
        self.recognizer = recognizer
        self.audio_player = audio_player
        self.scorer = scorer or RecitationScorer()
        self._observers: List[Observer] = []
        self._activity = Activity.IDLE
        self._recognition: Optional[RecognitionHandle] = None
        self._run_id = 0

    """Methods that must be implemented by subclasses."""

    @abstractmethod
    def _expected_text(self) -> str:
        """Text the next recognition run is scored against."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def _handle_transcript(self, transcript: str) -> None:
        """Score a final transcript and update progress."""
        raise NotImplementedError("Subclasses must implement this method")

    def _on_space(self) -> None:
        if self._activity == Activity.WAITING_FOR_SPACE:
            self.start_recognition()
        elif self._activity == Activity.RECITING:
            self.stop_recognition()

    def _on_next(self) -> None:
        logger.debug(f"{type(self).__name__}: NEXT ignored")

    def _on_play(self) -> None:
        logger.debug(f"{type(self).__name__}: PLAY ignored")

    def _after_audio_ended(self) -> None:
        pass

    """Methods that must not be overridden by subclasses."""

    @final
    def subscribe(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    @final
    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @final
    def _emit(self, kind: SessionEventKind, **payload: Any) -> None:
        event = SessionEvent(kind, payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.error(f"Observer failed on {kind.value}: {e}")

    @property
    def activity(self) -> Activity:
        return self._activity

    @property
    def is_reciting(self) -> bool:
        return self._activity == Activity.RECITING

    @property
    def is_waiting_for_space(self) -> bool:
        return self._activity == Activity.WAITING_FOR_SPACE

    @property
    def is_playing_audio(self) -> bool:
        return self._activity == Activity.PLAYING_AUDIO

    @final
    def _set_activity(self, activity: Activity) -> None:
        if activity == self._activity:
            return
        logger.debug(f"{type(self).__name__}: activity {self._activity.value} -> {activity.value}")
        self._activity = activity
        self._emit(SessionEventKind.ACTIVITY_CHANGED, activity=activity)

    @final
    def handle_input(self, event: InputEvent) -> None:
        """Single entry point for learner input."""
        logger.debug(f"{type(self).__name__}: input {event.value} while {self._activity.value}")
        if self._activity == Activity.PLAYING_AUDIO and event != InputEvent.NEXT:
            return
        if event == InputEvent.SPACE:
            self._on_space()
        elif event == InputEvent.NEXT:
            self._on_next()
        elif event == InputEvent.PLAY:
            self._on_play()

    @final
    def start_recognition(self) -> bool:
        """Start a recognition run; stays waiting if recognition is unavailable."""
        if self._activity == Activity.RECITING:
            return False
        if not self.recognizer.is_supported():
            self._report_unsupported()
            return False

        self._run_id += 1
        run_id = self._run_id
        handle = self.recognizer.create(
            self._expected_text(),
            lambda transcript: self._on_recognition_result(run_id, transcript),
            lambda error: self._on_recognition_error(run_id, error),
        )
        self._recognition = handle
        self._set_activity(Activity.RECITING)
        try:
            handle.start()
        except RecognitionUnsupportedError:
            self._recognition = None
            self._set_activity(Activity.WAITING_FOR_SPACE)
            self._report_unsupported()
            return False
        except Exception as e:
            self._recognition = None
            self._run_id += 1
            self._set_activity(Activity.WAITING_FOR_SPACE)
            logger.warning(f"{type(self).__name__}: recognition failed to start: {e}")
            recognition_errors.labels(error_type=type(e).__name__).inc()
            self._emit(SessionEventKind.ERROR, message=MSG_RECOGNITION_ERROR, blocking=False)
            return False
        return True

    @final
    def stop_recognition(self) -> None:
        """Stop the current run and discard any pending result."""
        handle, self._recognition = self._recognition, None
        self._run_id += 1
        if handle is not None:
            try:
                handle.stop()
            except Exception as e:
                logger.warning(f"Error stopping recognition: {e}")
        if self._activity == Activity.RECITING:
            self._set_activity(Activity.WAITING_FOR_SPACE)

    @final
    def _on_recognition_result(self, run_id: int, transcript: str) -> None:
        if run_id != self._run_id or self._activity != Activity.RECITING:
            logger.debug(f"{type(self).__name__}: dropping stale result {transcript!r}")
            return
        self._recognition = None
        self._set_activity(Activity.WAITING_FOR_SPACE)
        self._handle_transcript(transcript)

    @final
    def _on_recognition_error(self, run_id: int, error: Exception) -> None:
        if run_id != self._run_id:
            return
        self._recognition = None
        self._set_activity(Activity.WAITING_FOR_SPACE)
        if isinstance(error, RecognitionUnsupportedError):
            self._report_unsupported()
            return
        logger.warning(f"{type(self).__name__}: recognition error, attempt discarded: {error}")
        recognition_errors.labels(error_type=type(error).__name__).inc()
        self._emit(SessionEventKind.ERROR, message=MSG_RECOGNITION_ERROR, blocking=False)

    @final
    def _report_unsupported(self) -> None:
        logger.warning(f"{type(self).__name__}: speech recognition unsupported")
        recognition_errors.labels(error_type="unsupported").inc()
        self._emit(SessionEventKind.ERROR, message=MSG_RECOGNITION_UNSUPPORTED, blocking=True)

    @final
    def play_audio(self, url: Optional[str]) -> bool:
        """Play reference audio; recognition is suspended until it ends."""
        if not url:
            self._emit(SessionEventKind.ERROR, message=MSG_NO_AUDIO, blocking=False)
            return False
        if self._activity == Activity.RECITING:
            self.stop_recognition()

        self._set_activity(Activity.PLAYING_AUDIO)
        self.audio_player.on_ended(self._on_audio_ended)
        try:
            self.audio_player.play(url)
        except Exception as e:
            logger.error(f"Error playing audio {url}: {e}")
            self._set_activity(Activity.WAITING_FOR_SPACE)
            self._emit(SessionEventKind.ERROR, message=MSG_NO_AUDIO, blocking=False)
            return False
        return True

    @final
    def stop_audio(self) -> None:
        if self._activity != Activity.PLAYING_AUDIO:
            return
        self.audio_player.on_ended(None)
        self.audio_player.stop()
        self._set_activity(Activity.WAITING_FOR_SPACE)

    @final
    def _on_audio_ended(self) -> None:
        if self._activity != Activity.PLAYING_AUDIO:
            return
        self._set_activity(Activity.WAITING_FOR_SPACE)
        self._after_audio_ended()

    @final
    def _cancel_activity(self, next_activity: Activity) -> None:
        """Cancel in-flight recognition or audio without recording anything."""
        if self._activity == Activity.RECITING:
            self.stop_recognition()
        elif self._activity == Activity.PLAYING_AUDIO:
            self.stop_audio()
        self._set_activity(next_activity)

    def close(self) -> None:
        """Release collaborators."""
        self._cancel_activity(Activity.IDLE)
