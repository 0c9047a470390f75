"""Stage machine walking a learner through a range of ayahs."""
import logging
from datetime import UTC, datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from hifz.config import settings
from hifz.exceptions import StageTransitionError
from hifz.models.learning_models import (
    Activity,
    AyahText,
    InputEvent,
    LearnStage,
    LearnedAyah,
    SessionEvent,
    SessionEventKind,
    TransitionPair,
)
from hifz.monitoring import ayahs_mastered, recitation_attempts, stage_transitions
from hifz.services.collaborators import AudioPlayer, SpeechRecognizer, TextSource
from hifz.services.practice_session import PracticeSession
from hifz.services.recitation_scorer import RecitationScorer, text_similarity
from hifz.services.stage_tracker import StageProgressTracker
from hifz.services.transition_practice import TransitionPracticeSession


logger = logging.getLogger(__name__)

# Allowed transitions; recall-memory fans out to the next ayah or to connect-ayahs
STAGE_TRANSITIONS: Dict[LearnStage, Tuple[LearnStage, ...]] = {
    LearnStage.AYAH_INTRO: (LearnStage.LISTEN_SHADOW,),
    LearnStage.LISTEN_SHADOW: (LearnStage.READ_RECITE,),
    LearnStage.READ_RECITE: (LearnStage.RECALL_MEMORY,),
    LearnStage.RECALL_MEMORY: (LearnStage.AYAH_INTRO, LearnStage.CONNECT_AYAHS),
    LearnStage.CONNECT_AYAHS: (),
}

# Activity a stage starts in
STAGE_ACTIVITY: Dict[LearnStage, Activity] = {
    LearnStage.AYAH_INTRO: Activity.IDLE,
    LearnStage.LISTEN_SHADOW: Activity.WAITING_FOR_SPACE,
    LearnStage.READ_RECITE: Activity.WAITING_FOR_SPACE,
    LearnStage.RECALL_MEMORY: Activity.WAITING_FOR_SPACE,
    LearnStage.CONNECT_AYAHS: Activity.IDLE,
}


class AyahLearningSession(PracticeSession):
    """Drives ayah-intro → listen-shadow → read-recite → recall-memory for each ayah.

    After the last ayah the session moves to connect-ayahs and hands over to
    a ``TransitionPracticeSession`` over the ayahs learned in this session.
    """

    def __init__(
        self,
        surah: int,
        ayah_numbers: Sequence[int],
        text_source: TextSource,
        recognizer: SpeechRecognizer,
        audio_player: AudioPlayer,
        scorer: Optional[RecitationScorer] = None,
        tracker: Optional[StageProgressTracker] = None,
        on_ayah_mastered: Optional[Callable[[LearnedAyah], None]] = None,
        on_pair_completed: Optional[Callable[[TransitionPair], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        auto_advance: bool = True,
    ):
        super().__init__(recognizer, audio_player, scorer)
        if not ayah_numbers:
            raise ValueError("At least one ayah is required")

        self.surah = surah
        self.ayah_numbers = list(ayah_numbers)
        self.text_source = text_source
        self.tracker = tracker or StageProgressTracker()
        self.on_ayah_mastered = on_ayah_mastered
        self.on_pair_completed = on_pair_completed
        self.on_complete = on_complete
        self.auto_advance = auto_advance
        self.success_word_accuracy = settings.learning.success_word_accuracy

        self.stage = LearnStage.AYAH_INTRO
        self.current_index = 0
        self.current_ayah: AyahText = self.text_source.get_ayah(surah, self.ayah_numbers[0])
        self.learned_ayahs: List[LearnedAyah] = []
        self.transition_session: Optional[TransitionPracticeSession] = None
        self.last_feedback = None
        self._accuracy_sum = 0.0

    @property
    def total_ayahs(self) -> int:
        return len(self.ayah_numbers)

    @property
    def is_last_ayah(self) -> bool:
        return self.current_index + 1 >= len(self.ayah_numbers)

    @property
    def is_struggling(self) -> bool:
        return self.stage.records_attempts and self.tracker.is_struggling

    @property
    def is_complete(self) -> bool:
        return (
            self.stage == LearnStage.CONNECT_AYAHS
            and self.transition_session is not None
            and self.transition_session.is_complete
        )

    def next_stage(self) -> Optional[LearnStage]:
        """Stage that ``advance`` would move to, ignoring guards."""
        targets = STAGE_TRANSITIONS[self.stage]
        if not targets:
            return None
        if self.stage == LearnStage.RECALL_MEMORY:
            return LearnStage.CONNECT_AYAHS if self.is_last_ayah else LearnStage.AYAH_INTRO
        return targets[0]

    def can_advance(self, ready: bool = False) -> bool:
        if self.stage == LearnStage.AYAH_INTRO:
            return True
        if self.stage == LearnStage.LISTEN_SHADOW:
            return ready
        if self.stage in (LearnStage.READ_RECITE, LearnStage.RECALL_MEMORY):
            return self.tracker.is_stage_complete
        return False

    def advance(self, ready: bool = False) -> LearnStage:
        """Move to the next stage. Raises StageTransitionError when the guard fails."""
        if not self.can_advance(ready):
            raise StageTransitionError(f"Cannot leave {self.stage.value} yet")

        from_stage = self.stage
        target = self.next_stage()
        next_ayah = None
        if from_stage == LearnStage.RECALL_MEMORY and target == LearnStage.AYAH_INTRO:
            # A missing next text must leave the session unchanged
            next_ayah = self.text_source.get_ayah(self.surah, self.ayah_numbers[self.current_index + 1])
        self._cancel_activity(STAGE_ACTIVITY[target])

        if from_stage == LearnStage.AYAH_INTRO:
            pass
        elif from_stage in (LearnStage.LISTEN_SHADOW, LearnStage.READ_RECITE):
            self.tracker.reset_stage()
        elif from_stage == LearnStage.RECALL_MEMORY:
            self._master_current_ayah()
            if next_ayah is not None:
                self.current_index += 1
                self.current_ayah = next_ayah
                self.tracker.reset_all()
                self._accuracy_sum = 0.0

        self.stage = target
        self.last_feedback = None
        stage_transitions.labels(from_stage=from_stage.value, to_stage=target.value).inc()
        logger.info(f"Surah {self.surah} ayah {self.current_ayah.ayah}: {from_stage.value} -> {target.value}")
        self._emit(
            SessionEventKind.STAGE_CHANGED,
            stage=target,
            previous=from_stage,
            ayah=self.current_ayah.ayah,
            index=self.current_index,
        )

        if target == LearnStage.CONNECT_AYAHS:
            self._start_transitions()
        return target

    def _master_current_ayah(self) -> None:
        tracker = self.tracker
        learned = LearnedAyah(
            surah=self.surah,
            ayah=self.current_ayah.ayah,
            text=self.current_ayah.text,
            mastered_at=datetime.now(UTC),
            attempts=tracker.attempt_count,
            accuracy=self._accuracy_sum / tracker.attempt_count if tracker.attempt_count else 0.0,
            mastery_level=tracker.successful_attempts / tracker.attempt_count * 100 if tracker.attempt_count else 0.0,
        )
        self.learned_ayahs.append(learned)
        ayahs_mastered.inc()
        logger.info(f"Ayah {self.surah}:{learned.ayah} mastered after {learned.attempts} attempts")
        if self.on_ayah_mastered:
            self.on_ayah_mastered(learned)
        self._emit(SessionEventKind.AYAH_MASTERED, ayah=learned)

    def _start_transitions(self) -> None:
        self.transition_session = TransitionPracticeSession(
            self.learned_ayahs,
            self.text_source,
            self.recognizer,
            self.audio_player,
            scorer=self.scorer,
            on_complete=self._on_transitions_complete,
            on_pair_completed=self.on_pair_completed,
        )
        self.transition_session.subscribe(self._forward_event)
        self.transition_session.start()

    def _forward_event(self, event: SessionEvent) -> None:
        self._emit(event.kind, source="transitions", **event.payload)

    def _on_transitions_complete(self) -> None:
        logger.info(f"Learning of surah {self.surah} complete")
        if self.on_complete:
            self.on_complete()

    def play_ayah_audio(self) -> bool:
        return self.play_audio(self.text_source.get_audio_url(self.surah, self.current_ayah.ayah))

    def _expected_text(self) -> str:
        return self.current_ayah.text

    def _handle_transcript(self, transcript: str) -> None:
        if self.stage == LearnStage.LISTEN_SHADOW:
            feedback = self.scorer.generate_listen_shadow_feedback(transcript, self.current_ayah.text)
            self.last_feedback = feedback
            self._emit(SessionEventKind.FEEDBACK, feedback=feedback, transcript=transcript)
            return
        if not self.stage.records_attempts:
            logger.debug(f"Ignoring transcript in {self.stage.value}")
            return

        feedback = self.scorer.generate_detailed_feedback(
            transcript, self.current_ayah.text, self.current_ayah.word_texts
        )
        similarity = text_similarity(transcript, self.current_ayah.text)
        self.last_feedback = feedback
        self._emit(
            SessionEventKind.FEEDBACK,
            feedback=feedback,
            transcript=transcript,
            similarity=similarity,
            quality=self.scorer.quality_from_similarity(similarity, feedback.word_accuracy),
        )
        self.record_attempt(feedback.word_accuracy)

    def record_attempt(self, word_accuracy: float) -> bool:
        """Record a scored attempt in the current stage. Returns whether it was successful."""
        if not self.stage.records_attempts:
            raise StageTransitionError(f"Attempts are not recorded in {self.stage.value}")

        successful = word_accuracy >= self.success_word_accuracy
        self.tracker.record_attempt(successful, word_accuracy)
        self._accuracy_sum += word_accuracy
        recitation_attempts.labels(stage=self.stage.value, outcome="success" if successful else "failure").inc()
        self._emit(
            SessionEventKind.ATTEMPT_RECORDED,
            successful=successful,
            word_accuracy=word_accuracy,
            counters=self.tracker.snapshot(),
            struggling=self.is_struggling,
        )

        if self.auto_advance and self.tracker.is_stage_complete:
            self.advance()
        return successful

    def _on_space(self) -> None:
        if self.stage == LearnStage.AYAH_INTRO:
            self.advance()
        elif self.stage == LearnStage.LISTEN_SHADOW and self._activity == Activity.WAITING_FOR_SPACE:
            self.advance(ready=True)
        elif self.stage == LearnStage.CONNECT_AYAHS:
            if self.transition_session:
                self.transition_session.handle_input(InputEvent.SPACE)
        else:
            super()._on_space()

    def _on_next(self) -> None:
        if self.stage == LearnStage.CONNECT_AYAHS:
            return
        if self.can_advance(ready=self.stage == LearnStage.LISTEN_SHADOW):
            self.advance(ready=True)
        else:
            logger.debug(f"NEXT ignored in {self.stage.value}: stage not complete")

    def _on_play(self) -> None:
        if self.stage == LearnStage.CONNECT_AYAHS:
            if self.transition_session:
                self.transition_session.handle_input(InputEvent.PLAY)
            return
        self.play_ayah_audio()

    def _after_audio_ended(self) -> None:
        # Shadowing starts listening as soon as the reciter finishes
        if self.stage == LearnStage.LISTEN_SHADOW:
            self.start_recognition()

    def close(self) -> None:
        if self.transition_session:
            self.transition_session.close()
        super().close()
