"""Attempt tracking for a single practice stage."""
import logging
from typing import Optional

from hifz.config import settings
from hifz.models.learning_models import AttemptRecord, StageCounters


logger = logging.getLogger(__name__)


class StageProgressTracker:
    """Tracks repeated attempts toward mastering one stage of one ayah.

    Totals (``attempt_count``, ``successful_attempts``, ``perfect_attempts``)
    survive ``reset_stage``; everything prefixed with ``stage_`` plus the
    consecutive-perfect streak is cleared on every stage transition.
    """

    def __init__(
        self,
        required_repetitions: Optional[int] = None,
        perfect_word_accuracy: Optional[float] = None,
        struggling_attempts: Optional[int] = None,
    ):
        if required_repetitions is None:
            required_repetitions = settings.learning.required_repetitions
        if required_repetitions < 1:
            raise ValueError("required_repetitions must be positive")

        self.required_repetitions = required_repetitions
        self.perfect_word_accuracy = (
            settings.learning.perfect_word_accuracy if perfect_word_accuracy is None else perfect_word_accuracy
        )
        self.struggling_attempts = (
            settings.learning.struggling_attempts if struggling_attempts is None else struggling_attempts
        )
        self.reset_all()

    def record_attempt(self, successful: bool, word_accuracy: float = 0.0) -> None:
        """Record an attempt and recompute stage progress."""
        self.attempt_count += 1
        self.stage_attempt_count += 1

        if successful:
            self.successful_attempts += 1
            self.stage_successful_attempts += 1

            if word_accuracy >= self.perfect_word_accuracy:
                self.perfect_attempts += 1
                self.consecutive_perfect_attempts += 1
            else:
                self.consecutive_perfect_attempts = 0
        else:
            self.consecutive_perfect_attempts = 0

        # Counters are already updated here
        self.stage_progress = min(100.0, self.stage_successful_attempts / self.required_repetitions * 100)
        self.previous_word_accuracy = word_accuracy

        logger.debug(
            f"Attempt recorded: successful={successful}, word_accuracy={word_accuracy:.2f}, "
            f"stage {self.stage_successful_attempts}/{self.required_repetitions}, progress={self.stage_progress:.1f}"
        )

    def record(self, attempt: AttemptRecord) -> None:
        self.record_attempt(attempt.successful, attempt.word_accuracy)

    def reset_stage(self) -> None:
        """Zero stage-scoped counters, keeping cross-stage totals."""
        self.stage_attempt_count = 0
        self.stage_successful_attempts = 0
        self.stage_progress = 0.0
        self.consecutive_perfect_attempts = 0

    def reset_all(self) -> None:
        """Zero every counter; used when moving to a new ayah."""
        self.attempt_count = 0
        self.successful_attempts = 0
        self.perfect_attempts = 0
        self.previous_word_accuracy = 0.0
        self.reset_stage()

    @property
    def is_stage_complete(self) -> bool:
        return self.stage_successful_attempts >= self.required_repetitions

    @property
    def success_rate(self) -> float:
        """Percentage of successful attempts in the current stage, 0 without attempts."""
        if self.stage_attempt_count == 0:
            return 0.0
        return self.stage_successful_attempts / self.stage_attempt_count * 100

    @property
    def is_struggling(self) -> bool:
        """Learner keeps failing the current stage. Display only."""
        return self.stage_attempt_count >= self.struggling_attempts and self.stage_successful_attempts == 0

    def snapshot(self) -> StageCounters:
        """Get an immutable copy of all counters."""
        return StageCounters(
            attempt_count=self.attempt_count,
            successful_attempts=self.successful_attempts,
            stage_attempt_count=self.stage_attempt_count,
            stage_successful_attempts=self.stage_successful_attempts,
            perfect_attempts=self.perfect_attempts,
            consecutive_perfect_attempts=self.consecutive_perfect_attempts,
            stage_progress=self.stage_progress,
            previous_word_accuracy=self.previous_word_accuracy,
        )

    def __repr__(self) -> str:
        return (
            f"StageProgressTracker(stage={self.stage_successful_attempts}/{self.stage_attempt_count}, "
            f"total={self.successful_attempts}/{self.attempt_count}, progress={self.stage_progress:.0f})"
        )
