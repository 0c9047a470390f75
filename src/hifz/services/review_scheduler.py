"""Spaced-repetition scheduling of mastered ayahs."""
import logging
import math
from typing import Optional

from hifz.config import settings
from hifz.models.learning_models import ReviewPerformance, ReviewSchedule


logger = logging.getLogger(__name__)

# Lower accuracy bound (0-1) of each performance, checked top-down
PERFORMANCE_BOUNDS = [
    (0.95, ReviewPerformance.PERFECT),
    (0.85, ReviewPerformance.GOOD),
    (0.70, ReviewPerformance.OKAY),
    (0.50, ReviewPerformance.STRUGGLED),
]


def performance_from_accuracy(accuracy: float) -> ReviewPerformance:
    """Grade a recall from its word accuracy (0-1)."""
    for bound, performance in PERFORMANCE_BOUNDS:
        if accuracy >= bound:
            return performance
    return ReviewPerformance.FORGOT


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ReviewScheduler:
    """Anki-style scheduler: the ease grows with good recalls and the interval with the ease."""

    def __init__(
        self,
        min_ease: Optional[float] = None,
        max_ease: Optional[float] = None,
        max_interval_days: Optional[int] = None,
    ):
        self.min_ease = settings.review.min_ease if min_ease is None else min_ease
        self.max_ease = settings.review.max_ease if max_ease is None else max_ease
        self.max_interval_days = (
            settings.review.max_interval_days if max_interval_days is None else max_interval_days
        )

    def next_schedule(
        self,
        ease: float,
        interval_days: int,
        performance: ReviewPerformance,
        review_count: int,
        average_accuracy: float,
    ) -> ReviewSchedule:
        """Ease and interval after a graded review.

        ``review_count`` and ``average_accuracy`` already include the
        review being graded.
        """
        if performance == ReviewPerformance.PERFECT:
            ease = min(ease + 0.15, self.max_ease)
            interval = round_half_up(interval_days * ease)
        elif performance == ReviewPerformance.GOOD:
            ease = min(ease + 0.05, self.max_ease)
            interval = round_half_up(interval_days * ease)
        elif performance == ReviewPerformance.OKAY:
            interval = round_half_up(interval_days * ease * 0.8)
        elif performance == ReviewPerformance.STRUGGLED:
            ease = max(ease - 0.15, self.min_ease)
            interval = max(round_half_up(interval_days * 0.5), 1)
        else:
            ease = max(ease - 0.2, self.min_ease)
            interval = 1

        interval = max(1, min(interval, self.max_interval_days))
        level = self.review_level(interval, review_count, average_accuracy)
        logger.debug(f"Review {performance.value}: interval {interval_days} -> {interval} days, ease {ease:.2f}")
        return ReviewSchedule(ease=ease, interval_days=interval, level=level)

    @staticmethod
    def review_level(interval_days: int, review_count: int, average_accuracy: float) -> str:
        """Retention level from interval, number of reviews and average accuracy (0-1)."""
        if interval_days >= 90 and review_count >= 5 and average_accuracy >= 0.9:
            return "mastered"
        if interval_days >= 21 and review_count >= 3:
            return "mature"
        if interval_days >= 7:
            return "young"
        return "learning"
