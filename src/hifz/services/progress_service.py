"""Persistence of aggregate learning outcomes."""
import logging
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from hifz.config import settings
from hifz.models.learning_models import LearnedAyah, TransitionPair
from hifz.models.models import LearnSession, MasteredAyah, TransitionRecord, User
from hifz.monitoring import ayah_reviews, db_operations
from hifz.services.review_scheduler import ReviewScheduler, performance_from_accuracy

logger = logging.getLogger(__name__)


class ProgressService:
    """Service for storing sessions, mastered ayahs and transition outcomes."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by telegram ID."""
        return self.db.query(User).filter(User.telegram_id == telegram_id).first()

    def get_or_create_user(self, telegram_id: int, username: Optional[str] = None) -> User:
        """Get existing user or create a new one."""
        user = self.get_user_by_telegram_id(telegram_id)
        if user:
            return user

        user = User(
            telegram_id=telegram_id,
            username=username,
            current_surah=settings.bot.default_surah,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        db_operations.labels(operation_type="create_user").inc()
        logger.info(f"Created user {telegram_id} ({username})")
        return user

    def set_current_surah(self, user_id: int, surah: int) -> None:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ValueError(f"User {user_id} not found")
        user.current_surah = surah
        self.db.commit()

    def start_session(self, user_id: int, surah: int, start_ayah: int, end_ayah: int) -> LearnSession:
        """Open a learning session for a range of ayahs."""
        if start_ayah < 1 or end_ayah < start_ayah:
            raise ValueError(f"Invalid ayah range {start_ayah}-{end_ayah}")

        session = LearnSession(
            user_id=user_id,
            surah=surah,
            start_ayah=start_ayah,
            end_ayah=end_ayah,
            status="in-progress",
            start_time=datetime.now(UTC),
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        db_operations.labels(operation_type="start_session").inc()
        return session

    def _get_session(self, session_id: int) -> LearnSession:
        session = self.db.query(LearnSession).filter(LearnSession.id == session_id).first()
        if not session:
            raise ValueError(f"Session {session_id} not found")
        return session

    def record_mastered_ayah(self, session_id: int, learned: LearnedAyah) -> MasteredAyah:
        """Store an ayah that passed the recall stage and fold it into the session totals."""
        session = self._get_session(session_id)

        # Only the latest mastery of an ayah stays scheduled for review
        self.db.query(MasteredAyah).filter(
            and_(
                MasteredAyah.user_id == session.user_id,
                MasteredAyah.surah == learned.surah,
                MasteredAyah.ayah == learned.ayah,
                MasteredAyah.next_review_due.isnot(None),
            )
        ).update({MasteredAyah.next_review_due: None}, synchronize_session=False)

        initial_interval = settings.review.initial_interval_days
        mastered = MasteredAyah(
            user_id=session.user_id,
            session_id=session.id,
            surah=learned.surah,
            ayah=learned.ayah,
            mastered_at=learned.mastered_at,
            attempts=learned.attempts,
            accuracy=learned.accuracy,
            mastery_level=learned.mastery_level,
            ease=settings.review.initial_ease,
            interval_days=initial_interval,
            next_review_due=learned.mastered_at + timedelta(days=initial_interval),
            review_count=0,
            review_accuracy=1.0,
            review_level="learning",
        )
        self.db.add(mastered)

        # Running average weighted by attempts
        previous_attempts = session.attempt_count or 0
        total_attempts = previous_attempts + learned.attempts
        if total_attempts:
            session.average_accuracy = (
                (session.average_accuracy or 0.0) * previous_attempts + learned.accuracy * learned.attempts
            ) / total_attempts
        session.attempt_count = total_attempts
        session.successful_attempts = (session.successful_attempts or 0) + round(
            learned.attempts * learned.mastery_level / 100
        )
        if learned.ayah >= session.end_ayah:
            session.status = "learn-complete"

        self.db.commit()
        self.db.refresh(mastered)
        db_operations.labels(operation_type="record_mastered_ayah").inc()
        return mastered

    def record_transition(self, user_id: int, pair: TransitionPair) -> TransitionRecord:
        """Create or update the outcome of a transition pair."""
        record = (
            self.db.query(TransitionRecord)
            .filter(
                and_(
                    TransitionRecord.user_id == user_id,
                    TransitionRecord.surah == pair.from_ayah.surah,
                    TransitionRecord.from_ayah == pair.from_ayah.ayah,
                    TransitionRecord.to_ayah == pair.to_ayah.ayah,
                )
            )
            .first()
        )
        if not record:
            record = TransitionRecord(
                user_id=user_id,
                surah=pair.from_ayah.surah,
                from_ayah=pair.from_ayah.ayah,
                to_ayah=pair.to_ayah.ayah,
                perfect_attempts=0,
                completed=False,
            )
            self.db.add(record)

        record.perfect_attempts = max(record.perfect_attempts or 0, pair.perfect_attempts)
        # Completion is permanent
        record.completed = bool(record.completed) or pair.completed
        self.db.commit()
        self.db.refresh(record)
        db_operations.labels(operation_type="record_transition").inc()
        return record

    def complete_session(self, session_id: int) -> None:
        """Mark a session as fully completed."""
        session = self._get_session(session_id)
        session.status = "all-complete"
        session.end_time = datetime.now(UTC)
        self.db.commit()

    def get_mastered_ayahs(self, user_id: int, surah: Optional[int] = None) -> List[MasteredAyah]:
        """Get mastered ayahs, most recent mastery per ayah only."""
        query = self.db.query(MasteredAyah).filter(MasteredAyah.user_id == user_id)
        if surah is not None:
            query = query.filter(MasteredAyah.surah == surah)

        latest: Dict[tuple, MasteredAyah] = {}
        for mastered in query.order_by(MasteredAyah.id).all():
            latest[(mastered.surah, mastered.ayah)] = mastered
        return sorted(latest.values(), key=lambda m: (m.surah, m.ayah))

    def get_next_ayah(self, user_id: int, surah: int) -> int:
        """First ayah of a surah the user has not mastered yet."""
        mastered = {m.ayah for m in self.get_mastered_ayahs(user_id, surah)}
        ayah = 1
        while ayah in mastered:
            ayah += 1
        return ayah

    def get_due_reviews(self, user_id: int, now: Optional[datetime] = None) -> List[MasteredAyah]:
        """Mastered ayahs whose review is due, most overdue first."""
        now = now or datetime.now(UTC)
        return (
            self.db.query(MasteredAyah)
            .filter(
                and_(
                    MasteredAyah.user_id == user_id,
                    MasteredAyah.next_review_due.isnot(None),
                    MasteredAyah.next_review_due <= now,
                )
            )
            .order_by(MasteredAyah.next_review_due, MasteredAyah.surah, MasteredAyah.ayah)
            .all()
        )

    def record_review(self, mastered_id: int, accuracy: float) -> MasteredAyah:
        """Grade a recall of a mastered ayah (word accuracy 0-1) and schedule the next review."""
        mastered = self.db.query(MasteredAyah).filter(MasteredAyah.id == mastered_id).first()
        if not mastered:
            raise ValueError(f"Mastered ayah {mastered_id} not found")

        performance = performance_from_accuracy(accuracy)
        weight = settings.review.accuracy_weight
        previous_accuracy = 1.0 if mastered.review_accuracy is None else mastered.review_accuracy
        review_count = (mastered.review_count or 0) + 1
        average_accuracy = weight * accuracy + (1 - weight) * previous_accuracy
        schedule = ReviewScheduler().next_schedule(
            mastered.ease or settings.review.initial_ease,
            mastered.interval_days or settings.review.initial_interval_days,
            performance,
            review_count,
            average_accuracy,
        )

        now = datetime.now(UTC)
        mastered.ease = schedule.ease
        mastered.interval_days = schedule.interval_days
        mastered.review_level = schedule.level
        mastered.review_count = review_count
        mastered.review_accuracy = average_accuracy
        mastered.last_reviewed_at = now
        mastered.next_review_due = now + timedelta(days=schedule.interval_days)
        self.db.commit()
        self.db.refresh(mastered)

        ayah_reviews.labels(performance=performance.value).inc()
        db_operations.labels(operation_type="record_review").inc()
        logger.info(
            f"Review of {mastered.surah}:{mastered.ayah} graded {performance.value}, "
            f"next in {schedule.interval_days} days"
        )
        return mastered

    def get_statistics(self, user_id: int) -> Dict[str, float]:
        """Aggregate statistics for a user."""
        mastered = self.get_mastered_ayahs(user_id)
        sessions = self.db.query(LearnSession).filter(LearnSession.user_id == user_id).all()
        transitions = (
            self.db.query(TransitionRecord)
            .filter(and_(TransitionRecord.user_id == user_id, TransitionRecord.completed.is_(True)))
            .count()
        )
        total_attempts = sum(s.attempt_count or 0 for s in sessions)
        successful = sum(s.successful_attempts or 0 for s in sessions)
        return {
            "ayahs_mastered": len(mastered),
            "sessions": len(sessions),
            "completed_sessions": sum(1 for s in sessions if s.status == "all-complete"),
            "transitions_completed": transitions,
            "reviews_due": len(self.get_due_reviews(user_id)),
            "total_attempts": total_attempts,
            "success_rate": successful / total_attempts * 100 if total_attempts else 0.0,
            "average_accuracy": (
                sum(m.accuracy or 0.0 for m in mastered) / len(mastered) if mastered else 0.0
            ),
        }
