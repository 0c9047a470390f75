"""Database models for aggregate learning outcomes."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from hifz.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """User model."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(Integer, unique=True, nullable=False)
    username = Column(String, nullable=True)
    current_surah = Column(Integer, default=112)

    # Relationships
    sessions = relationship("LearnSession", back_populates="user")
    mastered_ayahs = relationship("MasteredAyah", back_populates="user")
    transitions = relationship("TransitionRecord", back_populates="user")


class LearnSession(Base, TimestampMixin):
    """One pass over a range of ayahs, from the first intro to connect-ayahs."""

    __tablename__ = "learn_sessions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    surah = Column(Integer, nullable=False)
    start_ayah = Column(Integer, nullable=False)
    end_ayah = Column(Integer, nullable=False)
    status = Column(String, default="in-progress")  # in-progress, learn-complete, all-complete
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    attempt_count = Column(Integer, default=0)
    successful_attempts = Column(Integer, default=0)
    average_accuracy = Column(Float, default=0.0)  # 0-1

    # Relationships
    user = relationship("User", back_populates="sessions")
    mastered_ayahs = relationship("MasteredAyah", back_populates="session")


class MasteredAyah(Base, TimestampMixin):
    """Ayah that passed the recall stage."""

    __tablename__ = "mastered_ayahs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(Integer, ForeignKey("learn_sessions.id"), nullable=True)
    surah = Column(Integer, nullable=False)
    ayah = Column(Integer, nullable=False)
    mastered_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, default=0)
    accuracy = Column(Float, default=0.0)  # 0-1
    mastery_level = Column(Float, default=0.0)  # 0-100

    # Spaced repetition; only the latest mastery of an ayah is scheduled
    ease = Column(Float, default=2.5)
    interval_days = Column(Integer, default=1)
    next_review_due = Column(DateTime(timezone=True), nullable=True)
    last_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_count = Column(Integer, default=0)
    review_accuracy = Column(Float, default=1.0)  # 0-1, moving average
    review_level = Column(String, default="learning")  # learning, young, mature, mastered

    # Relationships
    user = relationship("User", back_populates="mastered_ayahs")
    session = relationship("LearnSession", back_populates="mastered_ayahs")


class TransitionRecord(Base, TimestampMixin):
    """Outcome of practicing the boundary between two ayahs."""

    __tablename__ = "transition_records"
    __table_args__ = (UniqueConstraint("user_id", "surah", "from_ayah", "to_ayah"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    surah = Column(Integer, nullable=False)
    from_ayah = Column(Integer, nullable=False)
    to_ayah = Column(Integer, nullable=False)
    perfect_attempts = Column(Integer, default=0)
    completed = Column(Boolean, default=False)

    # Relationships
    user = relationship("User", back_populates="transitions")
