"""Models for learning-related data structures."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LearnStage(Enum):
    """Practice stages applied to a single ayah."""
    AYAH_INTRO = "ayah-intro"
    LISTEN_SHADOW = "listen-shadow"
    READ_RECITE = "read-recite"
    RECALL_MEMORY = "recall-memory"
    CONNECT_AYAHS = "connect-ayahs"

    @property
    def title(self) -> str:
        return STAGE_TITLES[self]

    @property
    def description(self) -> str:
        return STAGE_DESCRIPTIONS[self]

    @property
    def records_attempts(self) -> bool:
        """Whether recitations in this stage count toward the tracker."""
        return self in (LearnStage.READ_RECITE, LearnStage.RECALL_MEMORY)


STAGE_TITLES = {
    LearnStage.AYAH_INTRO: "New Āyah",
    LearnStage.LISTEN_SHADOW: "Listen & Shadow",
    LearnStage.READ_RECITE: "Read & Recite",
    LearnStage.RECALL_MEMORY: "Recall from Memory",
    LearnStage.CONNECT_AYAHS: "Connect Āyāt",
}

STAGE_DESCRIPTIONS = {
    LearnStage.AYAH_INTRO: "Take a moment to familiarize yourself with this āyah",
    LearnStage.LISTEN_SHADOW: "Listen to the recitation and repeat along until you feel comfortable",
    LearnStage.READ_RECITE: "Recite while looking at the Arabic text until you master it without hesitation",
    LearnStage.RECALL_MEMORY: "Recite from memory as words appear to confirm you've truly memorized it",
    LearnStage.CONNECT_AYAHS: "Practice smooth transitions between consecutive āyāt",
}


class Activity(Enum):
    """Mutually exclusive activity of a practice session."""
    IDLE = "idle"
    WAITING_FOR_SPACE = "waiting_for_space"
    RECITING = "reciting"
    PLAYING_AUDIO = "playing_audio"


class InputEvent(Enum):
    """Learner input handled by the session dispatcher."""
    SPACE = "space"  # ready / start reciting / stop reciting
    NEXT = "next"  # advance to the next stage when allowed
    PLAY = "play"  # play the reference recitation


class SessionEventKind(Enum):
    """Notifications emitted to session observers."""
    STAGE_CHANGED = "stage_changed"
    ACTIVITY_CHANGED = "activity_changed"
    ATTEMPT_RECORDED = "attempt_recorded"
    FEEDBACK = "feedback"
    AYAH_MASTERED = "ayah_mastered"
    PAIR_CHANGED = "pair_changed"
    COMPLETED = "completed"
    ERROR = "error"


class ReviewPerformance(Enum):
    """How well a mastered ayah was recalled during review."""
    PERFECT = "perfect"
    GOOD = "good"
    OKAY = "okay"
    STRUGGLED = "struggled"
    FORGOT = "forgot"


@dataclass
class SessionEvent:
    """Event delivered to session observers."""
    kind: SessionEventKind
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WordToken:
    """A single word of an ayah."""
    text: str
    transliteration: str = ""
    position: int = 0


@dataclass(frozen=True)
class AyahText:
    """Read-only text of an ayah as supplied by a text source."""
    surah: int
    ayah: int
    text: str
    transliteration: str = ""
    words: Tuple[WordToken, ...] = ()

    @property
    def word_texts(self) -> List[str]:
        if self.words:
            return [word.text for word in self.words]
        return self.text.split()

    def first_words(self, count: int) -> str:
        return " ".join(self.word_texts[:count])

    def last_words(self, count: int) -> str:
        return " ".join(self.word_texts[-count:])


@dataclass
class AttemptRecord:
    """Outcome of one recitation attempt."""
    successful: bool
    word_accuracy: float = 0.0


@dataclass(frozen=True)
class StageCounters:
    """Snapshot of a stage tracker's counters."""
    attempt_count: int = 0
    successful_attempts: int = 0
    stage_attempt_count: int = 0
    stage_successful_attempts: int = 0
    perfect_attempts: int = 0
    consecutive_perfect_attempts: int = 0
    stage_progress: float = 0.0
    previous_word_accuracy: float = 0.0


@dataclass
class ScoreResult:
    """Similarity and word accuracy of a transcript."""
    similarity: float
    word_accuracy: float


@dataclass
class QualityResult:
    """Strict grade of a recognition result."""
    quality: str  # perfect, good, fair, poor
    progress_increment: int


@dataclass
class DetailedFeedback:
    """Word-level feedback for a recitation attempt."""
    feedback: str
    mistakes: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    correct_words: List[str] = field(default_factory=list)
    word_accuracy: float = 0.0


@dataclass
class ListenShadowFeedback:
    """Character-level feedback for the listen and shadow stage."""
    feedback: str
    mistakes: List[str] = field(default_factory=list)
    missed_chars: List[str] = field(default_factory=list)
    letter_accuracy: float = 0.0


@dataclass
class LearnedAyah:
    """Ayah that passed the recall stage in the current session."""
    surah: int
    ayah: int
    text: str
    mastered_at: datetime
    attempts: int = 0
    accuracy: float = 0.0
    mastery_level: float = 0.0


@dataclass
class TransitionPair:
    """Boundary between two consecutively mastered ayahs."""
    from_ayah: LearnedAyah
    to_ayah: LearnedAyah
    from_ending: str
    to_beginning: str
    completed: bool = False
    perfect_attempts: int = 0
    audio_url: Optional[str] = None


@dataclass(frozen=True)
class ReviewSchedule:
    """Next review of a mastered ayah after grading a recall."""
    ease: float
    interval_days: int
    level: str  # learning, young, mature, mastered
