"""Configuration settings for the memorization engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
PACKAGE_DATA_DIR = Path(__file__).parent / "data"
DATA_DIR = Path(os.getenv("DATA_DIR", str(PACKAGE_DATA_DIR)))
SURAHS_DIR = DATA_DIR / "surahs"

# Learning settings
REQUIRED_REPETITIONS = 3  # successful attempts needed to finish a stage
PERFECT_WORD_ACCURACY = 0.95  # stage attempt counts as perfect from here
SUCCESS_WORD_ACCURACY = 0.6  # stage attempt counts as successful from here
STRUGGLING_ATTEMPTS = 5  # attempts without success before the warning


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        SURAHS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    surahs_dir: Path = SURAHS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///hifz.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class BotSettings:
    """Bot configuration settings."""
    token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    default_surah: int = int(os.getenv("DEFAULT_SURAH", "112"))
    ayahs_per_session: int = int(os.getenv("AYAHS_PER_SESSION", "3"))


@dataclass
class LearningSettings:
    """Stage progression settings."""
    required_repetitions: int = int(os.getenv("REQUIRED_REPETITIONS", str(REQUIRED_REPETITIONS)))
    perfect_word_accuracy: float = float(os.getenv("PERFECT_WORD_ACCURACY", str(PERFECT_WORD_ACCURACY)))
    success_word_accuracy: float = float(os.getenv("SUCCESS_WORD_ACCURACY", str(SUCCESS_WORD_ACCURACY)))
    struggling_attempts: int = int(os.getenv("STRUGGLING_ATTEMPTS", str(STRUGGLING_ATTEMPTS)))


@dataclass
class ScoringSettings:
    """Recitation scoring thresholds."""
    word_match_threshold: float = 0.6  # word counts as recognized above this similarity
    partial_match_threshold: float = 0.5  # word is reported as mispronounced above this
    passing_word_accuracy: float = 0.7
    listen_shadow_mistake_ratio: float = 0.3


@dataclass
class TransitionSettings:
    """Transition-pair practice settings."""
    required_perfect_attempts: int = int(os.getenv("TRANSITION_PERFECT_ATTEMPTS", "2"))
    min_similarity: float = float(os.getenv("TRANSITION_MIN_SIMILARITY", "0.90"))
    min_word_accuracy: float = float(os.getenv("TRANSITION_MIN_WORD_ACCURACY", "0.90"))
    context_words: int = int(os.getenv("TRANSITION_CONTEXT_WORDS", "3"))


@dataclass
class AudioSettings:
    """Reference recitation audio settings."""
    base_url: str = os.getenv("RECITATION_BASE_URL", "https://everyayah.com/data/MaherAlMuaiqly128kbps")


@dataclass
class ReviewSettings:
    """Spaced repetition of mastered ayahs."""
    initial_ease: float = 2.5
    initial_interval_days: int = int(os.getenv("REVIEW_INITIAL_INTERVAL_DAYS", "1"))
    max_interval_days: int = int(os.getenv("REVIEW_MAX_INTERVAL_DAYS", "180"))
    min_ease: float = 1.3
    max_ease: float = 3.5
    accuracy_weight: float = 0.3  # weight of the latest recall in the moving average


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    port: Optional[int] = int(os.getenv("METRICS_PORT")) if os.getenv("METRICS_PORT") else None


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_bot_settings() -> BotSettings:
    """Get bot settings."""
    return BotSettings()


def get_learning_settings() -> LearningSettings:
    """Get learning settings."""
    return LearningSettings()


def get_scoring_settings() -> ScoringSettings:
    """Get scoring settings."""
    return ScoringSettings()


def get_transition_settings() -> TransitionSettings:
    """Get transition settings."""
    return TransitionSettings()


def get_audio_settings() -> AudioSettings:
    """Get audio settings."""
    return AudioSettings()


def get_review_settings() -> ReviewSettings:
    """Get review settings."""
    return ReviewSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    bot: BotSettings = field(default_factory=get_bot_settings)
    learning: LearningSettings = field(default_factory=get_learning_settings)
    scoring: ScoringSettings = field(default_factory=get_scoring_settings)
    transition: TransitionSettings = field(default_factory=get_transition_settings)
    audio: AudioSettings = field(default_factory=get_audio_settings)
    review: ReviewSettings = field(default_factory=get_review_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self, require_token: bool = False) -> None:
        """Validate settings and raise ValueError if invalid."""
        if require_token and not self.bot.token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")

        if self.learning.required_repetitions < 1:
            raise ValueError("REQUIRED_REPETITIONS must be positive")

        for name, value in (
            ("PERFECT_WORD_ACCURACY", self.learning.perfect_word_accuracy),
            ("SUCCESS_WORD_ACCURACY", self.learning.success_word_accuracy),
            ("TRANSITION_MIN_SIMILARITY", self.transition.min_similarity),
            ("TRANSITION_MIN_WORD_ACCURACY", self.transition.min_word_accuracy),
        ):
            if value < 0 or value > 1:
                raise ValueError(f"{name} must be between 0 and 1")

        if self.learning.success_word_accuracy > self.learning.perfect_word_accuracy:
            raise ValueError("SUCCESS_WORD_ACCURACY cannot be greater than PERFECT_WORD_ACCURACY")

        if self.transition.required_perfect_attempts < 1:
            raise ValueError("TRANSITION_PERFECT_ATTEMPTS must be positive")

        if self.bot.ayahs_per_session < 1:
            raise ValueError("AYAHS_PER_SESSION must be positive")

        if self.transition.context_words < 1:
            raise ValueError("TRANSITION_CONTEXT_WORDS must be positive")

        if self.review.initial_interval_days < 1:
            raise ValueError("REVIEW_INITIAL_INTERVAL_DAYS must be positive")

        if self.review.max_interval_days < self.review.initial_interval_days:
            raise ValueError("REVIEW_MAX_INTERVAL_DAYS cannot be less than REVIEW_INITIAL_INTERVAL_DAYS")


# Create global settings instance
settings = Settings()
settings.validate()
