"""Tests for configuration settings."""
from dataclasses import replace

import pytest

from hifz.config import Settings, settings


def test_base_directories_exist():
    """Test that all required directories exist."""
    from hifz.config import DATA_DIR, SURAHS_DIR

    assert DATA_DIR.exists()
    assert SURAHS_DIR.exists()
    assert (SURAHS_DIR / "112.json").exists()


def test_settings_defaults():
    """Test default settings values."""
    assert settings.learning.required_repetitions == 3
    assert settings.learning.perfect_word_accuracy == 0.95
    assert settings.learning.success_word_accuracy == 0.6
    assert settings.transition.required_perfect_attempts == 2
    assert settings.transition.min_similarity == 0.90
    assert settings.transition.min_word_accuracy == 0.90
    assert settings.transition.context_words == 3
    assert settings.scoring.word_match_threshold == 0.6
    assert settings.bot.default_surah == 112
    assert settings.review.initial_interval_days == 1
    assert settings.review.max_interval_days == 180


def test_validate_accepts_defaults():
    """Test that the default settings validate without a token."""
    Settings().validate()


def test_validate_requires_token_for_bot():
    """Test that the bot token is only required when asked for."""
    test_settings = Settings()
    test_settings.bot = replace(test_settings.bot, token="")
    with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
        test_settings.validate(require_token=True)

    test_settings.bot = replace(test_settings.bot, token="test_token_123")
    test_settings.validate(require_token=True)


@pytest.mark.parametrize(
    "section, field, value, message",
    [
        ("learning", "required_repetitions", 0, "REQUIRED_REPETITIONS"),
        ("learning", "perfect_word_accuracy", 1.5, "PERFECT_WORD_ACCURACY"),
        ("learning", "success_word_accuracy", 0.99, "SUCCESS_WORD_ACCURACY"),
        ("transition", "required_perfect_attempts", 0, "TRANSITION_PERFECT_ATTEMPTS"),
        ("transition", "min_similarity", -0.1, "TRANSITION_MIN_SIMILARITY"),
        ("transition", "context_words", 0, "TRANSITION_CONTEXT_WORDS"),
        ("bot", "ayahs_per_session", 0, "AYAHS_PER_SESSION"),
        ("review", "initial_interval_days", 0, "REVIEW_INITIAL_INTERVAL_DAYS"),
        ("review", "max_interval_days", 0, "REVIEW_MAX_INTERVAL_DAYS"),
    ],
)
def test_validate_rejects_invalid_values(section, field, value, message):
    """Test that invalid values are rejected with a named setting."""
    test_settings = Settings()
    setattr(test_settings, section, replace(getattr(test_settings, section), **{field: value}))
    with pytest.raises(ValueError, match=message):
        test_settings.validate()
