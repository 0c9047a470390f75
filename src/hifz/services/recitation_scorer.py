"""Scoring of recognized recitations against the expected ayah text."""
import logging
import re
from typing import List, Optional, Sequence, Set, Tuple

from rapidfuzz.distance import Levenshtein

from hifz.config import settings
from hifz.models.learning_models import (
    DetailedFeedback,
    ListenShadowFeedback,
    QualityResult,
    ScoreResult,
)
from hifz.monitoring import scoring_duration


logger = logging.getLogger(__name__)

TASHKEEL_PATTERN = re.compile(r"[\u064B-\u065F\u0670]")
ALEF_PATTERN = re.compile(r"[\u0622\u0623\u0625\u0671]")
TATWEEL = "\u0640"

# Quality tiers as (lower bound, tier, message), checked top-down
QUALITY_TIERS = [
    (0.95, "perfect", "Perfect! ✨"),
    (0.80, "great", "Great! 👍"),
    (0.60, "good", "Good"),
    (0.30, "keep trying", "Keep trying"),
]
LOWEST_TIER = ("try again", "Try again")

# Letters learners commonly swap, as (letter, confused with, name)
COMMON_CONFUSIONS = [
    ("ض", "ظ", "Ḍād vs Ẓā'"),
    ("ص", "س", "Ṣād vs Sīn"),
    ("ط", "ت", "Ṭā' vs Tā'"),
    ("ق", "ك", "Qāf vs Kāf"),
    ("ع", "ا", "'Ayn vs Hamza"),
    ("غ", "خ", "Ghayn vs Khā'"),
    ("ح", "ه", "Ḥā' vs Hā'"),
    ("ذ", "ز", "Dhāl vs Zāy"),
]


def normalize_arabic_text(text: str) -> str:
    """Normalize Arabic text for comparison.

    Removes tashkeel and tatweel, unifies alef variants, maps teh marbuta
    to heh, collapses whitespace and lowercases (transliterations compare
    case-insensitively).
    """
    if not text:
        return ""
    text = TASHKEEL_PATTERN.sub("", text)
    text = ALEF_PATTERN.sub("ا", text)
    text = text.replace("ة", "ه").replace(TATWEEL, "")
    return " ".join(text.split()).lower()


def text_similarity(recognized: str, expected: str) -> float:
    """Similarity from 0 (completely different) to 1 (identical after normalization)."""
    normalized_recognized = normalize_arabic_text(recognized)
    normalized_expected = normalize_arabic_text(expected)

    if normalized_recognized == normalized_expected:
        return 1.0

    # 1 - distance / length of the longer text
    return Levenshtein.normalized_similarity(normalized_recognized, normalized_expected)


def split_words(text: str) -> List[str]:
    return [word for word in normalize_arabic_text(text).split(" ") if word]


def analyze_character_differences(expected: str, recognized: str) -> List[str]:
    """Describe position-wise character differences between two words."""
    mistakes = []
    for i in range(max(len(expected), len(recognized))):
        expected_char = expected[i] if i < len(expected) else ""
        recognized_char = recognized[i] if i < len(recognized) else ""
        if expected_char == recognized_char:
            continue
        if expected_char and recognized_char:
            mistakes.append(f'Character {i + 1}: "{expected_char}" → "{recognized_char}"')
        elif expected_char:
            mistakes.append(f'Missing character {i + 1}: "{expected_char}"')
        else:
            mistakes.append(f'Extra character {i + 1}: "{recognized_char}"')
    return mistakes


def analyze_arabic_mistakes(recognized: str, expected: str) -> List[str]:
    """Hint at commonly confused letters, given normalized texts."""
    mistakes = []
    for letter, other, name in COMMON_CONFUSIONS:
        swapped = (
            recognized.count(letter) > expected.count(letter) and expected.count(other) > recognized.count(other)
        ) or (
            recognized.count(other) > expected.count(other) and expected.count(letter) > recognized.count(letter)
        )
        if swapped:
            mistakes.append(f"Check {name} pronunciation")
    return mistakes


class RecitationScorer:
    """Computes similarity, word accuracy and feedback for recitation attempts."""

    def __init__(
        self,
        word_match_threshold: Optional[float] = None,
        partial_match_threshold: Optional[float] = None,
        passing_word_accuracy: Optional[float] = None,
    ):
        self.word_match_threshold = (
            settings.scoring.word_match_threshold if word_match_threshold is None else word_match_threshold
        )
        self.partial_match_threshold = (
            settings.scoring.partial_match_threshold if partial_match_threshold is None else partial_match_threshold
        )
        self.passing_word_accuracy = (
            settings.scoring.passing_word_accuracy if passing_word_accuracy is None else passing_word_accuracy
        )

    def score(
        self, transcript: str, expected_words: Sequence[str], expected_text: Optional[str] = None
    ) -> ScoreResult:
        """Score a transcript against the expected words."""
        if expected_text is None:
            expected_text = " ".join(expected_words)
        return ScoreResult(
            similarity=text_similarity(transcript, expected_text),
            word_accuracy=self.word_accuracy(transcript, expected_words),
        )

    def word_accuracy(self, transcript: str, expected_words: Sequence[str]) -> float:
        """Fraction of expected words found in the transcript."""
        if not expected_words:
            return 0.0

        recognized_words = split_words(transcript)
        matched: Set[int] = set()
        correct_words = 0

        for expected_word in expected_words:
            index, _ = self._best_match(normalize_arabic_text(expected_word), recognized_words, matched,
                                        self.word_match_threshold)
            if index >= 0:
                correct_words += 1
                matched.add(index)

        accuracy = correct_words / len(expected_words)
        logger.debug(f"Word accuracy: {correct_words}/{len(expected_words)} = {accuracy:.2f}")
        return accuracy

    def letter_accuracy(self, transcript: str, expected_text: str) -> float:
        """Position-wise character accuracy, ignoring spaces."""
        recognized_chars = normalize_arabic_text(transcript).replace(" ", "")
        expected_chars = normalize_arabic_text(expected_text).replace(" ", "")
        if not expected_chars:
            return 0.0
        correct_chars = sum(1 for a, b in zip(recognized_chars, expected_chars) if a == b)
        return correct_chars / len(expected_chars)

    @staticmethod
    def classify_tier(similarity: float) -> str:
        """Quality tier name; every lower bound is inclusive."""
        for bound, tier, _ in QUALITY_TIERS:
            if similarity >= bound:
                return tier
        return LOWEST_TIER[0]

    @staticmethod
    def classify(similarity: float) -> str:
        """Short feedback message for a similarity score."""
        for bound, _, message in QUALITY_TIERS:
            if similarity >= bound:
                return message
        return LOWEST_TIER[1]

    def quality_from_similarity(self, similarity: float, word_accuracy: Optional[float] = None) -> QualityResult:
        """Strict grade for a recognition result.

        Nothing is awarded below 30% similarity or below the passing word
        accuracy. A perfect grade is worth 34 so three of them reach 100.
        """
        if similarity < 0.30:
            return QualityResult("poor", 0)
        if word_accuracy is not None and word_accuracy < self.passing_word_accuracy:
            return QualityResult("poor", 0)

        def meets(bound: float) -> bool:
            return similarity >= bound and (word_accuracy is None or word_accuracy >= bound)

        if meets(0.95):
            return QualityResult("perfect", 34)
        if meets(0.90):
            return QualityResult("good", 20)
        if meets(0.80):
            return QualityResult("fair", 10)
        return QualityResult("poor", 5)

    def generate_detailed_feedback(
        self, transcript: str, expected_text: str, expected_words: Optional[Sequence[str]] = None
    ) -> DetailedFeedback:
        """Word-by-word analysis of a recitation attempt."""
        with scoring_duration.time():
            if expected_words is None:
                expected_words = expected_text.split()
            normalized_recognized = normalize_arabic_text(transcript)
            normalized_expected = normalize_arabic_text(expected_text)
            normalized_expected_words = [normalize_arabic_text(word) for word in expected_words]

            mistakes: List[str] = []
            suggestions: List[str] = []
            correct_words: List[str] = []

            word_accuracy = self.word_accuracy(transcript, expected_words)
            recognized_words = split_words(transcript)
            matched_expected: Set[int] = set()
            matched_recognized: Set[int] = set()

            # Exact matches first
            for i, expected_word in enumerate(normalized_expected_words):
                for j, recognized_word in enumerate(recognized_words):
                    if j in matched_recognized:
                        continue
                    if expected_word == recognized_word:
                        correct_words.append(expected_word)
                        matched_expected.add(i)
                        matched_recognized.add(j)
                        break

            # Then partial matches for what is left
            for i, expected_word in enumerate(normalized_expected_words):
                if i in matched_expected:
                    continue
                index, _ = self._best_match(expected_word, recognized_words, matched_recognized,
                                            self.partial_match_threshold)
                if index < 0:
                    mistakes.append(f'Missing word: "{expected_word}"')
                    continue
                recognized_word = recognized_words[index]
                char_mistakes = analyze_character_differences(expected_word, recognized_word)
                if char_mistakes:
                    mistakes.append(f'"{expected_word}" → "{recognized_word}": {", ".join(char_mistakes)}')
                else:
                    mistakes.append(f'"{expected_word}" pronounced as "{recognized_word}"')
                matched_expected.add(i)
                matched_recognized.add(index)

            for j, recognized_word in enumerate(recognized_words):
                if j not in matched_recognized:
                    mistakes.append(f'Extra word: "{recognized_word}"')

            if word_accuracy < self.passing_word_accuracy:
                suggestions.append(
                    f"You need at least {self.passing_word_accuracy * 100:.0f}% word accuracy. "
                    f"You got {word_accuracy * 100:.0f}%"
                )
            if correct_words:
                suggestions.append('Correct words: "' + '", "'.join(correct_words) + '"')
            if mistakes:
                suggestions.append("Focus on the specific mistakes listed above")

            letter_mistakes = analyze_arabic_mistakes(normalized_recognized, normalized_expected)
            if letter_mistakes:
                mistakes.extend(letter_mistakes)
                suggestions.append("Pay attention to Arabic letter pronunciation")

            if word_accuracy >= 0.95 and not mistakes:
                feedback = "Perfect! All words and characters correct."
            elif word_accuracy >= self.passing_word_accuracy:
                feedback = f"Good attempt! {word_accuracy * 100:.0f}% word accuracy."
            else:
                feedback = f"Keep trying! Only {word_accuracy * 100:.0f}% word accuracy. Recite the correct āyah."

        return DetailedFeedback(
            feedback=feedback,
            mistakes=mistakes,
            suggestions=suggestions,
            correct_words=correct_words,
            word_accuracy=word_accuracy,
        )

    def generate_listen_shadow_feedback(self, transcript: str, expected_text: str) -> ListenShadowFeedback:
        """Character-level feedback used while shadowing the reciter."""
        normalized_recognized = normalize_arabic_text(transcript)
        normalized_expected = normalize_arabic_text(expected_text)
        recognized_chars = normalized_recognized.replace(" ", "")
        expected_chars = normalized_expected.replace(" ", "")

        letter_accuracy = self.letter_accuracy(transcript, expected_text)
        mistakes: List[str] = []
        missed_chars: List[str] = []

        for i in range(max(len(recognized_chars), len(expected_chars))):
            expected_char = expected_chars[i] if i < len(expected_chars) else ""
            recognized_char = recognized_chars[i] if i < len(recognized_chars) else ""
            if expected_char and recognized_char:
                if expected_char != recognized_char:
                    missed_chars.append(expected_char)
                    mistakes.append(f'Pronounced "{recognized_char}" instead of "{expected_char}"')
            elif expected_char:
                missed_chars.append(expected_char)
                mistakes.append(f'Missing "{expected_char}"')
            else:
                mistakes.append(f'Extra "{recognized_char}"')

        mistakes.extend(analyze_arabic_mistakes(normalized_recognized, normalized_expected))

        mistake_ratio = len(mistakes) / len(expected_chars) if expected_chars else 1.0
        if mistake_ratio > settings.scoring.listen_shadow_mistake_ratio:
            return ListenShadowFeedback(
                feedback="You got many letters wrong. Please recite the correct āyah.",
                mistakes=["Too many mistakes - please try reciting the āyah correctly"],
                missed_chars=[],
                letter_accuracy=letter_accuracy,
            )

        if letter_accuracy >= 0.85 and not mistakes:
            feedback = "Perfect! All characters correct."
        elif letter_accuracy >= 0.7:
            feedback = f"Good attempt! {letter_accuracy * 100:.0f}% accuracy."
        else:
            feedback = f"Keep trying! Only {letter_accuracy * 100:.0f}% accuracy."

        return ListenShadowFeedback(
            feedback=feedback,
            mistakes=mistakes,
            missed_chars=missed_chars,
            letter_accuracy=letter_accuracy,
        )

    @staticmethod
    def check_words_spoken(transcript: str, expected_words: Sequence[str]) -> List[bool]:
        """Which expected words appear verbatim in the transcript."""
        normalized_recognized = normalize_arabic_text(transcript)
        return [normalize_arabic_text(word) in normalized_recognized for word in expected_words]

    @staticmethod
    def _best_match(
        expected_word: str, recognized_words: List[str], excluded: Set[int], threshold: float
    ) -> Tuple[int, float]:
        """Index and similarity of the closest unmatched word above ``threshold``."""
        best_index, best_similarity = -1, 0.0
        for j, recognized_word in enumerate(recognized_words):
            if j in excluded:
                continue
            similarity = text_similarity(expected_word, recognized_word)
            if similarity > best_similarity and similarity > threshold:
                best_index, best_similarity = j, similarity
        return best_index, best_similarity
