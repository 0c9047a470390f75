"""Practice of the boundaries between consecutively mastered ayahs."""
import logging
from typing import Callable, List, Optional

from hifz.config import settings
from hifz.models.learning_models import (
    Activity,
    LearnedAyah,
    SessionEventKind,
    TransitionPair,
)
from hifz.monitoring import transition_pairs_completed
from hifz.services.collaborators import AudioPlayer, SpeechRecognizer, TextSource
from hifz.services.practice_session import PracticeSession
from hifz.services.recitation_scorer import RecitationScorer


logger = logging.getLogger(__name__)


class TransitionPracticeSession(PracticeSession):
    """Walks through every adjacent pair of learned ayahs.

    For each pair the ending of the earlier ayah is played and the learner
    recites the beginning of the later one. A pair is completed after
    ``required_perfect_attempts`` perfect attempts; imperfect attempts only
    delay it.
    """

    def __init__(
        self,
        ayahs: List[LearnedAyah],
        text_source: TextSource,
        recognizer: SpeechRecognizer,
        audio_player: AudioPlayer,
        scorer: Optional[RecitationScorer] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_pair_completed: Optional[Callable[[TransitionPair], None]] = None,
        auto_listen: bool = True,
    ):
        super().__init__(recognizer, audio_player, scorer)
        self.ayahs = list(ayahs)
        self.text_source = text_source
        self.on_complete = on_complete
        self.on_pair_completed = on_pair_completed
        self.auto_listen = auto_listen

        self.required_perfect_attempts = settings.transition.required_perfect_attempts
        self.min_similarity = settings.transition.min_similarity
        self.min_word_accuracy = settings.transition.min_word_accuracy
        self.context_words = settings.transition.context_words

        self.pairs: List[TransitionPair] = []
        self.current_pair_index = 0
        self.is_complete = False
        self.last_feedback = None

    def start(self) -> None:
        """Build the pairs and wait for the first one; completes at once without pairs."""
        self.pairs = self.build_pairs()
        self.current_pair_index = 0
        logger.info(f"Transition practice started with {len(self.pairs)} pairs")
        if not self.pairs:
            self._finish()
            return
        self._set_activity(Activity.WAITING_FOR_SPACE)
        self._emit(SessionEventKind.PAIR_CHANGED, pair=self.current_pair, index=self.current_pair_index)

    def build_pairs(self) -> List[TransitionPair]:
        """Create one pair per adjacent ayahs, skipping pairs whose text cannot be fetched."""
        pairs = []
        if len(self.ayahs) < 2:
            logger.info("Not enough ayahs for transitions")
            return pairs

        for from_ayah, to_ayah in zip(self.ayahs, self.ayahs[1:]):
            try:
                from_text = self.text_source.get_ayah(from_ayah.surah, from_ayah.ayah)
                to_text = self.text_source.get_ayah(to_ayah.surah, to_ayah.ayah)
            except Exception as e:
                logger.error(f"Skipping transition {from_ayah.ayah} -> {to_ayah.ayah}: {e}")
                continue

            from_ending = from_text.last_words(self.context_words)
            to_beginning = to_text.first_words(self.context_words)
            if not from_ending or not to_beginning:
                logger.error(f"Skipping transition {from_ayah.ayah} -> {to_ayah.ayah}: empty text")
                continue

            pairs.append(TransitionPair(
                from_ayah=from_ayah,
                to_ayah=to_ayah,
                from_ending=from_ending,
                to_beginning=to_beginning,
                audio_url=self.text_source.get_audio_url(from_ayah.surah, from_ayah.ayah),
            ))
        return pairs

    @property
    def current_pair(self) -> Optional[TransitionPair]:
        if self.current_pair_index < len(self.pairs):
            return self.pairs[self.current_pair_index]
        return None

    @property
    def completed_pairs(self) -> int:
        return sum(1 for pair in self.pairs if pair.completed)

    @property
    def overall_progress(self) -> float:
        """Percentage of completed pairs."""
        if not self.pairs:
            return 100.0 if self.is_complete else 0.0
        return self.completed_pairs / len(self.pairs) * 100

    def play_transition_audio(self) -> bool:
        """Play the reference recitation of the earlier ayah of the current pair."""
        pair = self.current_pair
        if self.is_complete or pair is None:
            return False
        return self.play_audio(pair.audio_url)

    def is_perfect(self, similarity: float, word_accuracy: float) -> bool:
        return similarity >= self.min_similarity and word_accuracy >= self.min_word_accuracy

    def evaluate_attempt(self, similarity: float, word_accuracy: float) -> bool:
        """Apply a scored attempt to the current pair. Returns whether it was perfect."""
        pair = self.current_pair
        if self.is_complete or pair is None:
            return False

        perfect = self.is_perfect(similarity, word_accuracy)
        logger.info(
            f"Transition {pair.from_ayah.ayah}->{pair.to_ayah.ayah}: similarity={similarity:.2f}, "
            f"word_accuracy={word_accuracy:.2f}, perfect={perfect}"
        )
        if not perfect:
            return False

        pair.perfect_attempts += 1
        if pair.perfect_attempts >= self.required_perfect_attempts and not pair.completed:
            pair.completed = True
            transition_pairs_completed.inc()
            if self.on_pair_completed:
                self.on_pair_completed(pair)
            self._advance_pair()
        return True

    def _advance_pair(self) -> None:
        if self.current_pair_index + 1 < len(self.pairs):
            self.current_pair_index += 1
            self._emit(SessionEventKind.PAIR_CHANGED, pair=self.current_pair, index=self.current_pair_index)
        elif self.completed_pairs == len(self.pairs):
            self._finish()

    def _finish(self) -> None:
        self.is_complete = True
        self._cancel_activity(Activity.IDLE)
        logger.info("Transition practice complete")
        self._emit(SessionEventKind.COMPLETED, progress=self.overall_progress)
        if self.on_complete:
            self.on_complete()

    def _expected_text(self) -> str:
        pair = self.current_pair
        return pair.to_beginning if pair else ""

    def _handle_transcript(self, transcript: str) -> None:
        pair = self.current_pair
        if self.is_complete or pair is None:
            return
        expected_words = pair.to_beginning.split()
        score = self.scorer.score(transcript, expected_words, pair.to_beginning)
        feedback = self.scorer.generate_detailed_feedback(transcript, pair.to_beginning, expected_words)
        self.last_feedback = feedback
        self._emit(
            SessionEventKind.FEEDBACK,
            feedback=feedback,
            similarity=score.similarity,
            message=self.scorer.classify(score.similarity),
            quality=self.scorer.quality_from_similarity(score.similarity, score.word_accuracy),
        )
        perfect = self.evaluate_attempt(score.similarity, score.word_accuracy)
        self._emit(
            SessionEventKind.ATTEMPT_RECORDED,
            perfect=perfect,
            perfect_attempts=pair.perfect_attempts,
            completed=pair.completed,
            progress=self.overall_progress,
        )

    def _on_space(self) -> None:
        if self.is_complete:
            return
        super()._on_space()

    def _on_play(self) -> None:
        self.play_transition_audio()

    def _after_audio_ended(self) -> None:
        if self.auto_listen and not self.is_complete:
            self.start_recognition()
