"""Tests for the ayah learning stage machine."""
from typing import List
from unittest.mock import Mock

import pytest

from conftest import FakeAudioPlayer, FakeRecognizer, StubTextSource
from hifz.exceptions import (
    RecognitionError,
    RecognitionUnsupportedError,
    StageTransitionError,
    TextNotFoundError,
)
from hifz.models.learning_models import (
    Activity,
    DetailedFeedback,
    InputEvent,
    LearnStage,
    ListenShadowFeedback,
    SessionEvent,
    SessionEventKind,
)
from hifz.services.learn_session import AyahLearningSession
from hifz.services.practice_session import MSG_NO_AUDIO, MSG_RECOGNITION_ERROR, MSG_RECOGNITION_UNSUPPORTED
from hifz.services.stage_tracker import StageProgressTracker
from hifz.services.text_service import JsonTextSource

AYAH_1 = "قُلْ هُوَ اللَّهُ أَحَدٌ"
AYAH_2 = "اللَّهُ الصَّمَدُ"
WRONG = "بسم"


@pytest.fixture
def text_source() -> JsonTextSource:
    return JsonTextSource(audio_base_url="https://audio.test")


def make_session(text_source, recognizer, audio_player, events: List[SessionEvent], ayahs=(1, 2), **kwargs):
    session = AyahLearningSession(
        112,
        ayahs,
        text_source,
        recognizer,
        audio_player,
        tracker=StageProgressTracker(required_repetitions=3, perfect_word_accuracy=0.95, struggling_attempts=5),
        **kwargs,
    )
    session.subscribe(events.append)
    return session


def recite(session: AyahLearningSession, recognizer: FakeRecognizer, transcript: str) -> None:
    """Press space and deliver a transcript for the new run."""
    session.handle_input(InputEvent.SPACE)
    assert session.activity == Activity.RECITING
    recognizer.last.deliver(transcript)


def master_current_ayah(session: AyahLearningSession, recognizer: FakeRecognizer) -> None:
    """Walk the current ayah from the intro through recall."""
    text = session.current_ayah.text
    session.handle_input(InputEvent.SPACE)  # intro -> listen-shadow
    session.handle_input(InputEvent.SPACE)  # ready -> read-recite
    for _ in range(3):
        recite(session, recognizer, text)
    for _ in range(3):
        recite(session, recognizer, text)


def kinds(events: List[SessionEvent]) -> List[SessionEventKind]:
    return [event.kind for event in events]


@pytest.fixture
def session(text_source, recognizer, audio_player, events) -> AyahLearningSession:
    return make_session(text_source, recognizer, audio_player, events)


def test_initial_state(session: AyahLearningSession) -> None:
    assert session.stage == LearnStage.AYAH_INTRO
    assert session.activity == Activity.IDLE
    assert session.current_ayah.text == AYAH_1
    assert session.total_ayahs == 2
    assert not session.is_last_ayah
    assert not session.is_complete
    assert session.next_stage() == LearnStage.LISTEN_SHADOW


def test_requires_ayahs(text_source, recognizer, audio_player) -> None:
    with pytest.raises(ValueError):
        AyahLearningSession(112, [], text_source, recognizer, audio_player)


def test_unknown_ayah_raises(text_source, recognizer, audio_player) -> None:
    with pytest.raises(TextNotFoundError):
        AyahLearningSession(112, [9], text_source, recognizer, audio_player)


def test_intro_advances_on_space(session: AyahLearningSession, events: List[SessionEvent]) -> None:
    session.handle_input(InputEvent.SPACE)

    assert session.stage == LearnStage.LISTEN_SHADOW
    assert session.activity == Activity.WAITING_FOR_SPACE
    stage_events = [e for e in events if e.kind == SessionEventKind.STAGE_CHANGED]
    assert stage_events[-1].payload["stage"] == LearnStage.LISTEN_SHADOW
    assert stage_events[-1].payload["previous"] == LearnStage.AYAH_INTRO


def test_listen_shadow_flow(
    session: AyahLearningSession, recognizer: FakeRecognizer, audio_player: FakeAudioPlayer, events
) -> None:
    """Test playback, automatic shadowing and the ready signal."""
    session.handle_input(InputEvent.SPACE)
    session.handle_input(InputEvent.PLAY)

    assert audio_player.played == ["https://audio.test/112001.mp3"]
    assert session.activity == Activity.PLAYING_AUDIO

    audio_player.end()
    assert session.activity == Activity.RECITING
    assert recognizer.last.expected_text == AYAH_1

    recognizer.last.deliver("قل هو الله احد")
    feedback = [e.payload["feedback"] for e in events if e.kind == SessionEventKind.FEEDBACK]
    assert isinstance(feedback[-1], ListenShadowFeedback)
    assert session.tracker.attempt_count == 0
    assert session.stage == LearnStage.LISTEN_SHADOW

    session.handle_input(InputEvent.SPACE)
    assert session.stage == LearnStage.READ_RECITE


def test_listen_shadow_requires_ready(session: AyahLearningSession) -> None:
    session.advance()

    assert not session.can_advance()
    with pytest.raises(StageTransitionError):
        session.advance()
    assert session.stage == LearnStage.LISTEN_SHADOW


def test_read_recite_completes_after_three_successes(
    session: AyahLearningSession, recognizer: FakeRecognizer, events
) -> None:
    session.advance()
    session.advance(ready=True)

    recite(session, recognizer, AYAH_1)
    recite(session, recognizer, AYAH_1)
    assert session.stage == LearnStage.READ_RECITE
    assert session.tracker.stage_progress == pytest.approx(200 / 3)

    recite(session, recognizer, AYAH_1)
    assert session.stage == LearnStage.RECALL_MEMORY
    assert session.tracker.stage_attempt_count == 0
    assert session.tracker.attempt_count == 3
    assert session.activity == Activity.WAITING_FOR_SPACE

    feedback = [e.payload["feedback"] for e in events if e.kind == SessionEventKind.FEEDBACK]
    assert all(isinstance(f, DetailedFeedback) for f in feedback)
    qualities = [e.payload["quality"] for e in events if e.kind == SessionEventKind.FEEDBACK]
    assert [q.quality for q in qualities] == ["perfect"] * 3
    attempts = [e.payload for e in events if e.kind == SessionEventKind.ATTEMPT_RECORDED]
    assert [a["successful"] for a in attempts] == [True, True, True]
    assert attempts[-1]["counters"].stage_successful_attempts == 3


def test_failed_attempts_do_not_advance(session: AyahLearningSession, recognizer: FakeRecognizer, events) -> None:
    session.advance()
    session.advance(ready=True)

    for _ in range(5):
        recite(session, recognizer, WRONG)

    assert session.stage == LearnStage.READ_RECITE
    assert session.tracker.stage_successful_attempts == 0
    assert session.is_struggling
    attempts = [e.payload for e in events if e.kind == SessionEventKind.ATTEMPT_RECORDED]
    assert attempts[-1]["struggling"] is True
    assert attempts[0]["struggling"] is False
    feedback = [e.payload for e in events if e.kind == SessionEventKind.FEEDBACK]
    assert all(f["quality"].progress_increment == 0 for f in feedback)

    with pytest.raises(StageTransitionError):
        session.advance()


def test_success_threshold(session: AyahLearningSession) -> None:
    session.advance()
    session.advance(ready=True)

    assert session.record_attempt(0.6)
    assert not session.record_attempt(0.59)
    assert session.tracker.successful_attempts == 1


def test_record_attempt_outside_recitation_stages(session: AyahLearningSession) -> None:
    with pytest.raises(StageTransitionError):
        session.record_attempt(1.0)

    session.advance()
    with pytest.raises(StageTransitionError):
        session.record_attempt(1.0)


def test_manual_advance_without_auto_advance(text_source, recognizer, audio_player, events) -> None:
    session = make_session(text_source, recognizer, audio_player, events, auto_advance=False)
    session.advance()
    session.advance(ready=True)

    session.handle_input(InputEvent.NEXT)
    assert session.stage == LearnStage.READ_RECITE

    for _ in range(3):
        recite(session, recognizer, AYAH_1)
    assert session.stage == LearnStage.READ_RECITE
    assert session.can_advance()

    session.handle_input(InputEvent.NEXT)
    assert session.stage == LearnStage.RECALL_MEMORY


def test_mastering_moves_to_next_ayah(text_source, recognizer, audio_player, events) -> None:
    on_ayah_mastered = Mock()
    session = make_session(text_source, recognizer, audio_player, events, on_ayah_mastered=on_ayah_mastered)
    session.advance()
    session.advance(ready=True)
    recite(session, recognizer, WRONG)
    for _ in range(6):
        recite(session, recognizer, AYAH_1)

    assert session.stage == LearnStage.AYAH_INTRO
    assert session.current_index == 1
    assert session.current_ayah.text == AYAH_2
    assert session.tracker.attempt_count == 0
    assert session.is_last_ayah

    learned = on_ayah_mastered.call_args[0][0]
    assert learned.surah == 112
    assert learned.ayah == 1
    assert learned.attempts == 7
    assert learned.accuracy == pytest.approx(6 / 7)
    assert learned.mastery_level == pytest.approx(600 / 7)
    assert session.learned_ayahs == [learned]
    assert SessionEventKind.AYAH_MASTERED in kinds(events)


def test_missing_next_ayah_leaves_session_unchanged(recognizer, audio_player, events) -> None:
    on_ayah_mastered = Mock()
    texts = {1: AYAH_1}
    session = make_session(
        StubTextSource(texts, surah=112), recognizer, audio_player, events,
        on_ayah_mastered=on_ayah_mastered, auto_advance=False,
    )
    session.advance()
    session.advance(ready=True)
    for _ in range(3):
        session.record_attempt(1.0)
    session.advance()
    for _ in range(3):
        session.record_attempt(1.0)

    with pytest.raises(TextNotFoundError):
        session.advance()

    assert session.stage == LearnStage.RECALL_MEMORY
    assert session.current_index == 0
    assert session.current_ayah.ayah == 1
    assert session.learned_ayahs == []
    on_ayah_mastered.assert_not_called()

    texts[2] = AYAH_2
    assert session.advance() == LearnStage.AYAH_INTRO
    assert session.current_ayah.ayah == 2
    assert [learned.ayah for learned in session.learned_ayahs] == [1]
    on_ayah_mastered.assert_called_once()


def test_full_session_with_transitions(text_source, recognizer, audio_player, events) -> None:
    on_complete = Mock()
    on_pair_completed = Mock()
    session = make_session(
        text_source, recognizer, audio_player, events,
        on_complete=on_complete, on_pair_completed=on_pair_completed,
    )

    master_current_ayah(session, recognizer)
    master_current_ayah(session, recognizer)

    assert session.stage == LearnStage.CONNECT_AYAHS
    transitions = session.transition_session
    assert transitions is not None
    assert len(transitions.pairs) == 1
    assert transitions.current_pair.from_ending == "هُوَ اللَّهُ أَحَدٌ"
    assert transitions.current_pair.to_beginning == AYAH_2
    assert not session.is_complete

    session.handle_input(InputEvent.SPACE)
    assert transitions.activity == Activity.RECITING
    recognizer.last.deliver("الله الصمد")
    assert transitions.current_pair.perfect_attempts == 1
    session.handle_input(InputEvent.SPACE)
    recognizer.last.deliver("الله الصمد")

    assert session.is_complete
    on_complete.assert_called_once()
    on_pair_completed.assert_called_once()
    forwarded = [e for e in events if e.payload.get("source") == "transitions"]
    assert SessionEventKind.COMPLETED in kinds(forwarded)


def test_single_ayah_completes_without_transitions(text_source, recognizer, audio_player, events) -> None:
    on_complete = Mock()
    session = make_session(text_source, recognizer, audio_player, events, ayahs=[3], on_complete=on_complete)

    master_current_ayah(session, recognizer)

    assert session.stage == LearnStage.CONNECT_AYAHS
    assert session.is_complete
    assert session.transition_session.overall_progress == 100.0
    on_complete.assert_called_once()


def test_stopped_run_result_is_discarded(session: AyahLearningSession, recognizer: FakeRecognizer) -> None:
    session.advance()
    session.advance(ready=True)

    session.handle_input(InputEvent.SPACE)
    stale = recognizer.last
    session.handle_input(InputEvent.SPACE)
    assert stale.stopped
    assert session.activity == Activity.WAITING_FOR_SPACE

    stale.deliver(AYAH_1)
    assert session.tracker.attempt_count == 0

    session.handle_input(InputEvent.SPACE)
    stale.deliver(AYAH_1)
    assert session.tracker.attempt_count == 0
    recognizer.last.deliver(AYAH_1)
    assert session.tracker.attempt_count == 1


def test_recognition_error_discards_attempt(session: AyahLearningSession, recognizer: FakeRecognizer, events) -> None:
    session.advance()
    session.advance(ready=True)
    session.handle_input(InputEvent.SPACE)

    recognizer.last.fail(RuntimeError("network"))

    assert session.activity == Activity.WAITING_FOR_SPACE
    assert session.tracker.attempt_count == 0
    errors = [e.payload for e in events if e.kind == SessionEventKind.ERROR]
    assert errors == [{"message": MSG_RECOGNITION_ERROR, "blocking": False}]


def test_unsupported_recognition(text_source, audio_player, events) -> None:
    recognizer = FakeRecognizer(supported=False)
    session = make_session(text_source, recognizer, audio_player, events)
    session.advance()
    session.advance(ready=True)

    session.handle_input(InputEvent.SPACE)

    assert session.activity == Activity.WAITING_FOR_SPACE
    assert recognizer.handles == []
    errors = [e.payload for e in events if e.kind == SessionEventKind.ERROR]
    assert errors == [{"message": MSG_RECOGNITION_UNSUPPORTED, "blocking": True}]


def test_permission_denied_on_start(session: AyahLearningSession, recognizer: FakeRecognizer, events) -> None:
    recognizer.fail_on_start = RecognitionUnsupportedError("denied")
    session.advance()
    session.advance(ready=True)

    assert not session.start_recognition()
    assert session.activity == Activity.WAITING_FOR_SPACE
    assert events[-1].payload["blocking"] is True


@pytest.mark.parametrize("error", [RecognitionError("engine busy"), RuntimeError("microphone gone")])
def test_recognition_start_failure(
    session: AyahLearningSession, recognizer: FakeRecognizer, events, error: Exception
) -> None:
    recognizer.fail_on_start = error
    session.advance()
    session.advance(ready=True)

    assert not session.start_recognition()
    assert session.activity == Activity.WAITING_FOR_SPACE
    assert events[-1].kind == SessionEventKind.ERROR
    assert events[-1].payload == {"message": MSG_RECOGNITION_ERROR, "blocking": False}

    # Callbacks of the failed run are dropped and a new attempt can start
    recognizer.last.deliver(AYAH_1)
    assert session.tracker.attempt_count == 0
    recognizer.fail_on_start = None
    session.handle_input(InputEvent.SPACE)
    assert session.activity == Activity.RECITING
    recognizer.last.deliver(AYAH_1)
    assert session.tracker.attempt_count == 1


def test_play_interrupts_recitation(session: AyahLearningSession, recognizer: FakeRecognizer, audio_player) -> None:
    session.advance()
    session.advance(ready=True)
    session.handle_input(InputEvent.SPACE)
    run = recognizer.last

    session.handle_input(InputEvent.PLAY)
    assert session.activity == Activity.PLAYING_AUDIO
    assert run.stopped

    run.deliver(AYAH_1)
    assert session.tracker.attempt_count == 0

    session.handle_input(InputEvent.SPACE)
    assert session.activity == Activity.PLAYING_AUDIO

    audio_player.end()
    assert session.activity == Activity.WAITING_FOR_SPACE


def test_next_stops_audio(session: AyahLearningSession, audio_player: FakeAudioPlayer) -> None:
    session.advance()
    session.handle_input(InputEvent.PLAY)

    session.handle_input(InputEvent.NEXT)

    assert session.stage == LearnStage.READ_RECITE
    assert audio_player.stopped == 1
    assert session.activity == Activity.WAITING_FOR_SPACE

    # A late end of the stopped playback changes nothing
    audio_player.end()
    assert session.activity == Activity.WAITING_FOR_SPACE


def test_missing_audio(recognizer, audio_player, events) -> None:
    text_source = StubTextSource({1: "قل هو الله احد"}, surah=112, audio=False)
    session = make_session(text_source, recognizer, audio_player, events, ayahs=[1])
    session.advance()

    assert not session.play_ayah_audio()
    assert session.activity == Activity.WAITING_FOR_SPACE
    assert events[-1].payload == {"message": MSG_NO_AUDIO, "blocking": False}


def test_audio_failure(session: AyahLearningSession, audio_player: FakeAudioPlayer, events) -> None:
    audio_player.fail_with = OSError("device busy")
    session.advance()

    assert not session.play_ayah_audio()
    assert session.activity == Activity.WAITING_FOR_SPACE
    assert events[-1].kind == SessionEventKind.ERROR


def test_failing_observer_does_not_break_session(session: AyahLearningSession) -> None:
    session.subscribe(Mock(side_effect=RuntimeError("observer")))

    session.handle_input(InputEvent.SPACE)

    assert session.stage == LearnStage.LISTEN_SHADOW


def test_close_cancels_recitation(session: AyahLearningSession, recognizer: FakeRecognizer) -> None:
    session.advance()
    session.advance(ready=True)
    session.handle_input(InputEvent.SPACE)

    session.close()

    assert recognizer.last.stopped
    assert session.activity == Activity.IDLE
