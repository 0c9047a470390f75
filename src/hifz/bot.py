"""Telegram front end for guided memorization."""
import html
import logging
import random
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackContext

from hifz.config import settings
from hifz.exceptions import HifzError, TextNotFoundError
from hifz.models.base import SessionLocal
from hifz.models.learning_models import (
    Activity,
    DetailedFeedback,
    InputEvent,
    LearnStage,
    LearnedAyah,
    ListenShadowFeedback,
    SessionEvent,
    SessionEventKind,
    TransitionPair,
)
from hifz.models.models import User
from hifz.services.learn_session import AyahLearningSession
from hifz.services.progress_service import ProgressService
from hifz.services.recitation_scorer import RecitationScorer
from hifz.services.review_scheduler import performance_from_accuracy
from hifz.services.text_service import JsonTextSource
from hifz.services.typed_input import DeferredAudioPlayer, TypedTranscriptRecognizer

# Get logger for this module
logger = logging.getLogger(__name__)

# Conversation states
MAIN_MENU, LEARNING, REVIEWING = range(3)

# Button texts
MENU = "🏠 Menu"
START_LEARNING = "📖 Start Learning"
CHOOSE_SURAH = "📚 Choose Surah"
VIEW_STATISTICS = "📊 View Statistics"
REVIEW = "🔁 Review"
PLAY = "🔊 Listen"
READY = "✅ Ready"
RECITE = "🎙 Recite"
STOP = "⏹ Stop"


def msg_back_to(text: str) -> str: return f"🔙 {text}"


ERR_MSG_NOT_REGISTERED = "Please /start first to register"
ERR_KB_NOT_REGISTERED = InlineKeyboardMarkup([[InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")]])

MSG_TYPE_RECITATION = "🎙 Recite now: type the āyah as you recite it and send it."
MSG_PRESS_READY = f"Press {READY} when you are ready to begin."

ENCOURAGEMENT_MESSAGES = [
    "Māshāʾ Allāh! 🌟",
    "You're doing great!",
    "Keep it up! 💪",
    "You're on a roll!",
    "Excellent progress!",
    "Beautiful recitation! ✨",
]
# Stages whose completion earns an encouragement
PRACTICE_STAGES = (LearnStage.LISTEN_SHADOW, LearnStage.READ_RECITE, LearnStage.RECALL_MEMORY)

# Keys of the learning state kept in context.user_data
KEY_SESSION = "learn_session"
KEY_SESSION_ID = "learn_session_id"
KEY_RECOGNIZER = "recognizer"
KEY_AUDIO = "audio_player"
KEY_OUTBOX = "outbox"
KEY_REVIEW_QUEUE = "review_queue"


async def log_received(update: Update, context_type: str) -> None:
    """Log message."""
    txt = ""
    if update.callback_query:
        txt = f" {update.callback_query.data}"
    elif update.message:
        txt = f" {update.message.text}"
    logger.info(f"Received @{context_type:8} from user {update.effective_user.username} ({update.effective_user.id}){txt}")


def get_user_from_update(update: Update) -> Optional[User]:
    """Get user from database based on update."""
    user = update.effective_user
    if not user:
        return None

    db = SessionLocal()
    try:
        return ProgressService(db).get_user_by_telegram_id(user.id)
    finally:
        db.close()


def reply_target(update: Update):
    """Message to reply to for both commands and callback queries."""
    if update.callback_query:
        return update.callback_query.message
    return update.message


async def show_screen(update: Update, text: str, reply_markup: InlineKeyboardMarkup) -> None:
    """Edit the menu message for callbacks, reply for commands."""
    if update.callback_query:
        await update.callback_query.edit_message_text(text, reply_markup=reply_markup, parse_mode="HTML")
    else:
        await update.message.reply_text(text, reply_markup=reply_markup, parse_mode="HTML")


def main_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(START_LEARNING, callback_data="start_learning")],
        [InlineKeyboardButton(REVIEW, callback_data="review")],
        [InlineKeyboardButton(CHOOSE_SURAH, callback_data="choose_surah")],
        [InlineKeyboardButton(VIEW_STATISTICS, callback_data="statistics")],
    ])


async def handle_start(update: Update, context: CallbackContext) -> int:
    """Start the conversation and show main menu."""
    await log_received(update, "start")
    end_learning(context)
    context.user_data.pop(KEY_REVIEW_QUEUE, None)

    db = SessionLocal()
    try:
        user = ProgressService(db).get_or_create_user(
            telegram_id=update.effective_user.id,
            username=update.effective_user.first_name,
        )
        surah_name = JsonTextSource().get_surah_name(user.current_surah)
        message = (
            f"Assalāmu ʿalaykum, {html.escape(user.username or '')}! 👋\n\n"
            "I'll guide you through memorizing the Qurʾān āyah by āyah.\n"
            f"Current surah: <b>{html.escape(surah_name)}</b>\n\n"
            "What would you like to do?"
        )
        await show_screen(update, message, main_menu_keyboard())
        return MAIN_MENU
    finally:
        db.close()


async def handle_callback(update: Update, context: CallbackContext) -> int:
    """Handle callback queries from inline keyboard."""
    query = update.callback_query
    await query.answer()

    await log_received(update, "callback")

    if query.data == "start_learning":
        return await start_learning(update, context)
    elif query.data.startswith("learn_"):
        return await handle_learning_input(update, context)
    elif query.data == "back_to_menu":
        return await handle_start(update, context)
    elif query.data == "choose_surah":
        return await show_surahs(update, context)
    elif query.data.startswith("surah_"):
        return await handle_surah_selection(update, context)
    elif query.data == "statistics":
        return await show_statistics(update, context)
    elif query.data == "review":
        return await start_review(update, context)

    return MAIN_MENU


async def handle_message(update: Update, context: CallbackContext) -> int:
    """Handle messages outside of a learning session."""
    user = get_user_from_update(update)
    if not user:
        await update.message.reply_text(ERR_MSG_NOT_REGISTERED, reply_markup=ERR_KB_NOT_REGISTERED)
        return MAIN_MENU

    await log_received(update, "message")

    if context.user_data.get(KEY_SESSION):
        return await handle_learning_input(update, context)

    await update.message.reply_text("Please start with /start")
    return MAIN_MENU


async def show_surahs(update: Update, context: CallbackContext) -> int:
    """Show the surahs that have text available."""
    text_source = JsonTextSource()
    keyboard = [
        [InlineKeyboardButton(
            f"{surah}. {text_source.get_surah_name(surah)} ({text_source.get_ayah_count(surah)} āyāt)",
            callback_data=f"surah_{surah}",
        )]
        for surah in text_source.available_surahs()
    ]
    keyboard.append([InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")])
    await show_screen(update, "Choose a surah to memorize:", InlineKeyboardMarkup(keyboard))
    return MAIN_MENU


async def handle_surah_selection(update: Update, context: CallbackContext) -> int:
    """Store the selected surah as the user's current one."""
    user = get_user_from_update(update)
    if not user:
        await update.callback_query.edit_message_text(ERR_MSG_NOT_REGISTERED, reply_markup=ERR_KB_NOT_REGISTERED)
        return MAIN_MENU

    surah = int(update.callback_query.data.split("_")[1])
    db = SessionLocal()
    try:
        ProgressService(db).set_current_surah(user.id, surah)
    finally:
        db.close()

    logger.info(f"User {user.telegram_id} selected surah {surah}")
    return await handle_start(update, context)


async def show_statistics(update: Update, context: CallbackContext) -> int:
    """Show user statistics."""
    user = get_user_from_update(update)
    if not user:
        await update.callback_query.edit_message_text(ERR_MSG_NOT_REGISTERED, reply_markup=ERR_KB_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        stats = ProgressService(db).get_statistics(user.id)
    finally:
        db.close()

    message = (
        "📊 Your Memorization Statistics:\n\n"
        f"Āyāt mastered: {stats['ayahs_mastered']}\n"
        f"Transitions connected: {stats['transitions_completed']}\n"
        f"Reviews due: {stats['reviews_due']}\n"
        f"Sessions: {stats['sessions']} ({stats['completed_sessions']} completed)\n"
        f"Total attempts: {stats['total_attempts']}\n"
        f"Success rate: {stats['success_rate']:.0f}%\n"
        f"Average accuracy: {stats['average_accuracy'] * 100:.0f}%\n"
    )
    await show_screen(
        update,
        message,
        InlineKeyboardMarkup([[InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")]]),
    )
    return MAIN_MENU


def review_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")]])


def render_review_prompt(text_source: JsonTextSource, surah: int, ayah: int) -> str:
    """Ask for one ayah from memory, giving only its first word as a cue."""
    lines = [f"Recite <b>{html.escape(text_source.get_surah_name(surah))}</b>, āyah {ayah} from memory and send it."]
    try:
        cue = text_source.get_ayah(surah, ayah).first_words(1)
        lines.append(f"It begins: {html.escape(cue)} …")
    except TextNotFoundError:
        pass
    return "\n".join(lines)


async def start_review(update: Update, context: CallbackContext) -> int:
    """Start reviewing the mastered ayahs that are due."""
    user = get_user_from_update(update)
    if not user:
        await update.callback_query.edit_message_text(ERR_MSG_NOT_REGISTERED, reply_markup=ERR_KB_NOT_REGISTERED)
        return MAIN_MENU

    end_learning(context)
    db = SessionLocal()
    try:
        queue = [(m.id, m.surah, m.ayah) for m in ProgressService(db).get_due_reviews(user.id)]
    finally:
        db.close()

    if not queue:
        await show_screen(update, "🔁 Nothing is due for review. Come back later!", main_menu_keyboard())
        return MAIN_MENU

    context.user_data[KEY_REVIEW_QUEUE] = queue
    logger.info(f"User {user.telegram_id} started reviewing {len(queue)} ayahs")
    _, surah, ayah = queue[0]
    message = f"🔁 {len(queue)} āyāt due for review.\n\n{render_review_prompt(JsonTextSource(), surah, ayah)}"
    await show_screen(update, message, review_keyboard())
    return REVIEWING


def save_review(mastered_id: int, accuracy: float) -> Optional[int]:
    """Grade a review; returns the days until the next one, None if it could not be stored."""
    db = SessionLocal()
    try:
        return ProgressService(db).record_review(mastered_id, accuracy).interval_days
    except (SQLAlchemyError, ValueError) as e:
        db.rollback()
        logger.error(f"Failed to record review {mastered_id}: {e}")
        return None
    finally:
        db.close()


async def handle_review_input(update: Update, context: CallbackContext) -> int:
    """Grade a typed recall of the ayah under review and move to the next one."""
    queue = context.user_data.get(KEY_REVIEW_QUEUE)
    if not queue:
        return await handle_start(update, context)

    await log_received(update, "review")

    mastered_id, surah, ayah = queue.pop(0)
    text_source = JsonTextSource()
    try:
        ayah_text = text_source.get_ayah(surah, ayah)
    except TextNotFoundError as e:
        logger.error(f"Skipping review of {surah}:{ayah}: {e}")
        lines = [f"⚠️ Text of āyah {ayah} is not available, skipped."]
    else:
        feedback = RecitationScorer().generate_detailed_feedback(
            update.message.text or "", ayah_text.text, ayah_text.word_texts
        )
        performance = performance_from_accuracy(feedback.word_accuracy)
        lines = [render_feedback(feedback), html.escape(ayah_text.text)]
        interval = save_review(mastered_id, feedback.word_accuracy)
        if interval is not None:
            lines.append(f"Recall: {performance.value}. Next review in {interval} day(s).")

    if queue:
        _, surah, ayah = queue[0]
        lines.append(render_review_prompt(text_source, surah, ayah))
        await update.message.reply_text("\n\n".join(lines), reply_markup=review_keyboard(), parse_mode="HTML")
        return REVIEWING

    context.user_data.pop(KEY_REVIEW_QUEUE, None)
    lines.append("✅ Review complete.")
    await update.message.reply_text("\n\n".join(lines), reply_markup=main_menu_keyboard(), parse_mode="HTML")
    return MAIN_MENU


def run_progress_action(operation: str, action: Callable[[ProgressService], None]) -> None:
    """Run a persistence action in its own database session."""
    db = SessionLocal()
    try:
        action(ProgressService(db))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {operation}: {e}")
    finally:
        db.close()


async def start_learning(update: Update, context: CallbackContext) -> int:
    """Start a learning session on the next unmastered ayahs of the current surah."""
    user = get_user_from_update(update)
    if not user:
        await update.callback_query.edit_message_text(ERR_MSG_NOT_REGISTERED, reply_markup=ERR_KB_NOT_REGISTERED)
        return MAIN_MENU

    end_learning(context)
    text_source = JsonTextSource()
    surah = user.current_surah
    ayah_count = text_source.get_ayah_count(surah)
    if not ayah_count:
        await show_screen(update, f"No text available for surah {surah}.", main_menu_keyboard())
        return MAIN_MENU

    db = SessionLocal()
    try:
        progress = ProgressService(db)
        start_ayah = progress.get_next_ayah(user.id, surah)
        if start_ayah > ayah_count:
            # Everything mastered; revise from the beginning
            start_ayah = 1
        end_ayah = min(ayah_count, start_ayah + settings.bot.ayahs_per_session - 1)
        db_session = progress.start_session(user.id, surah, start_ayah, end_ayah)
        session_id = db_session.id
    finally:
        db.close()

    user_id = user.id
    recognizer = TypedTranscriptRecognizer()
    audio_player = DeferredAudioPlayer()

    def on_ayah_mastered(learned: LearnedAyah) -> None:
        run_progress_action(
            "record mastered ayah", lambda progress: progress.record_mastered_ayah(session_id, learned)
        )

    def on_pair_completed(pair: TransitionPair) -> None:
        run_progress_action("record transition", lambda progress: progress.record_transition(user_id, pair))

    def on_complete() -> None:
        run_progress_action("complete session", lambda progress: progress.complete_session(session_id))

    try:
        session = AyahLearningSession(
            surah,
            range(start_ayah, end_ayah + 1),
            text_source,
            recognizer,
            audio_player,
            on_ayah_mastered=on_ayah_mastered,
            on_pair_completed=on_pair_completed,
            on_complete=on_complete,
        )
    except HifzError as e:
        logger.error(f"Could not start session for surah {surah}: {e}")
        await show_screen(update, f"Could not load surah {surah}.", main_menu_keyboard())
        return MAIN_MENU

    outbox: List[str] = [render_stage(session)]
    session.subscribe(lambda event: queue_message(outbox, render_event(event, session)))

    context.user_data[KEY_SESSION] = session
    context.user_data[KEY_SESSION_ID] = session_id
    context.user_data[KEY_RECOGNIZER] = recognizer
    context.user_data[KEY_AUDIO] = audio_player
    context.user_data[KEY_OUTBOX] = outbox

    logger.info(f"User {user.telegram_id} started surah {surah} ayahs {start_ayah}-{end_ayah}")
    await flush_learning(update, context)
    return LEARNING


def queue_message(outbox: List[str], text: str) -> None:
    if text:
        outbox.append(text)


def end_learning(context: CallbackContext) -> None:
    """Close and forget the running learning session, if any."""
    session = context.user_data.pop(KEY_SESSION, None)
    for key in (KEY_SESSION_ID, KEY_RECOGNIZER, KEY_AUDIO, KEY_OUTBOX):
        context.user_data.pop(key, None)
    if session:
        session.close()


async def handle_learning_input(update: Update, context: CallbackContext) -> int:
    """Handle buttons and typed recitations during learning."""
    session: Optional[AyahLearningSession] = context.user_data.get(KEY_SESSION)
    if not session:
        return await handle_start(update, context)

    await log_received(update, "learn")

    try:
        if update.callback_query:
            action = update.callback_query.data.removeprefix("learn_")
            if action == "play":
                session.handle_input(InputEvent.PLAY)
            elif action == "next":
                session.handle_input(InputEvent.NEXT)
            elif action == "space":
                session.handle_input(InputEvent.SPACE)
        elif not submit_recitation(session, context.user_data[KEY_RECOGNIZER], update.message.text):
            context.user_data[KEY_OUTBOX].append(MSG_PRESS_READY)
    except HifzError as e:
        logger.warning(f"Learning input rejected: {e}")
        context.user_data[KEY_OUTBOX].append(f"⚠️ {html.escape(str(e))}")

    await flush_learning(update, context)
    return LEARNING


def submit_recitation(session: AyahLearningSession, recognizer: TypedTranscriptRecognizer, text: str) -> bool:
    """Use a typed message as the transcript of a recitation attempt.

    Returns False when the current stage takes no recitation.
    """
    if session.stage == LearnStage.AYAH_INTRO or session.is_complete:
        return False

    if not recognizer.is_listening:
        if session.stage == LearnStage.LISTEN_SHADOW:
            # Space means "ready" while shadowing, so start the attempt directly
            session.start_recognition()
        else:
            session.handle_input(InputEvent.SPACE)
    return recognizer.submit(text)


async def flush_learning(update: Update, context: CallbackContext) -> None:
    """Send queued messages and audio; delivered audio counts as played to the end."""
    session: AyahLearningSession = context.user_data[KEY_SESSION]
    audio_player: DeferredAudioPlayer = context.user_data[KEY_AUDIO]
    outbox: List[str] = context.user_data[KEY_OUTBOX]
    target = reply_target(update)

    while True:
        urls = audio_player.take_pending()
        if not urls:
            break
        if outbox:
            await target.reply_text("\n\n".join(outbox), parse_mode="HTML")
            outbox.clear()
        for url in urls:
            try:
                await target.reply_audio(url)
            except Exception as e:
                logger.error(f"Error sending audio {url}: {e}")
        audio_player.finish()

    lines = list(outbox)
    outbox.clear()
    lines.append(render_status(session))
    await target.reply_text("\n\n".join(lines), reply_markup=learning_keyboard(session), parse_mode="HTML")

    if session.is_complete:
        end_learning(context)


def learning_keyboard(session: AyahLearningSession) -> InlineKeyboardMarkup:
    """Buttons available in the current stage."""
    row = []
    if session.is_complete:
        row = [InlineKeyboardButton(START_LEARNING, callback_data="start_learning")]
    elif session.stage == LearnStage.AYAH_INTRO:
        row = [
            InlineKeyboardButton(PLAY, callback_data="learn_play"),
            InlineKeyboardButton(READY, callback_data="learn_next"),
        ]
    elif session.stage == LearnStage.LISTEN_SHADOW:
        row = [
            InlineKeyboardButton(PLAY, callback_data="learn_play"),
            InlineKeyboardButton(READY, callback_data="learn_next"),
        ]
    elif session.stage == LearnStage.READ_RECITE:
        row = [InlineKeyboardButton(PLAY, callback_data="learn_play"), recite_button(session)]
    elif session.stage == LearnStage.RECALL_MEMORY:
        row = [recite_button(session)]
    elif session.stage == LearnStage.CONNECT_AYAHS:
        row = [InlineKeyboardButton(PLAY, callback_data="learn_play")]
        if session.transition_session:
            row.append(recite_button(session.transition_session))

    keyboard = [row] if row else []
    keyboard.append([InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")])
    return InlineKeyboardMarkup(keyboard)


def recite_button(practice) -> InlineKeyboardButton:
    if practice.activity == Activity.RECITING:
        return InlineKeyboardButton(STOP, callback_data="learn_space")
    return InlineKeyboardButton(RECITE, callback_data="learn_space")


def render_stage(session: AyahLearningSession) -> str:
    """Stage header with the text the learner may see in it."""
    stage = session.stage
    header = f"<b>{stage.title}</b>\n<i>{stage.description}</i>"
    if stage == LearnStage.CONNECT_AYAHS:
        return header

    ayah = session.current_ayah
    header = f"Āyah {ayah.ayah} ({session.current_index + 1}/{session.total_ayahs})\n{header}"
    if stage == LearnStage.RECALL_MEMORY:
        return header
    lines = [header, "", html.escape(ayah.text)]
    if ayah.transliteration and stage in (LearnStage.AYAH_INTRO, LearnStage.LISTEN_SHADOW):
        lines.append(f"<i>{html.escape(ayah.transliteration)}</i>")
    return "\n".join(lines)


def render_feedback(feedback) -> str:
    lines = [html.escape(feedback.feedback)]
    if isinstance(feedback, DetailedFeedback):
        lines.extend(f"• {html.escape(mistake)}" for mistake in feedback.mistakes)
        lines.extend(f"💡 {html.escape(suggestion)}" for suggestion in feedback.suggestions)
    elif isinstance(feedback, ListenShadowFeedback):
        lines.extend(f"• {html.escape(mistake)}" for mistake in feedback.mistakes)
    return "\n".join(lines)


def get_random_encouragement() -> str:
    return random.choice(ENCOURAGEMENT_MESSAGES)


def render_event(event: SessionEvent, session: AyahLearningSession) -> str:
    """Turn a session event into a chat message; empty for events not shown."""
    payload = event.payload
    from_transitions = payload.get("source") == "transitions"

    if event.kind == SessionEventKind.STAGE_CHANGED:
        if payload.get("previous") in PRACTICE_STAGES:
            return f"{get_random_encouragement()}\n\n{render_stage(session)}"
        return render_stage(session)
    if event.kind == SessionEventKind.FEEDBACK:
        text = render_feedback(payload["feedback"])
        if from_transitions and payload.get("message"):
            text = f"{payload['message']}\n{text}"
        return text
    if event.kind == SessionEventKind.ATTEMPT_RECORDED:
        if from_transitions:
            return (
                f"Perfect transitions: {payload['perfect_attempts']}/{settings.transition.required_perfect_attempts}"
            )
        if payload.get("struggling"):
            return "Take your time. Listen to the recitation again before the next attempt."
        return ""
    if event.kind == SessionEventKind.AYAH_MASTERED:
        return f"✅ Āyah {payload['ayah'].ayah} memorized!"
    if event.kind == SessionEventKind.PAIR_CHANGED:
        pair = payload["pair"]
        return (
            f"Connect āyah {pair.from_ayah.ayah} → {pair.to_ayah.ayah}\n"
            f"…{html.escape(pair.from_ending)}\n"
            "Continue with the beginning of the next āyah."
        )
    if event.kind == SessionEventKind.COMPLETED:
        return "🎉 Transitions complete. Well done!"
    if event.kind == SessionEventKind.ACTIVITY_CHANGED:
        if payload["activity"] == Activity.RECITING:
            return MSG_TYPE_RECITATION
        return ""
    if event.kind == SessionEventKind.ERROR:
        return f"⚠️ {html.escape(payload['message'])}"
    return ""


def render_status(session: AyahLearningSession) -> str:
    """One-line progress of the running session."""
    if session.is_complete:
        return f"🎉 Session complete: {len(session.learned_ayahs)} āyāt memorized."

    if session.stage == LearnStage.CONNECT_AYAHS:
        transitions = session.transition_session
        if not transitions or not transitions.current_pair:
            return "Connecting āyāt…"
        return (
            f"Transition {transitions.current_pair_index + 1}/{len(transitions.pairs)} · "
            f"{transitions.overall_progress:.0f}% complete"
        )

    if session.stage.records_attempts:
        tracker = session.tracker
        return (
            f"Progress: {tracker.stage_successful_attempts}/{tracker.required_repetitions} "
            f"({tracker.stage_progress:.0f}%)"
        )
    if session.stage == LearnStage.AYAH_INTRO:
        return MSG_PRESS_READY
    return f"Listen, recite along, then press {READY}."
