"""Main Telegram bot module."""
import html
import io
import json
import logging
from pathlib import Path
from typing import List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import CallbackContext

from lexibot.exceptions import (
    EmptyQueueError,
    MalformedInputError,
    PersistenceError,
    SessionStateError,
)
from lexibot.models.base import SessionLocal
from lexibot.models.models import User
from lexibot.models.study_models import (
    Phase,
    SessionRecordData,
    SpellingResult,
    Step,
)
from lexibot.services import srs
from lexibot.services.pronunciation import PronunciationService
from lexibot.services.queue_builder import QueueBuilder
from lexibot.services.stats_service import StatsService
from lexibot.services.study_session import StudySession
from lexibot.services.user_service import UserService
from lexibot.services.word_service import DEFAULT_CUSTOM_LIST, WordService, parse_word_lines
from lexibot.services.word_store import SqlWordStore

# Get logger for this module
logger = logging.getLogger(__name__)

# Conversation states
MAIN_MENU, STUDYING, EDITING = range(3)

# Button texts
MENU = "🏠 Menu"
TODAY = "📅 Today"
START_STUDY = "🚀 Start Studying"
VIEW_PROGRESS = "📊 Progress"
SETTINGS = "⚙️ Settings"
WORDLISTS = "📚 Wordlists"

SHOW_MEANING = "👀 Show meaning"
KNOW = "✅ I know it"
DONT_KNOW = "❌ Don't know"
NEXT = "➡️ Next"
PRONOUNCE = "🔊 Pronounce"
EXIT_STUDY = "🚪 Exit"

NEW_LIST = "➕ New list"
ADD_WORDS = "✏️ Add words"
IMPORT_CSV = "📥 Import CSV"
EXPORT_DATA = "💾 Export data"
CANCEL = "✖️ Cancel"

PHASE_TITLES = {
    Phase.REVIEW: "Review",
    Phase.NEW_LEARN: "New words",
    Phase.NEW_REVIEW: "New words review",
    Phase.RELAPSE: "Mistakes review",
}

LEVEL_LABELS = ["L0 unfamiliar", "L1 recognised", "L2 familiar", "L3 mastered"]

# setting -> (button step, lower bound)
SETTING_STEPS = {
    "daily_new": (5, 0),
    "review_cap": (10, 0),
    "relapse_cap": (5, 0),
}

ERR_MSG_NOT_REGISTERED = "Please /start first to register"
ERR_MSG_SAVE_FAILED = "⚠️ Your progress could not be saved. It will be retried; keep going."

STUDY_SESSION_KEY = "study_session"
PENDING_SESSION_KEY = "pending_session"
AWAITING_KEY = "awaiting_input"

MAX_CSV_BYTES = 1024 * 1024
ADD_WORDS_PROMPT = ("Send the words, one per line, as <code>word, meaning</code>.\n"
                    "The meaning is optional.")


def msg_back_to(text: str) -> str: return f"🔙 {text}"


def menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(TODAY, callback_data="today")],
        [InlineKeyboardButton(START_STUDY, callback_data="study_start")],
        [InlineKeyboardButton(VIEW_PROGRESS, callback_data="progress"),
         InlineKeyboardButton(SETTINGS, callback_data="settings")],
        [InlineKeyboardButton(WORDLISTS, callback_data="wordlists")],
    ])


def back_to_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")]])


async def log_received(update: Update, context_type: str) -> None:
    """Log message."""
    txt = ""
    if update.callback_query:
        txt = f" {update.callback_query.data}"
    elif update.message:
        txt = f" {update.message.text}"
    logger.info(f"Received @{context_type:8} from user {update.effective_user.username} ({update.effective_user.id}){txt}")


async def reply(update: Update, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
    """Edit the message behind a button press, or answer a text message."""
    if update.callback_query:
        await update.callback_query.edit_message_text(text, reply_markup=reply_markup, parse_mode="HTML")
    else:
        await update.message.reply_text(text, reply_markup=reply_markup, parse_mode="HTML")


def get_user_from_update(update: Update) -> Optional[User]:
    """Get user from database based on update."""
    user = update.effective_user
    if not user:
        return None

    db = SessionLocal()
    try:
        return UserService(db).get_user_by_telegram_id(user.id)
    finally:
        db.close()


def retry_pending_session(context: CallbackContext) -> None:
    """Save what finished sessions could not write, oldest first."""
    pending: List[StudySession] = context.user_data.get(PENDING_SESSION_KEY) or []
    if not pending:
        return

    db = SessionLocal()
    try:
        while pending:
            study = pending[0]
            study.store = SqlWordStore(db)
            study.retry_pending_writes()
            pending.pop(0)
            logger.info("Finished session of user %s saved on retry", study.user_id)
    except PersistenceError as e:
        logger.warning("%d finished sessions are still unsaved: %s", len(pending), e)
    finally:
        db.close()

    if not pending:
        context.user_data.pop(PENDING_SESSION_KEY, None)


async def handle_start(update: Update, context: CallbackContext) -> int:
    """Register the user and show the main menu."""
    await log_received(update, "start")
    context.user_data.pop(AWAITING_KEY, None)
    if not update.callback_query:
        retry_pending_session(context)

    db = SessionLocal()
    try:
        user = UserService(db).get_or_create_user(
            telegram_id=update.effective_user.id,
            username=update.effective_user.first_name,
        )
        message = (f"Welcome to LexiBot, {html.escape(user.username or 'friend')}! 👋\n\n"
                   "Review due words, learn new ones and practise spelling.\n"
                   "What would you like to do?")
    finally:
        db.close()

    await reply(update, message, menu_keyboard())
    return MAIN_MENU


async def handle_callback(update: Update, context: CallbackContext) -> int:
    """Handle callback queries from the main menu."""
    query = update.callback_query
    await query.answer()

    await log_received(update, "callback")
    retry_pending_session(context)
    context.user_data.pop(AWAITING_KEY, None)

    if query.data == "study_start":
        return await start_study(update, context)
    elif query.data.startswith("study_"):
        return await handle_study_response(update, context)
    elif query.data == "back_to_menu":
        return await handle_start(update, context)
    elif query.data == "today":
        return await show_today(update, context)
    elif query.data == "progress":
        return await show_progress(update, context)
    elif query.data == "settings":
        return await show_settings(update, context)
    elif query.data.startswith("settings_"):
        return await handle_settings_change(update, context)
    elif query.data == "wordlists":
        return await show_wordlists(update, context)
    elif query.data == "wordlists_export":
        return await send_export(update, context)
    elif query.data.startswith("wordlists_"):
        return await ask_wordlist_input(update, context)

    return MAIN_MENU


async def handle_message(update: Update, context: CallbackContext) -> int:
    """Search the catalog for text typed outside a study session."""
    await log_received(update, "message")
    retry_pending_session(context)

    user = get_user_from_update(update)
    query = (update.message.text or "").strip()
    if not user or not query:
        await update.message.reply_text("Please use the menu, or /start to open it.")
        return MAIN_MENU

    db = SessionLocal()
    try:
        words = WordService(db).search_words(query, user.id)
        lines = [f"<b>{html.escape(w.word)}</b> {html.escape(w.meaning_cn or '')}".rstrip() for w in words]
    finally:
        db.close()

    if lines:
        message = f"🔎 Words matching <i>{html.escape(query)}</i>:\n\n" + "\n".join(lines)
    else:
        message = f"🔎 No words match <i>{html.escape(query)}</i>."
    await reply(update, message, menu_keyboard())
    return MAIN_MENU


async def show_today(update: Update, context: CallbackContext) -> int:
    """Show today's task counts and today's report."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        study_settings = UserService(db).get_study_settings(user.id)
        overview = StatsService(db).get_today_overview(user.id, study_settings)
    except PersistenceError:
        await reply(update, "⚠️ Could not load today's tasks. Please try again later.", back_to_menu_keyboard())
        return MAIN_MENU
    finally:
        db.close()

    counts = overview["counts"]
    message = (
        "📅 <b>Today</b>\n\n"
        f"🔄 Due reviews: {counts.review_count}\n"
        f"✨ New words: {counts.new_count}\n"
        f"⏱️ About {overview['estimated_minutes']} min\n"
    )
    if counts.total == 0:
        message += "\n🎉 All done for today!\n"
    if overview["today_session"]:
        message += "\n📋 <b>Today's report</b>\n" + format_record(overview["today_session"])

    await reply(update, message, InlineKeyboardMarkup([
        [InlineKeyboardButton(START_STUDY, callback_data="study_start")],
        [InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")],
    ]))
    return MAIN_MENU


def format_record(record: SessionRecordData) -> str:
    """Session summary lines."""
    minutes, seconds = divmod(record.duration_seconds, 60)
    lines = [
        f"New: {record.new_count}  Reviewed: {record.review_count}",
        f"Spelling accuracy: {round(record.spelling_accuracy * 100)}%",
        f"Knew: {record.know_count}  Didn't know: {record.dont_know_count}",
        f"Level-ups: {record.level_ups}",
        f"Time: {minutes}m {seconds}s",
    ]
    if record.hardest_word:
        lines.append(f"Hardest word: <b>{html.escape(record.hardest_word)}</b>")
    return "\n".join(lines) + "\n"


async def show_progress(update: Update, context: CallbackContext) -> int:
    """Show level distribution and recent sessions."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        progress = StatsService(db).get_progress(user.id)
    except PersistenceError:
        await reply(update, "⚠️ Could not load your progress. Please try again later.", back_to_menu_keyboard())
        return MAIN_MENU
    finally:
        db.close()

    message = (
        "📊 <b>Progress</b>\n\n"
        f"Words studied: {progress['total_studied']}\n"
        f"Mastered: {progress['mastered']}\n"
        f"Study days this week: {progress['study_days_this_week']}\n\n"
    )
    for level, label in enumerate(LEVEL_LABELS):
        message += f"{label}: {progress['levels'].get(level, 0)}\n"

    if progress["recent_sessions"]:
        message += "\n<b>Recent sessions</b>\n"
        for record in progress["recent_sessions"]:
            message += (f"{record.date.isoformat()}: +{record.new_count} new, "
                        f"{record.review_count} reviewed, {round(record.spelling_accuracy * 100)}%\n")

    await reply(update, message, back_to_menu_keyboard())
    return MAIN_MENU


async def show_settings(update: Update, context: CallbackContext) -> int:
    """Show study settings with adjustment buttons."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        study_settings = UserService(db).get_study_settings(user.id)
    finally:
        db.close()

    message = (
        "⚙️ <b>Settings</b>\n\n"
        f"New words per day: {study_settings.daily_new}\n"
        f"Reviews per day: {study_settings.review_cap}\n"
        f"Mistakes replayed per session: {study_settings.relapse_cap}\n"
        f"Pronunciation: {'on' if study_settings.tts_enabled else 'off'}"
        f"{' (slow)' if study_settings.tts_rate < 1.0 else ''}\n"
    )

    keyboard = []
    for name, (step, _) in SETTING_STEPS.items():
        label = name.replace("_", " ")
        keyboard.append([
            InlineKeyboardButton(f"➖ {label}", callback_data=f"settings_{name}_-{step}"),
            InlineKeyboardButton(f"➕ {label}", callback_data=f"settings_{name}_{step}"),
        ])
    keyboard.append([
        InlineKeyboardButton("🔊 Toggle pronunciation", callback_data="settings_tts_toggle"),
        InlineKeyboardButton("🐢 Toggle slow", callback_data="settings_tts_slow"),
    ])
    keyboard.append([InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")])

    await reply(update, message, InlineKeyboardMarkup(keyboard))
    return MAIN_MENU


async def handle_settings_change(update: Update, context: CallbackContext) -> int:
    """Apply a settings button press."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    data = update.callback_query.data[len("settings_"):]
    db = SessionLocal()
    try:
        user_service = UserService(db)
        current = user_service.get_study_settings(user.id)
        if data == "tts_toggle":
            user_service.update_study_settings(user.id, tts_enabled=not current.tts_enabled)
        elif data == "tts_slow":
            user_service.update_study_settings(user.id, tts_rate=1.0 if current.tts_rate < 1.0 else 0.75)
        else:
            name, _, delta = data.rpartition("_")
            if name in SETTING_STEPS:
                lower = SETTING_STEPS[name][1]
                value = max(lower, getattr(current, name) + int(delta))
                user_service.update_study_settings(user.id, **{name: value})
    finally:
        db.close()

    return await show_settings(update, context)


def cancel_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton(CANCEL, callback_data="wordlists")]])


async def show_wordlists(update: Update, context: CallbackContext) -> int:
    """List the visible wordlists with their sizes."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        word_service = WordService(db)
        total = word_service.get_word_count(user.id)
        lines = []
        own_lists = []
        for wordlist, size in word_service.get_wordlist_sizes(user.id):
            kind = "built-in" if wordlist.is_builtin else "yours"
            lines.append(f"📘 {html.escape(wordlist.name)}: {size} words ({kind})")
            if not wordlist.is_builtin:
                own_lists.append((wordlist.id, wordlist.name))
    finally:
        db.close()

    message = (f"📚 <b>Wordlists</b>\nWords available: {total}\n\n"
               + ("\n".join(lines) if lines else "No wordlists yet.")
               + "\n\nType any word outside a session to search for it.")
    keyboard = [
        [InlineKeyboardButton(NEW_LIST, callback_data="wordlists_new"),
         InlineKeyboardButton(ADD_WORDS, callback_data="wordlists_add")],
    ]
    for wordlist_id, name in own_lists:
        keyboard.append([InlineKeyboardButton(f"✏️ {name}", callback_data=f"wordlists_add_{wordlist_id}")])
    keyboard.append([
        InlineKeyboardButton(IMPORT_CSV, callback_data="wordlists_import"),
        InlineKeyboardButton(EXPORT_DATA, callback_data="wordlists_export"),
    ])
    keyboard.append([InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")])

    await reply(update, message, InlineKeyboardMarkup(keyboard))
    return MAIN_MENU


async def ask_wordlist_input(update: Update, context: CallbackContext) -> int:
    """Ask for a list name, words or a CSV file, depending on the button."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    data = update.callback_query.data[len("wordlists_"):]
    if data == "new":
        context.user_data[AWAITING_KEY] = ("name", None)
        message = "Send the name of the new list."
    elif data == "import":
        context.user_data[AWAITING_KEY] = ("csv", None)
        message = ("Send a .csv file with a <code>word</code> column and optional "
                   "<code>meaning_cn</code>, <code>phonetic</code>, <code>example</code> and "
                   "<code>unit</code> columns.\nThe caption, or else the file name, names the list.")
    elif data == "add":
        context.user_data[AWAITING_KEY] = ("words", None)
        message = f"Words go to <b>{html.escape(DEFAULT_CUSTOM_LIST)}</b>.\n\n{ADD_WORDS_PROMPT}"
    elif data.startswith("add_") and data[len("add_"):].isdigit():
        context.user_data[AWAITING_KEY] = ("words", int(data[len("add_"):]))
        message = ADD_WORDS_PROMPT
    else:
        return await show_wordlists(update, context)

    await reply(update, message, cancel_keyboard())
    return EDITING


async def handle_wordlist_input(update: Update, context: CallbackContext) -> int:
    """Handle a list name or word lines typed after a wordlist button."""
    await log_received(update, "wordlist")
    retry_pending_session(context)

    awaiting = context.user_data.get(AWAITING_KEY)
    if awaiting is None:
        return await handle_message(update, context)

    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    kind, wordlist_id = awaiting
    text = (update.message.text or "").strip()
    if kind == "csv":
        await reply(update, "Please send the words as a .csv file.", cancel_keyboard())
        return EDITING
    if not text:
        await reply(update, "Please send some text.", cancel_keyboard())
        return EDITING

    db = SessionLocal()
    try:
        service = WordService(db)
        if kind == "name":
            wordlist = service.get_or_create_wordlist(text, user.id)
            context.user_data[AWAITING_KEY] = ("words", wordlist.id)
            await reply(update, f"📘 List <b>{html.escape(wordlist.name)}</b> is ready.\n\n{ADD_WORDS_PROMPT}",
                        cancel_keyboard())
            return EDITING

        if wordlist_id is None:
            wordlist = service.get_or_create_wordlist(DEFAULT_CUSTOM_LIST, user.id)
        else:
            wordlist = service.get_user_wordlist(wordlist_id, user.id)
        if wordlist is None:
            context.user_data.pop(AWAITING_KEY, None)
            await reply(update, "That list is not available.", back_to_menu_keyboard())
            return MAIN_MENU

        words = service.add_words(wordlist, parse_word_lines(text))
        message = f"✅ Added {len(words)} words to <b>{html.escape(wordlist.name)}</b>."
    finally:
        db.close()

    context.user_data.pop(AWAITING_KEY, None)
    await reply(update, message, menu_keyboard())
    return MAIN_MENU


async def handle_document(update: Update, context: CallbackContext) -> int:
    """Import a CSV file as a new wordlist of the user."""
    await log_received(update, "document")
    retry_pending_session(context)
    context.user_data.pop(AWAITING_KEY, None)

    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    document = update.message.document
    if document.file_size and document.file_size > MAX_CSV_BYTES:
        await reply(update, "⚠️ The file is too large.", back_to_menu_keyboard())
        return MAIN_MENU

    telegram_file = await document.get_file()
    content = await telegram_file.download_as_bytearray()
    try:
        text = bytes(content).decode("utf-8-sig")
    except UnicodeDecodeError:
        await reply(update, "⚠️ The file must be UTF-8 encoded.", back_to_menu_keyboard())
        return MAIN_MENU

    name = (update.message.caption or "").strip() or Path(document.file_name or "import.csv").stem
    db = SessionLocal()
    try:
        wordlist = WordService(db).import_csv_text(text, name, user.id)
        message = f"📥 Imported <b>{html.escape(wordlist.name)}</b> with {len(wordlist.words)} words."
    except ValueError as e:
        message = f"⚠️ Could not import the file: {html.escape(str(e))}"
    finally:
        db.close()

    logger.info("User %s imported %s", user.id, name)
    await reply(update, message, menu_keyboard())
    return MAIN_MENU


async def send_export(update: Update, context: CallbackContext) -> int:
    """Send the user's data as a JSON backup file."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    db = SessionLocal()
    try:
        data = UserService(db).export_user_data(user.id)
    except PersistenceError:
        await reply(update, "⚠️ Could not export your data. Please try again later.", back_to_menu_keyboard())
        return MAIN_MENU
    finally:
        db.close()

    payload = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
    filename = f"lexibot-backup-{srs.utc_today().isoformat()}.json"
    target = update.callback_query.message if update.callback_query else update.message
    await target.reply_document(document=io.BytesIO(payload), filename=filename)
    return MAIN_MENU


async def start_study(update: Update, context: CallbackContext) -> int:
    """Build today's queue and start a study session."""
    user = get_user_from_update(update)
    if not user:
        await reply(update, ERR_MSG_NOT_REGISTERED)
        return MAIN_MENU

    previous: Optional[StudySession] = context.user_data.pop(STUDY_SESSION_KEY, None)
    if previous is not None:
        previous.exit()

    db = SessionLocal()
    try:
        study_settings = UserService(db).get_study_settings(user.id)
        store = SqlWordStore(db)
        study = StudySession(user.id, store, study_settings)
        queue = QueueBuilder(store).build(user.id, study_settings)
        study.start(queue)
    except EmptyQueueError:
        await reply(update, "🎉 Nothing to study right now.\nCome back tomorrow!", back_to_menu_keyboard())
        return MAIN_MENU
    except PersistenceError:
        await reply(update, "⚠️ Could not load your words. Please try again later.", back_to_menu_keyboard())
        return MAIN_MENU
    finally:
        db.close()

    context.user_data[STUDY_SESSION_KEY] = study
    await send_study_card(update, study)
    return STUDYING


def study_keyboard(study: StudySession) -> InlineKeyboardMarkup:
    keyboard: List[List[InlineKeyboardButton]] = []
    if study.step is Step.RECALL:
        if not study.answer_shown:
            keyboard.append([InlineKeyboardButton(SHOW_MEANING, callback_data="study_reveal")])
        keyboard.append([
            InlineKeyboardButton(KNOW, callback_data="study_know"),
            InlineKeyboardButton(DONT_KNOW, callback_data="study_dontknow"),
        ])
    elif study.spelling_result in (SpellingResult.CORRECT, SpellingResult.CORRECTED):
        keyboard.append([InlineKeyboardButton(NEXT, callback_data="study_next")])

    keyboard.append([
        InlineKeyboardButton(PRONOUNCE, callback_data="study_pronounce"),
        InlineKeyboardButton(EXIT_STUDY, callback_data="study_exit"),
    ])
    return InlineKeyboardMarkup(keyboard)


def format_study_card(study: StudySession, notice: str = "") -> str:
    """Text of the current recall or spelling card."""
    card = study.current.card
    header = (f"<i>{PHASE_TITLES[study.phase]} · "
              f"{study.completed_items() + 1}/{study.total_items()}</i>\n\n")

    if study.step is Step.RECALL:
        text = f"<b>{html.escape(card.word)}</b>"
        if card.phonetic:
            text += f"  {html.escape(card.phonetic)}"
        text += "\n\nDo you remember what it means?"
        if study.answer_shown:
            text += f"\n\n💡 {html.escape(' / '.join(card.meanings) or 'No meaning yet')}"
            if card.example:
                text += f"\n📝 <i>{html.escape(card.example)}</i>"
    else:
        meaning = study.display_meaning()
        if meaning:
            text = f"✍️ Type the word for:\n\n<b>{html.escape(meaning)}</b>"
        else:
            text = "✍️ This word has no meaning yet.\nPress 🔊 to hear it, then type it."
        if study.spelling_result is SpellingResult.CORRECT:
            text += "\n\n✅ Correct!"
        elif study.spelling_result is SpellingResult.CORRECTED:
            text += f"\n\n✅ Now it's right: <b>{html.escape(card.word)}</b>"
        elif study.spelling_result is SpellingResult.INCORRECT:
            text += (f"\n\n❌ The correct spelling is <b>{html.escape(card.word)}</b>.\n"
                     "Type it once more to continue.")

    if notice:
        text += f"\n\n{notice}"
    return header + text


async def send_study_card(update: Update, study: StudySession, notice: str = "") -> None:
    """Show the current card, or the summary once the session is complete."""
    if study.phase is Phase.COMPLETE:
        message = "🏁 <b>Session complete!</b>\n\n"
        if study.record:
            message += format_record(study.record)
        if notice:
            message += f"\n{notice}"
        await reply(update, message, InlineKeyboardMarkup([
            [InlineKeyboardButton(TODAY, callback_data="today")],
            [InlineKeyboardButton(msg_back_to(MENU), callback_data="back_to_menu")],
        ]))
        return

    await reply(update, format_study_card(study, notice), study_keyboard(study))


async def handle_study_response(update: Update, context: CallbackContext) -> int:
    """Handle buttons and typed spellings during a study session."""
    study: Optional[StudySession] = context.user_data.get(STUDY_SESSION_KEY)
    if study is None or not study.is_active:
        context.user_data.pop(STUDY_SESSION_KEY, None)
        return await handle_start(update, context)

    action = update.callback_query.data[len("study_"):] if update.callback_query else None
    await log_received(update, "study")

    if action == "exit":
        study.exit()
        context.user_data.pop(STUDY_SESSION_KEY, None)
        return await handle_start(update, context)

    if action == "pronounce":
        await send_pronunciation(update, study)
        return STUDYING

    if action is None:
        retry_pending_session(context)

    notice = ""
    db = SessionLocal()
    try:
        study.store = SqlWordStore(db)
        # A failed retry must not block the answer
        if study.has_pending_writes:
            try:
                study.retry_pending_writes()
            except PersistenceError:
                notice = ERR_MSG_SAVE_FAILED

        if action == "reveal":
            study.reveal()
        elif action == "know":
            study.submit_recall(True)
        elif action == "dontknow":
            study.submit_recall(False)
        elif action == "next":
            study.proceed()
        elif action is None:
            study.submit_spelling(update.message.text or "")
    except MalformedInputError:
        notice = "Please type the word."
    except SessionStateError:
        notice = ("Type the word to continue." if study.step is Step.SPELLING
                  else "Use the buttons to answer.")
    except PersistenceError:
        notice = ERR_MSG_SAVE_FAILED
    finally:
        db.close()

    await send_study_card(update, study, notice)
    if study.phase is Phase.COMPLETE:
        context.user_data.pop(STUDY_SESSION_KEY, None)
        if study.has_pending_writes:
            context.user_data.setdefault(PENDING_SESSION_KEY, []).append(study)
            logger.warning("User %s finished with unsaved writes, kept for retry", study.user_id)
        return MAIN_MENU
    return STUDYING


async def send_pronunciation(update: Update, study: StudySession) -> None:
    """Send an audio pronunciation of the current word."""
    target = update.callback_query.message if update.callback_query else update.message
    path = PronunciationService().get_pronunciation(study.current.card.word, study.settings)
    if path is None:
        await target.reply_text("Pronunciation is not available for this word.")
        return

    with open(path, "rb") as audio:
        await target.reply_audio(audio)
