"""Main application entry point."""
import logging
from typing import Optional
from warnings import filterwarnings
from telegram.warnings import PTBUserWarning

# Suppress the warning about CallbackQueryHandler and per_message
filterwarnings(action="ignore", message=r".*CallbackQueryHandler", category=PTBUserWarning)

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from lexibot.config import settings
from lexibot.models.base import init_db, SessionLocal
from lexibot.monitoring import start_monitoring
from lexibot.services.word_service import WordService
from lexibot.bot import (
    handle_start,
    handle_callback,
    handle_document,
    handle_message,
    handle_study_response,
    handle_wordlist_input,
    EDITING,
    MAIN_MENU,
    STUDYING,
)

CSV_FILES = filters.Document.FileExtension("csv")


def build_conversation_handler() -> ConversationHandler:
    """Conversation handler for the menu, study and wordlist editing states."""
    return ConversationHandler(
        entry_points=[CommandHandler("start", handle_start)],
        states={
            MAIN_MENU: [
                MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message),
                MessageHandler(CSV_FILES, handle_document),
                CallbackQueryHandler(handle_callback),
            ],
            STUDYING: [
                MessageHandler(filters.TEXT & ~filters.COMMAND, handle_study_response),
                CallbackQueryHandler(handle_callback),
            ],
            EDITING: [
                MessageHandler(filters.TEXT & ~filters.COMMAND, handle_wordlist_input),
                MessageHandler(CSV_FILES, handle_document),
                CallbackQueryHandler(handle_callback),
            ],
        },
        fallbacks=[CommandHandler("start", handle_start)],
        per_message=False,
    )


class LexiBot:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.application: Optional[Application] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            settings.validate(require_token=True)

            # Initialize database and built-in wordlists
            init_db()
            db = SessionLocal()
            try:
                loaded = WordService(db).load_builtin_dictionaries()
            finally:
                db.close()
            self.logger.info("Database initialized, %d built-in dictionaries loaded", loaded)

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info("Metrics exposed on port %d", settings.monitoring.port)

            # Create application
            self.application = Application.builder().token(settings.bot.token).build()
            self.application.add_handler(build_conversation_handler())
            self.logger.info("Handlers added")

            # Start application
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()
            self.logger.info("Application started")

            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.application:
            self.running = False
            return

        try:
            if self.application.updater and self.application.updater.running:
                await self.application.updater.stop()
            if self.application.running:
                await self.application.stop()
            await self.application.shutdown()
            self.logger.info("Application stopped")
        finally:
            self.application = None
            self.running = False
