"""Main application entry point."""
import asyncio
import logging
import signal
import sys
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

from hifz.config import settings
from hifz.models.base import init_db
from hifz.monitoring import start_monitoring
from hifz.bot import (
    handle_start,
    handle_callback,
    handle_message,
    handle_learning_input,
    handle_review_input,
    MAIN_MENU,
    LEARNING,
    REVIEWING,
)


class HifzBot:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.application: Optional[Application] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    def build_application(self) -> Application:
        """Create the Telegram application with the conversation handler."""
        application = Application.builder().token(settings.bot.token).build()

        conv_handler = ConversationHandler(
            entry_points=[CommandHandler("start", handle_start)],
            states={
                MAIN_MENU: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message),
                    CallbackQueryHandler(handle_callback),
                ],
                LEARNING: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, handle_learning_input),
                    CallbackQueryHandler(handle_callback),
                ],
                REVIEWING: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, handle_review_input),
                    CallbackQueryHandler(handle_callback),
                ],
            },
            fallbacks=[CommandHandler("start", handle_start)],
            per_message=False,
        )
        application.add_handler(conv_handler)
        return application

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            settings.validate(require_token=True)

            # Initialize database
            init_db()
            self.logger.info("Database initialized")

            if settings.monitoring.port:
                start_monitoring(settings.monitoring.port)
                self.logger.info(f"Metrics served on port {settings.monitoring.port}")

            self.application = self.build_application()
            self.logger.info("Application created")

            # Start application
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()
            self.logger.info("Application started")

            self.running = True

        except Exception as e:
            self.logger.error(f"Failed to start application: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.application:
            self.running = False
            return

        try:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            self.logger.info("Application stopped")
        except Exception as e:
            self.logger.error(f"Error while stopping application: {e}")
            raise
        finally:
            self.application = None
            self.running = False

    def run(self) -> None:
        """Run the application until interrupted."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        def signal_handler(signum, frame):
            """Handle signals like SIGINT (Ctrl+C)."""
            print()  # Print a newline to ensure log messages start on a new line
            self.logger.info(f"Received signal {signum}. Shutting down...")
            loop.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            loop.run_until_complete(self.start())
            loop.run_forever()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            loop.run_until_complete(self.stop())
            loop.close()


def main() -> None:
    """Main entry point."""
    bot = HifzBot()
    try:
        bot.run()
    except ValueError as e:
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
