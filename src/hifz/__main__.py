"""Main entry point for the bot."""
from hifz.app import main
from hifz.config import ensure_directories
from hifz.logging_config import setup_logging


if __name__ == "__main__":
    # Ensure all required directories exist
    ensure_directories()

    setup_logging("Starting Hifz bot ...")

    main()
