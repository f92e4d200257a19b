"""Main entry point for the bot."""
import asyncio
import logging
import signal

from lexibot.app import LexiBot
from lexibot.config import ensure_directories
from lexibot.logging_config import setup_logging

logger = logging.getLogger("lexibot")


async def main() -> None:
    """Run the bot until a termination signal arrives."""
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    bot = LexiBot()
    try:
        logger.info("Starting bot...")
        await bot.start()
        await stop_event.wait()
        logger.info("Received exit signal, shutting down...")
    finally:
        logger.info("Cleaning up...")
        await bot.stop()


def run() -> None:
    """Console script entry point."""
    ensure_directories()
    setup_logging("Starting LexiBot ...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
