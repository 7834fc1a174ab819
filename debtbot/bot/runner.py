"""Long-polling entry point, for running the bot without the web API."""

import asyncio
import logging
import signal

from debtbot.bot.application import attach_services, build_application
from debtbot.core.logging import configure_logging
from debtbot.db.mongo import close_mongo_connection, connect_to_mongo, get_db

logger = logging.getLogger(__name__)


async def run_polling() -> None:
    await connect_to_mongo()
    application = build_application()
    scheduler = attach_services(application, get_db())

    await application.initialize()
    await application.start()
    await application.updater.start_polling()
    scheduler.start()
    logger.info("Bot started in polling mode")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        logger.warning("Signal handlers are not supported on this platform")

    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
        if application.updater.running:
            await application.updater.stop()
        await application.stop()
        await application.shutdown()
        await close_mongo_connection()
        logger.info("Bot stopped")


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run_polling())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")


if __name__ == "__main__":
    main()
