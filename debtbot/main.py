import logging

from fastapi import FastAPI
from debtbot.core.config import settings
from debtbot.core.logging import configure_logging
from debtbot.db.session import connect_to_mongo, close_mongo_connection, get_database
from debtbot.api.v1.api import api_router
from debtbot.bot.application import attach_services, build_application

logger = logging.getLogger(__name__)

configure_logging()

app = FastAPI(title=settings.PROJECT_NAME, version=settings.PROJECT_VERSION, description=settings.DESCRIPTION)
app.state.telegram = None
app.state.reminders = None


async def start_bot():
    """Run the bot in webhook mode next to the API."""
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN is not set, bot disabled")
        return
    application = build_application(updater=False)
    scheduler = attach_services(application, await get_database())
    await application.initialize()
    await application.start()
    if settings.TELEGRAM_WEBHOOK_URL:
        await application.bot.set_webhook(
            settings.TELEGRAM_WEBHOOK_URL,
            secret_token=settings.TELEGRAM_WEBHOOK_SECRET or None,
        )
        logger.info("Webhook registered at %s", settings.TELEGRAM_WEBHOOK_URL)
    scheduler.start()
    app.state.telegram = application
    app.state.reminders = scheduler


async def stop_bot():
    if app.state.reminders is not None:
        await app.state.reminders.stop()
        app.state.reminders = None
    if app.state.telegram is not None:
        await app.state.telegram.stop()
        await app.state.telegram.shutdown()
        app.state.telegram = None


app.add_event_handler("startup", connect_to_mongo)
app.add_event_handler("startup", start_bot)
app.add_event_handler("shutdown", stop_bot)
app.add_event_handler("shutdown", close_mongo_connection)

@app.get("/")
async def root():
    return {"message": "Welcome to Debt Sync Bot API"}

app.include_router(api_router, prefix=settings.API_V1_STR)
