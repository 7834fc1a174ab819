import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from telegram.ext import AIORateLimiter, Application, ApplicationBuilder

from debtbot.bot.conversation import SessionStore
from debtbot.bot.handlers import register_handlers
from debtbot.core.config import settings
from debtbot.repositories.record_repo import RecordRepository
from debtbot.services.actions import ActionRouter
from debtbot.services.debt_service import DebtSyncService
from debtbot.services.link_service import LinkService
from debtbot.services.notifications import TelegramDispatcher
from debtbot.services.reminder_service import ReminderScheduler, ReminderService
from debtbot.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


def build_application(token: str = None, updater: bool = True) -> Application:
    """Build the bot application; updater=False for webhook mode, where updates are pushed to us."""
    builder = ApplicationBuilder().token(token or settings.TELEGRAM_BOT_TOKEN)
    if not updater:
        builder = builder.updater(None)
    try:
        rate_limiter = AIORateLimiter()
    except RuntimeError as exc:
        logger.warning("Rate limiter disabled: %s", exc)
    else:
        builder = builder.rate_limiter(rate_limiter)
    application = builder.build()
    register_handlers(application)
    return application


def attach_services(application: Application, db: AsyncIOMotorDatabase) -> ReminderScheduler:
    """Wire the services into bot_data. Returns the (not yet started) reminder scheduler."""
    store = RecordRepository(db)
    dispatcher = TelegramDispatcher(application.bot)
    debt_service = DebtSyncService(store, dispatcher)

    application.bot_data["store"] = store
    application.bot_data["debt_service"] = debt_service
    application.bot_data["link_service"] = LinkService(store, dispatcher)
    application.bot_data["settings_service"] = SettingsService(store)
    application.bot_data["action_router"] = ActionRouter(debt_service)
    application.bot_data["sessions"] = SessionStore()
    return ReminderScheduler(ReminderService(store, dispatcher))
