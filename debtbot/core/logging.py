import logging

from debtbot.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the bot and the API process."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # python-telegram-bot logs every getUpdates round-trip through httpx at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
