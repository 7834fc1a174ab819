import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, status
from telegram import Update

from debtbot.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    """Receive an update pushed by Telegram and hand it to the bot application"""
    if settings.TELEGRAM_WEBHOOK_SECRET and not secrets.compare_digest(
        x_telegram_bot_api_secret_token or "", settings.TELEGRAM_WEBHOOK_SECRET
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid secret token")

    application = getattr(request.app.state, "telegram", None)
    if application is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Bot is not running")

    payload = await request.json()
    update = Update.de_json(payload, application.bot)
    if update is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed update")
    logger.debug("Received update %s", update.update_id)
    await application.process_update(update)
    return {"ok": True}
