"""
Outbound notifications.

send() is best effort and never raises: every outcome comes back as a Delivery
value that the caller has to look at. A state change is never rolled back
because its notification could not be delivered.
"""

import logging
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import BadRequest, Forbidden, TelegramError

from debtbot.core.constants import NotificationEvent
from debtbot.models.record import UserRecord

logger = logging.getLogger(__name__)


class Delivery(str, Enum):
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"
    # recipient blocked the bot or never started it
    BLOCKED = "blocked"
    # recipient's preference disabled this notification
    SUPPRESSED = "suppressed"

    @property
    def failed(self) -> bool:
        return self in (Delivery.UNDELIVERED, Delivery.BLOCKED)


class ActionButton(BaseModel):
    text: str
    action: str


Controls = Sequence[Sequence[ActionButton]]


class NotificationDispatcher(Protocol):
    async def send(self, recipient_id: str, text: str, controls: Optional[Controls] = None) -> Delivery:
        ...


def build_markup(controls: Optional[Controls]) -> Optional[InlineKeyboardMarkup]:
    if not controls:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.text, callback_data=b.action) for b in row] for row in controls]
    )


class TelegramDispatcher:
    """Delivers notifications through the Telegram Bot API."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, recipient_id: str, text: str, controls: Optional[Controls] = None) -> Delivery:
        try:
            await self.bot.send_message(
                chat_id=int(recipient_id),
                text=text,
                reply_markup=build_markup(controls),
            )
        except Forbidden as exc:
            logger.warning("User %s blocked the bot: %s", recipient_id, exc)
            return Delivery.BLOCKED
        except BadRequest as exc:
            # "Chat not found": the recipient never opened a chat with the bot
            if "chat not found" in str(exc).lower():
                logger.warning("User %s is unreachable: %s", recipient_id, exc)
                return Delivery.BLOCKED
            logger.warning("Telegram rejected a message to %s: %s", recipient_id, exc)
            return Delivery.UNDELIVERED
        except (TelegramError, ValueError) as exc:
            logger.warning("Failed to notify user %s: %s", recipient_id, exc)
            return Delivery.UNDELIVERED
        return Delivery.DELIVERED


async def send_gated(
    dispatcher: NotificationDispatcher,
    recipient_id: str,
    recipient: UserRecord,
    event: NotificationEvent,
    text: str,
    controls: Optional[List[List[ActionButton]]] = None,
) -> Delivery:
    """Send unless the recipient turned this kind of notification off."""
    if not recipient.settings.notification_settings.is_enabled(event):
        logger.info("Notification %s suppressed for user %s", event.value, recipient_id)
        return Delivery.SUPPRESSED
    return await dispatcher.send(recipient_id, text, controls)
