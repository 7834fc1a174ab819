"""
SettingsService - user preferences and data export.

Settings live inside the user record, so every change is a whole-record
read-modify-write like any debt operation.
"""

import logging
from typing import Dict, Tuple

from debtbot.core.constants import NotificationEvent
from debtbot.models.record import UserRecord, UserSettings
from debtbot.schemas.debt import OperationResult
from debtbot.services.debt_service import SAVE_FAILED
from debtbot.utils.formatting import describe_reminder_days
from debtbot.utils.validation import DebtValidationError, validate_currency

logger = logging.getLogger(__name__)

# 0 means on the due date itself
REMINDER_DAY_OPTIONS = (0, 1, 3, 7)

NOTIFICATION_GROUPS: Dict[str, Tuple[NotificationEvent, ...]] = {
    "new": (NotificationEvent.ON_NEW_PENDING, NotificationEvent.ON_ACCEPTED, NotificationEvent.ON_REJECTED),
    "repaid": (NotificationEvent.ON_REPAID,),
    "delete": (NotificationEvent.ON_DELETE_REQUEST, NotificationEvent.ON_DELETE_CONFIRM, NotificationEvent.ON_DELETE_REJECT),
    "edit": (NotificationEvent.ON_EDIT_REQUEST, NotificationEvent.ON_EDIT_CONFIRM, NotificationEvent.ON_EDIT_REJECT),
    "reminder": (NotificationEvent.ON_REMINDER,),
}


class SettingsService:

    def __init__(self, store):
        self.store = store

    async def get(self, user_id: str) -> UserSettings:
        record = await self.store.read(user_id)
        return record.settings

    async def set_default_currency(self, user_id: str, currency: str) -> OperationResult:
        try:
            currency = validate_currency(currency)
        except DebtValidationError as exc:
            return OperationResult.fail(str(exc))
        record = await self.store.read(user_id)
        record.settings.default_currency = currency
        return await self._save(user_id, record, f"Default currency set to {currency}.")

    async def toggle_net_balance(self, user_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        record.settings.show_net_balance = not record.settings.show_net_balance
        shown = "shown" if record.settings.show_net_balance else "hidden"
        return await self._save(user_id, record, f"Net balance is now {shown}.")

    async def toggle_reminders(self, user_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        record.settings.reminders_enabled = not record.settings.reminders_enabled
        state = "on" if record.settings.reminders_enabled else "off"
        return await self._save(user_id, record, f"Reminders turned {state}.")

    async def set_reminder_days(self, user_id: str, days: int) -> OperationResult:
        if days not in REMINDER_DAY_OPTIONS:
            return OperationResult.fail("Unsupported reminder interval.")
        record = await self.store.read(user_id)
        record.settings.reminder_days_before = days
        return await self._save(user_id, record, f"Reminders will come {describe_reminder_days(days)}.")

    async def toggle_notification_group(self, user_id: str, group: str) -> OperationResult:
        """Turn a whole group on unless every event in it is already on."""
        events = NOTIFICATION_GROUPS.get(group)
        if events is None:
            return OperationResult.fail("Unknown notification group.")
        record = await self.store.read(user_id)
        notification_settings = record.settings.notification_settings
        enabled = not all(notification_settings.is_enabled(event) for event in events)
        for event in events:
            setattr(notification_settings, event.value, enabled)
        return await self._save(user_id, record, f"Notifications turned {'on' if enabled else 'off'}.")

    async def export(self, user_id: str) -> bytes:
        record = await self.store.read(user_id)
        return record.model_dump_json(indent=2).encode("utf-8")

    async def _save(self, user_id: str, record: UserRecord, message: str) -> OperationResult:
        if not await self.store.write(user_id, record):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s updated settings", user_id)
        return OperationResult.ok(message)
