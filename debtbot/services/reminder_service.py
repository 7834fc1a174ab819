"""
Due-date reminders.

A periodic scan over all records: for users with reminders enabled, every
active debt due exactly reminder_days_before days from today gets a reminder
with a snooze button. Snoozed debts are skipped until the snooze expires.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from pymongo.errors import PyMongoError

from debtbot.core.config import settings
from debtbot.core.constants import ActionVerb, NotificationEvent
from debtbot.models.debt import DebtDirection, DebtStatus
from debtbot.services.actions import build_action_token
from debtbot.services.notifications import ActionButton, Delivery, NotificationDispatcher, send_gated
from debtbot.utils.formatting import format_amount, format_date

logger = logging.getLogger(__name__)


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class ReminderService:
    def __init__(self, store, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def check_reminders(self, today: Optional[date] = None) -> int:
        """Scan every record once. Returns the number of reminders delivered."""
        today = today or datetime.now(timezone.utc).date()
        sent = 0
        for user_id in await self.store.list_user_ids():
            try:
                sent += await self._check_user(user_id, today)
            except PyMongoError as exc:
                logger.error("Reminder check failed for user %s: %s", user_id, exc)
        logger.info("Reminder check finished, %d sent", sent)
        return sent

    async def _check_user(self, user_id: str, today: date) -> int:
        record = await self.store.read(user_id)
        if not record.settings.reminders_enabled:
            return 0

        target = today + timedelta(days=record.settings.reminder_days_before)
        changed = False
        sent = 0
        for direction, debt in record.debts.all():
            if debt.status is not DebtStatus.ACTIVE or debt.due_date is None:
                continue
            if debt.reminder_snoozed_until is not None:
                if today < debt.reminder_snoozed_until.date():
                    continue
                debt.reminder_snoozed_until = None
                changed = True
            if debt.due_date != target:
                continue

            name = record.party_name(debt)
            who = f"you owe {name}" if direction is DebtDirection.I_OWE else f"{name} owes you"
            text = (
                f"Reminder: the debt ({who}, {format_amount(debt.amount, debt.currency)}) "
                f"is due on {format_date(debt.due_date)}."
            )
            controls = [[ActionButton(
                text=f"Snooze ({settings.REMINDER_SNOOZE_DAYS}d)",
                action=build_action_token(ActionVerb.SNOOZE, debt.id),
            )]]
            delivery = await send_gated(self.dispatcher, user_id, record, NotificationEvent.ON_REMINDER, text, controls)

            if delivery is Delivery.BLOCKED:
                logger.warning("User %s is unreachable, disabling reminders", user_id)
                record.settings.reminders_enabled = False
                changed = True
                break
            if delivery is Delivery.DELIVERED:
                # one reminder per debt per day; the scan runs more often than that
                debt.reminder_snoozed_until = _start_of(today + timedelta(days=1))
                changed = True
                sent += 1

        if changed:
            await self.store.write(user_id, record)
        return sent


class ReminderScheduler:
    """Runs ReminderService.check_reminders every REMINDER_CHECK_INTERVAL_SECONDS."""

    def __init__(self, service: ReminderService, interval: Optional[int] = None):
        self.service = service
        self.interval = interval or settings.REMINDER_CHECK_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.info("Reminder scheduler already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Reminder scheduler started, interval %ss", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reminder scheduler stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.service.check_reminders()
            except Exception:
                logger.exception("Reminder check crashed")
            await asyncio.sleep(self.interval)
