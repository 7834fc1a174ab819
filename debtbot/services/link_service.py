"""
LinkService - turns handle-addressed debts into linked ones.

A debt added against an @handle nobody has claimed stays pending_confirmation
with a reserved link id. When a user with that handle shows up (or claims an
old handle with /linkme), the creator's debt becomes active and a mirrored
active debt with the same link id is created in the claimant's record.
"""

import logging
from typing import List, Optional, Tuple

from debtbot.core.constants import NotificationEvent
from debtbot.models.debt import Debt, DebtStatus
from debtbot.models.record import UserRecord
from debtbot.services.notifications import NotificationDispatcher, send_gated
from debtbot.utils.formatting import format_amount
from debtbot.utils.validation import DebtValidationError, normalize_username, validate_username

logger = logging.getLogger(__name__)


class LinkService:
    def __init__(self, store, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def register_user(self, user_id: str, handle: Optional[str]) -> int:
        """Remember the user's own handle and claim debts waiting for it. Returns how many were linked."""
        if not handle:
            return 0
        handle = normalize_username(handle)

        record = await self.store.read(user_id)
        changed = record.settings.username != handle
        record.settings.username = handle
        return await self._claim_and_save(user_id, record, handle, handle, changed)

    async def link_old_username(self, user_id: str, current_handle: Optional[str], old_handle: str) -> int:
        """
        /linkme @old: claim debts that were recorded against a handle the user used before.

        Raises DebtValidationError for malformed handles, a missing current
        handle, or an old handle equal to the current one.
        """
        old_handle = validate_username(old_handle)
        if not current_handle:
            raise DebtValidationError("Set a Telegram username first, then run /linkme again.")
        current_handle = normalize_username(current_handle)
        if current_handle.lower() == old_handle.lower():
            raise DebtValidationError("That is already your current username.")

        record = await self.store.read(user_id)
        changed = record.settings.username != current_handle
        record.settings.username = current_handle
        return await self._claim_and_save(user_id, record, old_handle, current_handle, changed)

    async def _claim_and_save(
        self, user_id: str, record: UserRecord, wanted: str, claimant_name: str, changed: bool
    ) -> int:
        notices: List[Tuple[str, UserRecord, str]] = []

        for other_id in await self.store.list_user_ids():
            if other_id == user_id:
                continue
            other = await self.store.read(other_id)
            added = self._claim_from(user_id, record, other_id, other, wanted, claimant_name)
            if not added:
                continue

            # the creator's record is written first; undo our mirrors if that fails
            if not await self.store.write(other_id, other):
                logger.error("Could not link debts of user %s to user %s", other_id, user_id)
                for direction, mirror in added:
                    record.remove_debt(direction, mirror)
                continue

            for _, mirror in added:
                logger.info("Linked debt %s between users %s and %s", mirror.linked_debt_id, other_id, user_id)
                notices.append((
                    other_id, other,
                    f"The debt with {wanted} ({format_amount(mirror.amount, mirror.currency)}) "
                    f"is now linked to {claimant_name} and active.",
                ))

        if (changed or notices) and not await self.store.write(user_id, record):
            logger.error("Could not save record of user %s after linking", user_id)

        for other_id, other, text in notices:
            await send_gated(self.dispatcher, other_id, other, NotificationEvent.ON_ACCEPTED, text)
        return len(notices)

    @staticmethod
    def _claim_from(user_id, record, other_id, other, wanted, claimant_name):
        added = []
        other_name = other.display_name(other_id)
        for direction, debt in other.debts.all():
            if debt.status is not DebtStatus.PENDING_CONFIRMATION or not debt.linked_debt_id:
                continue
            if debt.party_identifier.lower() != wanted.lower():
                continue

            debt.status = DebtStatus.ACTIVE
            debt.party_user_id = user_id

            stale = record.find_mirror(direction, debt.linked_debt_id)
            if stale is not None:
                record.remove_debt(direction.mirrored, stale)
            mirror = Debt(
                amount=debt.amount,
                currency=debt.currency,
                due_date=debt.due_date,
                party_identifier=other_name,
                party_user_id=other_id,
                linked_debt_id=debt.linked_debt_id,
                status=DebtStatus.ACTIVE,
                created_date=debt.created_date,
            )
            record.debts.for_direction(direction.mirrored).append(mirror)
            record.known_users[other_id] = other_name
            other.known_users[user_id] = claimant_name
            added.append((direction.mirrored, mirror))
        return added
