"""
DebtSyncService - the linked-debt lifecycle.

Design principles:
- A linked debt lives as two Debt documents in two user records. Every
  operation that touches a link re-reads the counterpart record and verifies
  the mirror before changing anything
- No cross-record transactions: both records are written in sequence.
  Requests (add, delete request, edit request, partial repay request) write the
  counterpart first; responses, full repayments and cancels write the actor first
- Sync inconsistencies self-heal locally (remove the orphan or revert to active)
  and are reported, never guessed around
- Notifications are best effort and never roll back a state change

Every public method returns an OperationResult and does not raise for domain
outcomes.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Tuple

from debtbot.core.config import settings
from debtbot.core.constants import (
    AMOUNT_TOLERANCE,
    MIRROR_AMOUNT_TOLERANCE,
    NOTIFY_FAILED_CAVEAT,
    ActionVerb,
    NotificationEvent,
)
from debtbot.models.base import new_id, round_amount
from debtbot.models.debt import Debt, DebtDirection, DebtStatus, EditableField, PendingEdit
from debtbot.models.history import HistoryAction, HistoryEntry
from debtbot.models.record import UserRecord
from debtbot.schemas.debt import AddDebtCommand, EditDebtCommand, OperationResult
from debtbot.services.actions import build_action_token
from debtbot.services.notifications import ActionButton, Delivery, NotificationDispatcher, send_gated
from debtbot.utils.formatting import FIELD_LABELS, format_amount, format_date, format_value_for_display
from debtbot.utils.validation import (
    DebtValidationError,
    is_valid_username,
    validate_amount,
    validate_currency,
    validate_date,
    validate_direction,
    validate_edit_value,
    validate_editable_field,
    validate_party_identifier,
    validate_repay_amount,
)

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "This request could not be found. It may have already been processed or cancelled."
SAVE_FAILED = "Could not save your changes. Please try again later."
DEBT_NOT_FOUND = "Debt not found. It may have been changed or removed."
OWN_REQUEST = "You made this request yourself. Wait for the other party to answer it."
AWAITING_ANSWER = "This request is waiting for your answer. Accept or reject it instead."


def _sync_error(detail: str) -> OperationResult:
    return OperationResult.fail(f"Synchronization error: {detail}")


def _with_caveat(message: str, delivery: Delivery) -> str:
    if delivery.failed:
        return f"{message}\n{NOTIFY_FAILED_CAVEAT}"
    return message


def _phrase(direction: DebtDirection, name: str, amount: float, currency: str) -> str:
    """'you owe Bob 10.00 RUB' / 'Bob owes you 10.00 RUB' from the owner's point of view."""
    if direction is DebtDirection.I_OWE:
        return f"you owe {name} {format_amount(amount, currency)}"
    return f"{name} owes you {format_amount(amount, currency)}"


def _arrow(direction: DebtDirection, owner: str, party: str) -> str:
    """debtor -> creditor"""
    return f"{owner} -> {party}" if direction is DebtDirection.I_OWE else f"{party} -> {owner}"


class DebtSyncService:
    """Applies debt state transitions across the two records of a link."""

    def __init__(self, store, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    # ===== ADD / ACCEPT / REJECT =====

    async def add_debt(self, user_id: str, command: AddDebtCommand) -> OperationResult:
        """
        Create a debt.

        Counterpart resolution, in order:
        1. party_user_id already chosen by the caller
        2. an @handle found in the actor's known contacts, then across all records
        3. otherwise the debt is manual

        An @handle nobody has claimed yet yields a pending_confirmation debt with
        a reserved link id.
        """
        try:
            direction = validate_direction(command.direction)
            party = validate_party_identifier(command.party_identifier)
            amount = validate_amount(command.amount)
            currency = validate_currency(command.currency)
            due_date = validate_date(command.due_date)
        except DebtValidationError as exc:
            return OperationResult.fail(str(exc))

        record = await self.store.read(user_id)
        own_handle = record.settings.username
        if own_handle and party.lower() == own_handle.lower():
            return OperationResult.fail("You cannot add a debt with yourself.")

        counterpart_id = await self._resolve_counterpart(user_id, record, party, command.party_user_id)
        if counterpart_id == user_id:
            return OperationResult.fail("You cannot add a debt with yourself.")

        if counterpart_id:
            return await self._add_linked(user_id, record, counterpart_id, direction, party, amount, currency, due_date)

        debt = Debt(amount=amount, currency=currency, due_date=due_date, party_identifier=party)
        if is_valid_username(party):
            debt.status = DebtStatus.PENDING_CONFIRMATION
            debt.linked_debt_id = new_id()
            message = (
                f"Debt added: {_phrase(direction, party, amount, currency)}.\n"
                f"Status: waiting for {party} to start using the bot.\n"
                f"If {party} already uses the bot under another name, they can run /linkme {party}."
            )
        else:
            message = f"Manual debt added: {_phrase(direction, party, amount, currency)}."

        record.debts.for_direction(direction).append(debt)
        if not await self._save((user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s added %s debt %s (%s)", user_id, debt.status.value, debt.id, direction.value)
        return OperationResult.ok(message)

    async def _resolve_counterpart(
        self, user_id: str, record: UserRecord, party: str, party_user_id: Optional[str]
    ) -> Optional[str]:
        if party_user_id:
            return str(party_user_id)
        if not is_valid_username(party):
            return None
        for known_id, handle in record.known_users.items():
            if handle and handle.lower() == party.lower():
                return known_id
        return await self.store.find_user_id_by_username(party, exclude_user_id=user_id)

    async def _add_linked(
        self, user_id, record, counterpart_id, direction, party, amount, currency, due_date
    ) -> OperationResult:
        counterpart = await self.store.read(counterpart_id)
        actor_name = record.display_name(user_id)
        counterpart_name = counterpart.settings.username or party
        linked_debt_id = new_id()

        debt = Debt(
            amount=amount, currency=currency, due_date=due_date,
            party_identifier=party, party_user_id=counterpart_id,
            linked_debt_id=linked_debt_id, status=DebtStatus.PENDING_APPROVAL, requested_by=user_id,
        )
        mirror = Debt(
            amount=amount, currency=currency, due_date=due_date,
            party_identifier=actor_name, party_user_id=user_id,
            linked_debt_id=linked_debt_id, status=DebtStatus.PENDING_APPROVAL, requested_by=user_id,
        )
        record.debts.for_direction(direction).append(debt)
        counterpart.debts.for_direction(direction.mirrored).append(mirror)
        record.known_users[counterpart_id] = counterpart_name
        counterpart.known_users[user_id] = actor_name

        if not await self._save((counterpart_id, counterpart), (user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s added linked debt %s with user %s", user_id, linked_debt_id, counterpart_id)

        message = (
            f"Debt added: {_phrase(direction, counterpart_name, amount, currency)}.\n"
            f"Waiting for {counterpart_name} to confirm."
        )
        text = (
            f"{actor_name} added a debt: {_phrase(direction.mirrored, actor_name, amount, currency)}. "
            f"Accept or reject it:"
        )
        controls = [[
            ActionButton(text="Accept", action=build_action_token(ActionVerb.ACCEPT, linked_debt_id)),
            ActionButton(text="Reject", action=build_action_token(ActionVerb.REJECT, linked_debt_id)),
        ]]
        delivery = await send_gated(
            self.dispatcher, counterpart_id, counterpart, NotificationEvent.ON_NEW_PENDING, text, controls
        )
        return OperationResult.ok(_with_caveat(message, delivery))

    async def respond_to_debt(self, user_id: str, linked_debt_id: str, accept: bool) -> OperationResult:
        """Resolve a pending_approval debt waiting on this user."""
        record = await self.store.read(user_id)
        found = record.find_linked(linked_debt_id, DebtStatus.PENDING_APPROVAL)
        if found is None or not found[1].party_user_id:
            logger.info("No pending approval %s for user %s", linked_debt_id, user_id)
            return OperationResult.fail(ALREADY_PROCESSED)
        direction, debt = found
        if debt.requester == user_id:
            return OperationResult.fail(OWN_REQUEST)

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, linked_debt_id)
        if mirror is None or mirror.status is not DebtStatus.PENDING_APPROVAL:
            logger.warning("Mirror of pending debt %s missing for user %s; removing local copy", linked_debt_id, other_id)
            record.remove_debt(direction, debt)
            await self._save((user_id, record))
            return _sync_error("the other party's copy of this debt is missing. The request was cancelled.")

        actor_name = record.display_name(user_id)
        other_name = other.display_name(other_id)
        amount_text = format_amount(debt.amount, debt.currency)
        if accept:
            debt.reset_to_active()
            mirror.reset_to_active()
            record.known_users[other_id] = other_name
            other.known_users[user_id] = actor_name
            message = f"You accepted the debt: {_phrase(direction, other_name, debt.amount, debt.currency)}."
            text = f"{actor_name} accepted the debt ({amount_text}). It is now active."
            event = NotificationEvent.ON_ACCEPTED
        else:
            record.remove_debt(direction, debt)
            other.remove_debt(direction.mirrored, mirror)
            message = f"You rejected the debt ({amount_text}) from {other_name}."
            text = f"{actor_name} rejected the proposed debt ({amount_text})."
            event = NotificationEvent.ON_REJECTED

        if not await self._save((user_id, record), (other_id, other)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s %s linked debt %s", user_id, "accepted" if accept else "rejected", linked_debt_id)

        delivery = await send_gated(self.dispatcher, other_id, other, event, text)
        return OperationResult.ok(_with_caveat(message, delivery))

    # ===== REPAY =====

    async def repay_debt(self, user_id: str, debt_id: str, direction, repay_amount) -> OperationResult:
        """
        Repay all or part of an active or manual debt.

        A full repayment resolves the debt immediately on both sides. A partial
        repayment of a linked debt only proposes the reduced amount and waits
        for the counterpart, through the edit confirmation flow.
        """
        try:
            direction = validate_direction(direction)
        except DebtValidationError as exc:
            return OperationResult.fail(str(exc))

        record = await self.store.read(user_id)
        debt = next((d for d in record.debts.for_direction(direction) if d.id == debt_id), None)
        if debt is None:
            return OperationResult.fail(DEBT_NOT_FOUND)
        if debt.status not in (DebtStatus.ACTIVE, DebtStatus.MANUAL):
            return OperationResult.fail("This debt is not active and cannot be repaid.")
        try:
            amount = validate_repay_amount(repay_amount, debt.amount)
        except DebtValidationError as exc:
            return OperationResult.fail(str(exc))

        remaining_before = debt.amount
        remaining_after = max(round_amount(remaining_before - amount), 0.0)
        linked = debt.status is DebtStatus.ACTIVE and debt.is_linked

        if remaining_after <= AMOUNT_TOLERANCE:
            return await self._repay_in_full(user_id, record, direction, debt, linked)
        if linked:
            return await self._request_partial_repay(user_id, record, direction, debt, amount, remaining_after)

        debt.amount = remaining_after
        record.history.append(HistoryEntry.from_debt(
            debt, direction, HistoryAction.PARTIAL_REPAID,
            repaid_amount=amount, remaining_amount=remaining_after,
        ))
        if not await self._save((user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s partially repaid debt %s", user_id, debt.id)
        return OperationResult.ok(
            f"Repaid {format_amount(amount, debt.currency)}. "
            f"Remaining with {record.party_name(debt)}: {format_amount(remaining_after, debt.currency)}."
        )

    async def _repay_in_full(self, user_id, record, direction, debt, linked) -> OperationResult:
        repaid = debt.amount
        amount_text = format_amount(repaid, debt.currency)
        record.remove_debt(direction, debt)
        record.history.append(HistoryEntry.from_debt(debt, direction, HistoryAction.REPAID, amount=repaid))
        message = f"The debt with {record.party_name(debt)} ({amount_text}) is fully repaid."

        other_id = debt.party_user_id if linked else None
        other = None
        other_changed = False
        notice = None
        if other_id:
            other = await self.store.read(other_id)
            mirror = other.find_mirror(direction, debt.linked_debt_id)
            actor_name = record.display_name(user_id)
            if mirror is None:
                logger.warning("Full repay of %s: mirror missing for user %s", debt.linked_debt_id, other_id)
                message += "\nCould not sync the repayment: the other party's copy is missing."
            elif abs(mirror.amount - repaid) <= MIRROR_AMOUNT_TOLERANCE:
                other.remove_debt(direction.mirrored, mirror)
                other.history.append(
                    HistoryEntry.from_debt(mirror, direction.mirrored, HistoryAction.REPAID, amount=mirror.amount)
                )
                other_changed = True
                notice = f"The debt with {actor_name} ({amount_text}) was fully repaid."
            else:
                logger.warning(
                    "Full repay of %s: mirror amount %.2f differs from %.2f for user %s",
                    debt.linked_debt_id, mirror.amount, repaid, other_id,
                )
                message += "\nSync issue: the other party's copy has a different amount and was left unchanged. Please review your debts."
                notice = f"A sync issue occurred while {actor_name} repaid a debt with you. Please review your debts."

        entries = [(user_id, record)]
        if other_changed:
            entries.append((other_id, other))
        if not await self._save(*entries):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s fully repaid debt %s", user_id, debt.id)

        if notice:
            delivery = await send_gated(self.dispatcher, other_id, other, NotificationEvent.ON_REPAID, notice)
            message = _with_caveat(message, delivery)
        return OperationResult.ok(message)

    async def _request_partial_repay(self, user_id, record, direction, debt, amount, remaining_after) -> OperationResult:
        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, debt.linked_debt_id)
        if (
            mirror is None
            or mirror.status is not DebtStatus.ACTIVE
            or abs(mirror.amount - debt.amount) > MIRROR_AMOUNT_TOLERANCE
        ):
            logger.warning("Partial repay of %s: mirror missing or out of date for user %s", debt.linked_debt_id, other_id)
            return _sync_error("the other party's copy of this debt is missing or out of date. Nothing was changed.")

        pending = PendingEdit(
            field=EditableField.AMOUNT, new_value=remaining_after, requested_by=user_id, repay_amount=amount
        )
        for item in (debt, mirror):
            item.pending_edit = pending.model_copy()
            item.status = DebtStatus.PENDING_EDIT_APPROVAL

        if not await self._save((other_id, other), (user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s requested partial repay of linked debt %s", user_id, debt.linked_debt_id)

        actor_name = record.display_name(user_id)
        party_name = record.party_name(debt)
        due = f" (due {format_date(debt.due_date)})" if debt.due_date else ""
        text = (
            f"{actor_name} reports a partial repayment:\n"
            f"{_arrow(direction, actor_name, party_name)}\n"
            f"Repaid: {format_amount(amount, debt.currency)}\n"
            f"Remaining: {format_amount(remaining_after, debt.currency)}{due}\n"
            f"Confirm the change?"
        )
        delivery = await send_gated(
            self.dispatcher, other_id, other, NotificationEvent.ON_EDIT_REQUEST, text,
            self._confirm_controls(ActionVerb.ACCEPT_EDIT, ActionVerb.REJECT_EDIT, debt.linked_debt_id),
        )
        message = f"Partial repayment request sent to {party_name}. Waiting for confirmation."
        return OperationResult.ok(_with_caveat(message, delivery))

    # ===== DELETE =====

    async def delete_debt(self, user_id: str, debt_id: str) -> OperationResult:
        """Pick the delete flow that fits the debt's current status."""
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None:
            return OperationResult.fail(DEBT_NOT_FOUND)
        status = found[1].status
        if status in (DebtStatus.MANUAL, DebtStatus.PENDING_CONFIRMATION):
            return await self.delete_manual_debt(user_id, debt_id)
        if status is DebtStatus.PENDING_APPROVAL:
            return await self.cancel_pending_debt(user_id, debt_id)
        if status is DebtStatus.PENDING_DELETION_APPROVAL:
            return await self.cancel_deletion_request(user_id, debt_id)
        return await self.request_deletion(user_id, debt_id)

    async def delete_manual_debt(self, user_id: str, debt_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None:
            return OperationResult.fail(DEBT_NOT_FOUND)
        direction, debt = found
        if debt.status not in (DebtStatus.MANUAL, DebtStatus.PENDING_CONFIRMATION):
            return OperationResult.fail(
                "This debt is linked to another user and cannot be deleted directly. Request deletion instead."
            )

        record.remove_debt(direction, debt)
        record.history.append(HistoryEntry.from_debt(debt, direction, HistoryAction.DELETED))
        if not await self._save((user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s deleted debt %s", user_id, debt.id)
        return OperationResult.ok(
            f"Debt ({debt.party_identifier}, {format_amount(debt.amount, debt.currency)}) deleted and moved to history."
        )

    async def request_deletion(self, user_id: str, debt_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None or found[1].status not in (DebtStatus.ACTIVE, DebtStatus.PENDING_EDIT_APPROVAL):
            return OperationResult.fail("No active debt found to request deletion for.")
        direction, debt = found
        if not debt.is_linked:
            return OperationResult.fail("This debt is not linked and cannot be deleted by request.")

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, debt.linked_debt_id)
        if mirror is None or mirror.status not in (DebtStatus.ACTIVE, DebtStatus.PENDING_EDIT_APPROVAL):
            logger.warning("Delete request for %s: mirror missing or not active for user %s", debt.linked_debt_id, other_id)
            return _sync_error("the other party's copy of this debt is missing or not active. Nothing was changed.")

        for item in (debt, mirror):
            item.pending_edit = None
            item.status = DebtStatus.PENDING_DELETION_APPROVAL
            item.requested_by = user_id

        if not await self._save((other_id, other), (user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s requested deletion of linked debt %s", user_id, debt.linked_debt_id)

        amount_text = format_amount(debt.amount, debt.currency)
        text = f"{record.display_name(user_id)} asked to delete a linked debt ({amount_text}). Confirm or reject:"
        delivery = await send_gated(
            self.dispatcher, other_id, other, NotificationEvent.ON_DELETE_REQUEST, text,
            self._confirm_controls(ActionVerb.CONFIRM_DELETE, ActionVerb.REJECT_DELETE, debt.linked_debt_id),
        )
        message = f"Deletion request for the debt ({record.party_name(debt)}, {amount_text}) sent. Waiting for confirmation."
        return OperationResult.ok(_with_caveat(message, delivery))

    async def respond_to_deletion(self, user_id: str, linked_debt_id: str, confirm: bool) -> OperationResult:
        record = await self.store.read(user_id)
        found = record.find_linked(linked_debt_id, DebtStatus.PENDING_DELETION_APPROVAL)
        if found is None:
            logger.info("No pending deletion %s for user %s", linked_debt_id, user_id)
            return OperationResult.fail(ALREADY_PROCESSED)
        direction, debt = found
        if debt.requester == user_id:
            return OperationResult.fail(OWN_REQUEST)

        if not debt.party_user_id:
            logger.warning("Debt %s pending deletion has no counterpart; reverting", debt.id)
            debt.reset_to_active()
            await self._save((user_id, record))
            return _sync_error("the other party of this debt is unknown. The debt is active again.")

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, linked_debt_id)
        if mirror is None or mirror.status is not DebtStatus.PENDING_DELETION_APPROVAL:
            logger.warning("Delete confirmation for %s: mirror missing for user %s; reverting", linked_debt_id, other_id)
            debt.reset_to_active()
            await self._save((user_id, record))
            return _sync_error("the other party's copy of this debt is missing. The debt is active again.")

        actor_name = record.display_name(user_id)
        other_name = other.display_name(other_id)
        amount_text = format_amount(debt.amount, debt.currency)
        if confirm:
            record.remove_debt(direction, debt)
            other.remove_debt(direction.mirrored, mirror)
            record.history.append(HistoryEntry.from_debt(debt, direction, HistoryAction.DELETED))
            other.history.append(HistoryEntry.from_debt(mirror, direction.mirrored, HistoryAction.DELETED))
            message = f"You confirmed deleting the debt ({amount_text}) with {other_name}. It was moved to history."
            text = f"{actor_name} confirmed deleting the debt ({amount_text}). The debt was deleted."
            event = NotificationEvent.ON_DELETE_CONFIRM
        else:
            debt.reset_to_active()
            mirror.reset_to_active()
            message = f"You rejected deleting the debt ({amount_text}) with {other_name}. It stays active."
            text = f"{actor_name} rejected deleting the debt ({amount_text}). It stays active."
            event = NotificationEvent.ON_DELETE_REJECT

        if not await self._save((user_id, record), (other_id, other)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s %s deletion of %s", user_id, "confirmed" if confirm else "rejected", linked_debt_id)

        delivery = await send_gated(self.dispatcher, other_id, other, event, text)
        return OperationResult.ok(_with_caveat(message, delivery))

    async def cancel_deletion_request(self, user_id: str, debt_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None or found[1].status is not DebtStatus.PENDING_DELETION_APPROVAL:
            return OperationResult.fail("No deletion request was found for this debt.")
        direction, debt = found
        if debt.awaits_owner_answer:
            return OperationResult.fail(AWAITING_ANSWER)
        if not debt.is_linked:
            return OperationResult.fail("This debt is not linked.")

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, debt.linked_debt_id)
        if mirror is None or mirror.status is not DebtStatus.PENDING_DELETION_APPROVAL:
            logger.warning("Cancel deletion of %s: mirror not pending deletion for user %s", debt.linked_debt_id, other_id)
            debt.reset_to_active()
            await self._save((user_id, record))
            return _sync_error("the other party's copy is no longer waiting for deletion. Your debt is active again.")

        debt.reset_to_active()
        mirror.reset_to_active()
        if not await self._save((user_id, record), (other_id, other)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s cancelled deletion request for %s", user_id, debt.linked_debt_id)

        amount_text = format_amount(debt.amount, debt.currency)
        text = f"{record.display_name(user_id)} withdrew their request to delete the debt ({amount_text}). It stays active."
        delivery = await send_gated(self.dispatcher, other_id, other, NotificationEvent.ON_DELETE_REJECT, text)
        message = f"Deletion request for the debt ({record.party_name(debt)}, {amount_text}) cancelled. The debt is active again."
        return OperationResult.ok(_with_caveat(message, delivery))

    async def cancel_pending_debt(self, user_id: str, debt_id: str) -> OperationResult:
        """Withdraw a debt nobody has accepted yet."""
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None or found[1].status not in (DebtStatus.PENDING_APPROVAL, DebtStatus.PENDING_CONFIRMATION):
            return OperationResult.fail("No pending debt found to cancel.")
        direction, debt = found
        if debt.awaits_owner_answer:
            return OperationResult.fail(AWAITING_ANSWER)

        record.remove_debt(direction, debt)
        message = f"Pending debt ({debt.party_identifier}, {format_amount(debt.amount, debt.currency)}) cancelled."

        other_id = None
        other = None
        if debt.status is DebtStatus.PENDING_APPROVAL and debt.is_linked:
            other = await self.store.read(debt.party_user_id)
            mirror = other.find_mirror(direction, debt.linked_debt_id)
            if mirror is not None:
                other.remove_debt(direction.mirrored, mirror)
                other_id = debt.party_user_id
            else:
                logger.warning("Cancel of %s: no mirror for user %s", debt.linked_debt_id, debt.party_user_id)
                message += "\n(Could not sync the cancellation with the other party.)"

        entries = [(user_id, record)]
        if other_id:
            entries.append((other_id, other))
        if not await self._save(*entries):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s cancelled pending debt %s", user_id, debt.id)

        if other_id:
            text = (
                f"{record.display_name(user_id)} withdrew the proposed debt "
                f"({format_amount(debt.amount, debt.currency)})."
            )
            delivery = await send_gated(self.dispatcher, other_id, other, NotificationEvent.ON_REJECTED, text)
            message = _with_caveat(message, delivery)
        return OperationResult.ok(message)

    # ===== EDIT =====

    async def edit_debt(self, user_id: str, command: EditDebtCommand) -> OperationResult:
        """Apply an edit to a manual debt, or propose it to the counterpart of a linked one."""
        try:
            field = validate_editable_field(command.field)
            new_value = validate_edit_value(field, command.new_value)
        except DebtValidationError as exc:
            return OperationResult.fail(str(exc))

        record = await self.store.read(user_id)
        found = record.find_debt(command.debt_id)
        if found is None:
            return OperationResult.fail(DEBT_NOT_FOUND)
        direction, debt = found
        if debt.status not in (DebtStatus.ACTIVE, DebtStatus.MANUAL):
            return OperationResult.fail("Only active or manual debts can be edited.")
        if field is EditableField.PARTY_IDENTIFIER and debt.status is not DebtStatus.MANUAL:
            return OperationResult.fail("The contact of a linked debt cannot be changed.")

        old_value = getattr(debt, field.value)
        if old_value == new_value:
            return OperationResult.fail("The new value is the same as the current one.")
        label = FIELD_LABELS[field]

        if debt.status is DebtStatus.MANUAL or not debt.is_linked:
            setattr(debt, field.value, new_value)
            record.history.append(HistoryEntry.from_debt(
                debt, direction, HistoryAction.EDITED,
                edited_field=field, original_value=old_value, new_value=new_value,
            ))
            if not await self._save((user_id, record)):
                return OperationResult.fail(SAVE_FAILED)
            logger.info("User %s edited %s of debt %s", user_id, field.value, debt.id)
            shown = format_value_for_display(field, new_value, debt.currency)
            return OperationResult.ok(f"{label} of the debt with {debt.party_identifier} changed to {shown}.")

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, debt.linked_debt_id)
        if mirror is None or mirror.status is not DebtStatus.ACTIVE:
            logger.warning("Edit request for %s: mirror missing or not active for user %s", debt.linked_debt_id, other_id)
            return _sync_error("no active copy of this debt was found on the other side. Nothing was changed.")

        pending = PendingEdit(field=field, new_value=new_value, requested_by=user_id)
        for item in (debt, mirror):
            item.pending_edit = pending.model_copy()
            item.status = DebtStatus.PENDING_EDIT_APPROVAL

        if not await self._save((other_id, other), (user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s requested %s edit of linked debt %s", user_id, field.value, debt.linked_debt_id)

        currency_after = new_value if field is EditableField.CURRENCY else debt.currency
        text = (
            f"{record.display_name(user_id)} asked to change a linked debt:\n"
            f"Field: {label}\n"
            f"Old value: {format_value_for_display(field, old_value, debt.currency)}\n"
            f"New value: {format_value_for_display(field, new_value, currency_after)}\n"
            f"Confirm or reject:"
        )
        delivery = await send_gated(
            self.dispatcher, other_id, other, NotificationEvent.ON_EDIT_REQUEST, text,
            self._confirm_controls(ActionVerb.ACCEPT_EDIT, ActionVerb.REJECT_EDIT, debt.linked_debt_id),
        )
        message = (
            f"Change request for the debt ({record.party_name(debt)}, "
            f"{format_amount(debt.amount, debt.currency)}) sent. Waiting for confirmation."
        )
        return OperationResult.ok(_with_caveat(message, delivery))

    async def respond_to_edit(self, user_id: str, linked_debt_id: str, confirm: bool) -> OperationResult:
        """
        Resolve a pending_edit_approval pair, for explicit edits and partial repayments alike.

        Confirming applies the new value to both copies and logs one history
        entry, in the requester's record only.
        """
        record = await self.store.read(user_id)
        found = record.find_linked(linked_debt_id, DebtStatus.PENDING_EDIT_APPROVAL)
        if found is None or found[1].pending_edit is None or not found[1].party_user_id:
            logger.info("No pending edit %s for user %s", linked_debt_id, user_id)
            return OperationResult.fail(ALREADY_PROCESSED)
        direction, debt = found
        if debt.requester == user_id:
            return OperationResult.fail(OWN_REQUEST)

        other_id = debt.party_user_id
        other = await self.store.read(other_id)
        mirror = other.find_mirror(direction, linked_debt_id)
        if mirror is None or mirror.status is not DebtStatus.PENDING_EDIT_APPROVAL or mirror.pending_edit is None:
            logger.warning("Edit confirmation for %s: mirror missing for user %s; reverting", linked_debt_id, other_id)
            debt.reset_to_active()
            await self._save((user_id, record))
            return _sync_error("the other party's copy of this change is missing. The debt is active again.")

        if mirror.pending_edit != debt.pending_edit:
            logger.warning("Edit confirmation for %s: pending edits differ; reverting both", linked_debt_id)
            debt.reset_to_active()
            mirror.reset_to_active()
            await self._save((user_id, record), (other_id, other))
            return _sync_error("the two copies of this change do not match. The change was cancelled on both sides.")

        pending = debt.pending_edit
        field = pending.field
        label = FIELD_LABELS[field]
        actor_name = record.display_name(user_id)
        other_name = other.display_name(other_id)

        if confirm:
            new_value = round_amount(pending.new_value) if field is EditableField.AMOUNT else pending.new_value
            requester = self._requester_side(pending, user_id, record, direction, debt, other_id, other, mirror)
            requester_record, requester_direction, requester_debt = requester
            original_value = getattr(requester_debt, field.value)

            for item in (debt, mirror):
                setattr(item, field.value, new_value)
                item.reset_to_active()

            if pending.repay_amount is not None:
                entry = HistoryEntry.from_debt(
                    requester_debt, requester_direction, HistoryAction.PARTIAL_REPAID,
                    repaid_amount=pending.repay_amount, remaining_amount=new_value,
                    edited_field=field, original_value=original_value, new_value=new_value,
                )
            else:
                entry = HistoryEntry.from_debt(
                    requester_debt, requester_direction, HistoryAction.EDITED,
                    edited_field=field, original_value=original_value, new_value=new_value,
                )
            requester_record.history.append(entry)

            shown = format_value_for_display(field, new_value, debt.currency)
            if pending.repay_amount is not None:
                repaid = format_amount(pending.repay_amount, debt.currency)
                message = f"You confirmed the repayment of {repaid} from the debt with {other_name}. Remaining: {shown}."
                text = f"{actor_name} confirmed your repayment of {repaid}. Remaining: {shown}."
            else:
                message = f"You confirmed the change to the debt with {other_name}: {label} is now {shown}."
                text = f"{actor_name} confirmed the change: {label} is now {shown}."
            event = NotificationEvent.ON_EDIT_CONFIRM
        else:
            debt.reset_to_active()
            mirror.reset_to_active()
            shown = format_value_for_display(field, pending.new_value, debt.currency)
            message = f"You rejected the change ({label} to {shown}) to the debt with {other_name}. The debt is unchanged."
            text = f"{actor_name} rejected the change ({label} to {shown}). The debt is unchanged."
            event = NotificationEvent.ON_EDIT_REJECT

        if not await self._save((user_id, record), (other_id, other)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s %s edit of %s", user_id, "confirmed" if confirm else "rejected", linked_debt_id)

        delivery = await send_gated(self.dispatcher, other_id, other, event, text)
        return OperationResult.ok(_with_caveat(message, delivery))

    @staticmethod
    def _requester_side(
        pending, user_id, record, direction, debt, other_id, other, mirror
    ) -> Tuple[UserRecord, DebtDirection, Debt]:
        if pending.requested_by == user_id:
            return record, direction, debt
        return other, direction.mirrored, mirror

    # ===== REMINDERS =====

    async def snooze_reminder(self, user_id: str, debt_id: str) -> OperationResult:
        record = await self.store.read(user_id)
        found = record.find_debt(debt_id)
        if found is None:
            return OperationResult.fail("Could not find the debt to snooze the reminder for.")
        debt = found[1]

        day = datetime.now(timezone.utc).date() + timedelta(days=settings.REMINDER_SNOOZE_DAYS)
        debt.reminder_snoozed_until = datetime.combine(day, time.min, tzinfo=timezone.utc)
        if not await self._save((user_id, record)):
            return OperationResult.fail(SAVE_FAILED)
        logger.info("User %s snoozed reminder for debt %s", user_id, debt.id)
        return OperationResult.ok(f"Reminder snoozed until {format_date(day)}.")

    # ===== PRIVATE HELPERS =====

    async def _save(self, *entries: Tuple[str, UserRecord]) -> bool:
        """Write records in the given order, stopping at the first failure."""
        for user_id, record in entries:
            if not await self.store.write(user_id, record):
                logger.error("Persisting record of user %s failed", user_id)
                return False
        return True

    @staticmethod
    def _confirm_controls(yes: ActionVerb, no: ActionVerb, linked_debt_id: str):
        return [[
            ActionButton(text="Confirm", action=build_action_token(yes, linked_debt_id)),
            ActionButton(text="Reject", action=build_action_token(no, linked_debt_id)),
        ]]
