import pytest

from debtbot.core.constants import NOTIFY_FAILED_CAVEAT
from debtbot.models.debt import DebtDirection, DebtStatus, EditableField, PendingEdit
from debtbot.models.history import HistoryAction
from debtbot.schemas.debt import AddDebtCommand, EditDebtCommand
from debtbot.services.actions import ActionRouter
from debtbot.services.debt_service import ALREADY_PROCESSED, AWAITING_ANSWER, OWN_REQUEST, SAVE_FAILED
from debtbot.services.notifications import Delivery

ALICE, BOB = "1", "2"


def add_command(party="@bob_22", amount=100.0, currency="RUB", direction=DebtDirection.I_OWE, **kwargs):
    return AddDebtCommand(direction=direction, party_identifier=party, amount=amount, currency=currency, **kwargs)


async def make_active(service, store, amount=100.0):
    """alice owes bob, accepted by bob. Returns the link id."""
    result = await service.add_debt(ALICE, add_command(amount=amount))
    assert result.success, result.message
    linked_debt_id = store.get(ALICE).debts.i_owe[0].linked_debt_id
    result = await service.respond_to_debt(BOB, linked_debt_id, accept=True)
    assert result.success, result.message
    assert_mirrored(store, linked_debt_id)
    return linked_debt_id


def assert_mirrored(store, linked_debt_id):
    """Both copies of a link exist together and agree on status, terms and pending change."""
    mine = store.get(ALICE).find_linked(linked_debt_id)
    theirs = store.get(BOB).find_linked(linked_debt_id)
    if mine is None or theirs is None:
        assert mine is None and theirs is None
        return
    (direction, debt), (other_direction, mirror) = mine, theirs
    assert other_direction is direction.mirrored
    assert debt.status is mirror.status
    assert (debt.amount, debt.currency, debt.due_date) == (mirror.amount, mirror.currency, mirror.due_date)
    assert debt.pending_edit == mirror.pending_edit
    assert debt.requested_by == mirror.requested_by


def last_action(dispatcher, recipient_id, index=0):
    _, controls = dispatcher.to(recipient_id)[-1]
    return controls[0][index].action


# ===== ADD / ACCEPT / REJECT =====

@pytest.mark.asyncio
class TestAddDebt:

    async def test_add_by_registered_handle_creates_pending_pair(self, service, store, dispatcher, users):
        result = await service.add_debt(ALICE, add_command())

        assert result.success
        mine = store.get(ALICE).debts.i_owe[0]
        theirs = store.get(BOB).debts.owe_me[0]
        assert mine.status is DebtStatus.PENDING_APPROVAL
        assert theirs.status is DebtStatus.PENDING_APPROVAL
        assert mine.linked_debt_id == theirs.linked_debt_id
        assert mine.party_user_id == BOB
        assert theirs.party_user_id == ALICE
        assert theirs.party_identifier == "@alice_1"
        # counterpart is written before the actor
        assert store.writes == [BOB, ALICE]

        text, controls = dispatcher.to(BOB)[0]
        assert "@alice_1" in text
        assert [b.action for b in controls[0]] == [
            f"debt_accept_{mine.linked_debt_id}",
            f"debt_reject_{mine.linked_debt_id}",
        ]

    async def test_handle_lookup_is_case_insensitive(self, service, store, users):
        result = await service.add_debt(ALICE, add_command(party="@BOB_22"))

        assert result.success
        assert store.get(BOB).debts.owe_me

    async def test_add_plain_name_is_manual(self, service, store, dispatcher, users):
        result = await service.add_debt(ALICE, add_command(party="Pizza guy", direction=DebtDirection.OWE_ME))

        assert result.success
        assert "Manual debt added" in result.message
        debt = store.get(ALICE).debts.owe_me[0]
        assert debt.status is DebtStatus.MANUAL
        assert debt.linked_debt_id is None
        assert dispatcher.sent == []

    async def test_add_unknown_handle_waits_for_confirmation(self, service, store, dispatcher, users):
        result = await service.add_debt(ALICE, add_command(party="@carol_333"))

        assert result.success
        assert "/linkme @carol_333" in result.message
        debt = store.get(ALICE).debts.i_owe[0]
        assert debt.status is DebtStatus.PENDING_CONFIRMATION
        assert debt.linked_debt_id
        assert debt.party_user_id is None
        assert dispatcher.sent == []

    async def test_add_with_yourself_fails(self, service, store, users):
        result = await service.add_debt(ALICE, add_command(party="@Alice_1"))

        assert not result.success
        assert store.get(ALICE).debts.i_owe == []

    async def test_add_with_picked_contact_uses_user_id(self, service, store, users):
        result = await service.add_debt(ALICE, add_command(party="Bob", party_user_id=BOB))

        assert result.success
        assert store.get(BOB).debts.owe_me[0].party_user_id == ALICE

    @pytest.mark.parametrize("amount", ["abc", "-5", "0", "nan"])
    async def test_invalid_amount_changes_nothing(self, service, store, users, amount):
        result = await service.add_debt(ALICE, add_command().model_copy(update={"amount": amount}))

        assert not result.success
        assert store.writes == []

    async def test_unsupported_currency_fails(self, service, store, users):
        result = await service.add_debt(ALICE, add_command(currency="GBP"))

        assert not result.success
        assert "Unsupported currency" in result.message

    async def test_save_failure_on_counterpart_aborts(self, service, store, users):
        store.failing_writes.add(BOB)

        result = await service.add_debt(ALICE, add_command())

        assert not result.success
        assert result.message == SAVE_FAILED
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me == []

    async def test_undelivered_notification_adds_caveat(self, service, dispatcher, users):
        dispatcher.delivery = Delivery.BLOCKED

        result = await service.add_debt(ALICE, add_command())

        assert result.success
        assert NOTIFY_FAILED_CAVEAT in result.message

    async def test_disabled_notification_is_not_sent(self, service, store, dispatcher, users):
        store.records[BOB].settings.notification_settings.on_new_pending = False

        result = await service.add_debt(ALICE, add_command())

        assert result.success
        assert dispatcher.sent == []
        assert NOTIFY_FAILED_CAVEAT not in result.message


@pytest.mark.asyncio
class TestRespondToDebt:

    async def test_accept_activates_both_copies(self, service, store, dispatcher, users):
        await make_active(service, store)

        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.ACTIVE
        assert store.get(ALICE).known_users[BOB] == "@bob_22"
        assert store.get(BOB).known_users[ALICE] == "@alice_1"
        assert "accepted" in dispatcher.to(ALICE)[-1][0]

    async def test_reject_removes_both_without_history(self, service, store, dispatcher, users):
        await service.add_debt(ALICE, add_command())
        token = last_action(dispatcher, BOB, index=1)

        result = await ActionRouter(service).handle(BOB, token)

        assert result.success
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me == []
        assert store.get(ALICE).history == []
        assert store.get(BOB).history == []

    async def test_second_response_is_already_processed(self, service, store, users):
        linked_debt_id = await make_active(service, store)

        result = await service.respond_to_debt(BOB, linked_debt_id, accept=False)

        assert not result.success
        assert result.message == ALREADY_PROCESSED
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.ACTIVE

    async def test_missing_mirror_removes_orphan(self, service, store, users):
        await service.add_debt(ALICE, add_command())
        linked_debt_id = store.get(BOB).debts.owe_me[0].linked_debt_id
        store.records[ALICE].debts.i_owe.clear()

        result = await service.respond_to_debt(BOB, linked_debt_id, accept=True)

        assert not result.success
        assert result.message.startswith("Synchronization error")
        assert store.get(BOB).debts.owe_me == []

    async def test_suppressed_request_can_still_be_answered(self, service, store, dispatcher, users):
        store.records[BOB].settings.notification_settings.on_new_pending = False
        await service.add_debt(ALICE, add_command(amount=50))
        theirs = store.get(BOB).debts.owe_me[0]

        assert dispatcher.to(BOB) == []
        assert theirs.awaits_owner_answer
        assert not store.get(ALICE).debts.i_owe[0].awaits_owner_answer

        # picking the received request in the delete flow must not withdraw it on the proposer's behalf
        result = await service.delete_debt(BOB, theirs.id)

        assert not result.success
        assert result.message == AWAITING_ANSWER
        assert dispatcher.to(ALICE) == []
        assert_mirrored(store, theirs.linked_debt_id)

        result = await service.respond_to_debt(BOB, theirs.linked_debt_id, accept=True)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE
        assert_mirrored(store, theirs.linked_debt_id)

    async def test_proposer_cannot_accept_own_debt(self, service, store, users):
        await service.add_debt(ALICE, add_command())
        linked_debt_id = store.get(ALICE).debts.i_owe[0].linked_debt_id

        result = await service.respond_to_debt(ALICE, linked_debt_id, accept=True)

        assert not result.success
        assert result.message == OWN_REQUEST
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.PENDING_APPROVAL
        assert_mirrored(store, linked_debt_id)


# ===== REPAY =====

@pytest.mark.asyncio
class TestRepay:

    async def test_full_repay_resolves_both_sides(self, service, store, dispatcher, users):
        await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "100")

        assert result.success
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me == []
        assert store.get(ALICE).history[0].action is HistoryAction.REPAID
        assert store.get(BOB).history[0].action is HistoryAction.REPAID
        assert_mirrored(store, debt.linked_debt_id)
        assert store.get(BOB).history[0].direction is DebtDirection.OWE_ME
        assert "fully repaid" in dispatcher.to(BOB)[-1][0]

    async def test_full_repay_with_amount_mismatch_leaves_mirror(self, service, store, dispatcher, users):
        await make_active(service, store)
        store.records[BOB].debts.owe_me[0].amount = 90.0
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, DebtDirection.I_OWE, 100)

        assert result.success
        assert "Sync issue" in result.message
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me[0].amount == 90.0
        assert "sync issue" in dispatcher.to(BOB)[-1][0]

    async def test_partial_repay_of_linked_debt_needs_confirmation(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "40")

        assert result.success
        mine = store.get(ALICE).debts.i_owe[0]
        theirs = store.get(BOB).debts.owe_me[0]
        assert mine.amount == 100.0
        assert mine.status is DebtStatus.PENDING_EDIT_APPROVAL
        assert theirs.pending_edit == mine.pending_edit
        assert mine.pending_edit.repay_amount == 40.0
        assert mine.pending_edit.new_value == 60.0
        assert_mirrored(store, linked_debt_id)
        assert last_action(dispatcher, BOB) == f"debt_acceptedit_{linked_debt_id}"

        result = await ActionRouter(service).handle(BOB, last_action(dispatcher, BOB))

        assert result.success
        mine = store.get(ALICE).debts.i_owe[0]
        theirs = store.get(BOB).debts.owe_me[0]
        assert mine.amount == theirs.amount == 60.0
        assert mine.status is theirs.status is DebtStatus.ACTIVE
        assert mine.pending_edit is None
        entry = store.get(ALICE).history[-1]
        assert entry.action is HistoryAction.PARTIAL_REPAID
        assert entry.repaid_amount == 40.0
        assert entry.remaining_amount == 60.0
        assert store.get(BOB).history == []
        assert_mirrored(store, linked_debt_id)

    async def test_partial_repay_rejected_keeps_amount(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.repay_debt(ALICE, debt.id, "i_owe", "40")

        result = await service.respond_to_edit(BOB, linked_debt_id, confirm=False)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].amount == 100.0
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE
        assert store.get(ALICE).history == []
        assert_mirrored(store, linked_debt_id)

    async def test_partial_repay_with_stale_mirror_changes_nothing(self, service, store, users):
        await make_active(service, store)
        store.records[BOB].debts.owe_me[0].amount = 80.0
        debt = store.get(ALICE).debts.i_owe[0]
        writes = len(store.writes)

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "40")

        assert not result.success
        assert result.message.startswith("Synchronization error")
        assert len(store.writes) == writes

    async def test_partial_repay_of_manual_debt(self, service, store, users):
        await service.add_debt(ALICE, add_command(party="Pizza guy"))
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "25,5")

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].amount == 74.5
        entry = store.get(ALICE).history[0]
        assert entry.action is HistoryAction.PARTIAL_REPAID
        assert entry.repaid_amount == 25.5

    async def test_repay_more_than_remaining_fails(self, service, store, users):
        await service.add_debt(ALICE, add_command(party="Pizza guy"))
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "100.5")

        assert not result.success
        assert "exceeds" in result.message

    async def test_repay_pending_debt_fails(self, service, store, users):
        await service.add_debt(ALICE, add_command())
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.repay_debt(ALICE, debt.id, "i_owe", "10")

        assert not result.success


# ===== DELETE =====

@pytest.mark.asyncio
class TestDelete:

    async def test_manual_debt_is_deleted_directly(self, service, store, users):
        await service.add_debt(ALICE, add_command(party="Pizza guy"))
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.delete_debt(ALICE, debt.id)

        assert result.success
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(ALICE).history[0].action is HistoryAction.DELETED

    async def test_linked_debt_cannot_be_deleted_directly(self, service, store, users):
        await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.delete_manual_debt(ALICE, debt.id)

        assert not result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE

    async def test_confirmed_deletion_moves_both_to_history(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.delete_debt(ALICE, debt.id)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.PENDING_DELETION_APPROVAL
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.PENDING_DELETION_APPROVAL
        assert last_action(dispatcher, BOB) == f"debt_confirmdelete_{linked_debt_id}"

        result = await ActionRouter(service).handle(BOB, last_action(dispatcher, BOB))

        assert result.success
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me == []
        assert store.get(ALICE).history[0].action is HistoryAction.DELETED
        assert store.get(BOB).history[0].action is HistoryAction.DELETED
        assert_mirrored(store, linked_debt_id)

    async def test_rejected_deletion_restores_active(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.request_deletion(ALICE, debt.id)

        result = await service.respond_to_deletion(BOB, linked_debt_id, confirm=False)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.ACTIVE
        assert store.get(ALICE).history == []
        assert_mirrored(store, linked_debt_id)

    async def test_requester_can_cancel_deletion(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.request_deletion(ALICE, debt.id)

        result = await service.delete_debt(ALICE, debt.id)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.ACTIVE
        assert_mirrored(store, linked_debt_id)

    async def test_deletion_confirm_with_missing_mirror_reverts(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.request_deletion(ALICE, debt.id)
        store.records[ALICE].debts.i_owe.clear()

        result = await service.respond_to_deletion(BOB, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message.startswith("Synchronization error")
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.ACTIVE
        assert store.get(BOB).history == []

    async def test_cancel_pending_debt_withdraws_both(self, service, store, dispatcher, users):
        await service.add_debt(ALICE, add_command())
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.delete_debt(ALICE, debt.id)

        assert result.success
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(BOB).debts.owe_me == []
        assert "withdrew" in dispatcher.to(BOB)[-1][0]

    async def test_unknown_debt(self, service, users):
        result = await service.delete_debt(ALICE, "missing")

        assert not result.success

    async def test_counterpart_cannot_cancel_deletion_request(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        await service.request_deletion(ALICE, store.get(ALICE).debts.i_owe[0].id)
        sent_to_alice = len(dispatcher.to(ALICE))

        result = await service.delete_debt(BOB, store.get(BOB).debts.owe_me[0].id)

        assert not result.success
        assert result.message == AWAITING_ANSWER
        assert store.get(BOB).debts.owe_me[0].status is DebtStatus.PENDING_DELETION_APPROVAL
        assert store.get(BOB).debts.owe_me[0].requested_by == ALICE
        assert len(dispatcher.to(ALICE)) == sent_to_alice
        assert_mirrored(store, linked_debt_id)

    async def test_requester_cannot_confirm_own_deletion(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        await service.request_deletion(ALICE, store.get(ALICE).debts.i_owe[0].id)

        result = await service.respond_to_deletion(ALICE, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message == OWN_REQUEST
        assert_mirrored(store, linked_debt_id)

    async def test_second_deletion_response_is_already_processed(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        await service.request_deletion(ALICE, store.get(ALICE).debts.i_owe[0].id)
        await service.respond_to_deletion(BOB, linked_debt_id, confirm=True)
        writes = list(store.writes)

        result = await service.respond_to_deletion(BOB, linked_debt_id, confirm=False)

        assert not result.success
        assert result.message == ALREADY_PROCESSED
        assert store.writes == writes
        assert len(store.get(BOB).history) == 1
        assert_mirrored(store, linked_debt_id)

    async def test_cancel_pending_debt_with_missing_mirror(self, service, store, dispatcher, users):
        await service.add_debt(ALICE, add_command())
        debt = store.get(ALICE).debts.i_owe[0]
        store.records[BOB].debts.owe_me.clear()
        sent_to_bob = len(dispatcher.to(BOB))

        result = await service.cancel_pending_debt(ALICE, debt.id)

        assert result.success
        assert "Could not sync" in result.message
        assert store.get(ALICE).debts.i_owe == []
        assert store.get(ALICE).history == []
        assert len(dispatcher.to(BOB)) == sent_to_bob
        assert_mirrored(store, debt.linked_debt_id)


# ===== EDIT =====

@pytest.mark.asyncio
class TestEdit:

    async def test_manual_edit_applies_immediately(self, service, store, users):
        await service.add_debt(ALICE, add_command(party="Pizza guy"))
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="due_date", new_value="31-12-2026"))

        assert result.success
        edited = store.get(ALICE).debts.i_owe[0]
        assert edited.due_date.isoformat() == "2026-12-31"
        entry = store.get(ALICE).history[0]
        assert entry.action is HistoryAction.EDITED
        assert entry.edited_field is EditableField.DUE_DATE
        assert entry.original_value is None

    async def test_same_value_is_rejected(self, service, store, users):
        await service.add_debt(ALICE, add_command(party="Pizza guy"))
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="amount", new_value="100"))

        assert not result.success
        assert store.get(ALICE).history == []

    async def test_linked_edit_confirmed_by_counterpart(self, service, store, dispatcher, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="currency", new_value="usd"))

        assert result.success
        assert store.get(BOB).debts.owe_me[0].pending_edit.new_value == "USD"
        assert last_action(dispatcher, BOB) == f"debt_acceptedit_{linked_debt_id}"

        result = await service.respond_to_edit(BOB, linked_debt_id, confirm=True)

        assert result.success
        assert store.get(ALICE).debts.i_owe[0].currency == "USD"
        assert store.get(BOB).debts.owe_me[0].currency == "USD"
        entry = store.get(ALICE).history[0]
        assert entry.action is HistoryAction.EDITED
        assert entry.original_value == "RUB"
        assert entry.new_value == "USD"
        assert store.get(BOB).history == []
        assert_mirrored(store, linked_debt_id)

    async def test_contact_of_linked_debt_is_not_editable(self, service, store, users):
        await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]

        result = await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="party_identifier", new_value="Robert"))

        assert not result.success
        assert store.get(ALICE).debts.i_owe[0].status is DebtStatus.ACTIVE

    async def test_mismatched_pending_edits_are_reverted(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="currency", new_value="USD"))
        store.records[BOB].debts.owe_me[0].pending_edit = PendingEdit(
            field=EditableField.CURRENCY, new_value="EUR", requested_by=ALICE
        )

        result = await service.respond_to_edit(BOB, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message.startswith("Synchronization error")
        for d in (store.get(ALICE).debts.i_owe[0], store.get(BOB).debts.owe_me[0]):
            assert d.status is DebtStatus.ACTIVE
            assert d.currency == "RUB"
            assert d.pending_edit is None
        assert_mirrored(store, linked_debt_id)

    async def test_deletion_request_replaces_pending_edit(self, service, store, users):
        await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="amount", new_value="50"))

        result = await service.request_deletion(ALICE, debt.id)

        assert result.success
        for d in (store.get(ALICE).debts.i_owe[0], store.get(BOB).debts.owe_me[0]):
            assert d.status is DebtStatus.PENDING_DELETION_APPROVAL
            assert d.pending_edit is None

    async def test_second_edit_response_is_already_processed(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="amount", new_value="80"))
        await service.respond_to_edit(BOB, linked_debt_id, confirm=True)
        writes = list(store.writes)

        result = await service.respond_to_edit(BOB, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message == ALREADY_PROCESSED
        assert store.writes == writes
        assert store.get(ALICE).debts.i_owe[0].amount == 80.0
        assert len(store.get(ALICE).history) == 1
        assert_mirrored(store, linked_debt_id)

    async def test_edit_confirm_with_missing_mirror_reverts(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="amount", new_value="50"))
        store.records[ALICE].debts.i_owe.clear()

        result = await service.respond_to_edit(BOB, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message.startswith("Synchronization error")
        theirs = store.get(BOB).debts.owe_me[0]
        assert theirs.status is DebtStatus.ACTIVE
        assert theirs.amount == 100.0
        assert theirs.pending_edit is None
        assert store.get(BOB).history == []

    async def test_requester_cannot_confirm_own_edit(self, service, store, users):
        linked_debt_id = await make_active(service, store)
        debt = store.get(ALICE).debts.i_owe[0]
        await service.edit_debt(ALICE, EditDebtCommand(debt_id=debt.id, field="amount", new_value="50"))

        result = await service.respond_to_edit(ALICE, linked_debt_id, confirm=True)

        assert not result.success
        assert result.message == OWN_REQUEST
        assert store.get(BOB).debts.owe_me[0].awaits_owner_answer
        assert_mirrored(store, linked_debt_id)


@pytest.mark.asyncio
async def test_snooze_reminder(service, store, users):
    await service.add_debt(ALICE, add_command(party="Pizza guy"))
    debt = store.get(ALICE).debts.i_owe[0]

    result = await ActionRouter(service).handle(ALICE, f"debt_snooze_{debt.id}")

    assert result.success
    assert store.get(ALICE).debts.i_owe[0].reminder_snoozed_until is not None
