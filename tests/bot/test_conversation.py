from datetime import date

import pytest

from debtbot.bot.conversation import (
    AddDebtSession,
    EditSession,
    SessionStore,
    Step,
    advance,
    start_add,
    start_edit,
    start_repay,
)
from debtbot.models.debt import Debt, DebtDirection, DebtStatus, EditableField
from debtbot.models.record import UserRecord, UserSettings
from debtbot.schemas.debt import AddDebtCommand, EditDebtCommand, RepayDebtCommand


def run(step, *inputs, user_settings=None):
    user_settings = user_settings or UserSettings()
    for text in inputs:
        step = advance(step.session, text, user_settings)
    return step


class TestAddFlow:

    def test_full_flow_produces_command(self):
        step = run(start_add(UserRecord()), "owe_me", "@bob_22", "12,5", "usd", "01-06-2026")

        assert step.session is None
        assert step.command == AddDebtCommand(
            direction=DebtDirection.OWE_ME, party_identifier="@bob_22", amount=12.5,
            currency="USD", due_date=date(2026, 6, 1),
        )

    def test_known_contact_choice_sets_user_id(self):
        record = UserRecord(known_users={"2": "@bob_22"})
        step = start_add(record)
        step = run(step, "i_owe")

        assert [c.value for row in step.choices for c in row] == ["user:2"]

        step = run(step, "user:2", "10", "RUB", "-")

        assert step.command.party_user_id == "2"
        assert step.command.party_identifier == "@bob_22"
        assert step.command.due_date is None

    def test_invalid_input_keeps_step(self):
        step = run(start_add(UserRecord()), "i_owe", "Bob")
        before = step.session

        step = run(step, "ten")

        assert step.command is None
        assert step.session == before
        assert "Invalid amount" in step.reply

    def test_default_currency_offered_first(self):
        user_settings = UserSettings(default_currency="EUR")
        step = run(start_add(UserRecord()), "i_owe", "Bob", "5", user_settings=user_settings)

        assert step.choices[0][0].value == "EUR"

    def test_reducer_does_not_mutate_input(self):
        session = AddDebtSession()

        advance(session, "i_owe", UserSettings())

        assert session.step == "direction"
        assert session.direction is None


def test_repay_flow():
    debt = Debt(amount=40, currency="RUB", party_identifier="Bob", status=DebtStatus.ACTIVE)
    step = start_repay(DebtDirection.I_OWE, debt)

    assert step.choices[0][0].value == "40.00"

    too_much = run(step, "41")
    assert too_much.command is None

    done = run(step, "15")
    assert done.command == RepayDebtCommand(debt_id=debt.id, direction=DebtDirection.I_OWE, amount=15.0)


class TestEditFlow:

    def test_linked_debt_hides_contact_field(self):
        debt = Debt(amount=1, currency="RUB", party_identifier="@bob_22", party_user_id="2",
                    linked_debt_id="L1", status=DebtStatus.ACTIVE)
        step = start_edit(debt)

        offered = {c.value for row in step.choices for c in row}
        assert EditableField.PARTY_IDENTIFIER.value not in offered

        refused = run(step, "party_identifier")
        assert isinstance(refused.session, EditSession)
        assert refused.session.field is None

    def test_manual_debt_edit_produces_command(self):
        debt = Debt(amount=1, currency="RUB", party_identifier="Bob")
        step = run(start_edit(debt), "due_date", "15-08-2026")

        assert step.command == EditDebtCommand(debt_id=debt.id, field=EditableField.DUE_DATE, new_value=date(2026, 8, 15))


class TestSessionStore:

    def test_sessions_expire(self):
        now = [0.0]
        sessions = SessionStore(ttl_seconds=60, clock=lambda: now[0])
        sessions.put(1, AddDebtSession())

        now[0] = 59
        assert sessions.get(1) is not None

        now[0] = 61
        assert sessions.get(1) is None
        assert len(sessions) == 0

    def test_evict(self):
        sessions = SessionStore(ttl_seconds=60)
        sessions.put(1, AddDebtSession())

        assert sessions.evict(1) is True
        assert sessions.evict(1) is False
        assert sessions.get(1) is None


@pytest.mark.parametrize("direction", ["sideways", ""])
def test_bad_direction_is_reported(direction):
    step = run(start_add(UserRecord()), direction)

    assert step.session.step == "direction"
    assert step.command is None


def test_step_choices_default_is_immutable():
    assert Step(None, "a").choices == ()
    assert isinstance(start_add(UserRecord()).choices, tuple)
