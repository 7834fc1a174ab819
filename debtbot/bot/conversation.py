"""
Multi-step conversations (add / repay / edit wizards).

Each chat has at most one session. advance() is a pure reducer: it takes the
current session and one piece of user input and returns the next session, the
reply to show, and, once every field is collected, a fully formed command for
the debt service. The service never sees partial input.
"""

import time
from typing import Callable, Dict, List, Literal, NamedTuple, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from debtbot.core.config import settings
from debtbot.models.debt import Debt, DebtDirection, DebtStatus, EditableField
from debtbot.models.record import UserRecord, UserSettings
from debtbot.schemas.debt import AddDebtCommand, EditDebtCommand, RepayDebtCommand
from debtbot.utils.formatting import FIELD_LABELS, format_amount
from debtbot.utils.validation import (
    DebtValidationError,
    validate_amount,
    validate_currency,
    validate_date,
    validate_direction,
    validate_edit_value,
    validate_editable_field,
    validate_party_identifier,
    validate_repay_amount,
)

CONTACT_PREFIX = "user:"
NO_DATE = "-"


class Choice(NamedTuple):
    label: str
    value: str


class AddDebtSession(BaseModel):
    kind: Literal["add"] = "add"
    step: Literal["direction", "party", "amount", "currency", "due_date"] = "direction"
    contacts: Dict[str, str] = {}
    direction: Optional[DebtDirection] = None
    party_identifier: Optional[str] = None
    party_user_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None


class RepaySession(BaseModel):
    kind: Literal["repay"] = "repay"
    step: Literal["amount"] = "amount"
    debt_id: str
    direction: DebtDirection
    remaining: float
    currency: str


class EditSession(BaseModel):
    kind: Literal["edit"] = "edit"
    step: Literal["field", "value"] = "field"
    debt_id: str
    linked: bool
    currency: str
    field: Optional[EditableField] = None


Session = Union[AddDebtSession, RepaySession, EditSession]
Command = Union[AddDebtCommand, RepayDebtCommand, EditDebtCommand]


class Step(NamedTuple):
    session: Optional[Session]
    reply: str
    command: Optional[Command] = None
    choices: Sequence[Sequence[Choice]] = ()


def _currency_choices(user_settings: UserSettings) -> List[List[Choice]]:
    currencies = sorted(settings.SUPPORTED_CURRENCIES, key=lambda c: c != user_settings.default_currency)
    return [[Choice(c, c) for c in currencies]]


DIRECTION_CHOICES = ((
    Choice("I owe", DebtDirection.I_OWE.value),
    Choice("Owed to me", DebtDirection.OWE_ME.value),
),)


# ===== ENTRY POINTS =====

def start_add(record: UserRecord) -> Step:
    session = AddDebtSession(contacts=dict(record.known_users))
    return Step(session, "Who owes whom?", choices=DIRECTION_CHOICES)


def start_repay(direction: DebtDirection, debt: Debt) -> Step:
    session = RepaySession(debt_id=debt.id, direction=direction, remaining=debt.amount, currency=debt.currency)
    reply = (
        f"Remaining: {format_amount(debt.amount, debt.currency)}.\n"
        f"Enter the amount to repay:"
    )
    return Step(session, reply, choices=[[Choice("Repay in full", f"{debt.amount:.2f}")]])


def start_edit(debt: Debt) -> Step:
    linked = debt.status is not DebtStatus.MANUAL
    session = EditSession(debt_id=debt.id, linked=linked, currency=debt.currency)
    fields = [f for f in EditableField if not (linked and f is EditableField.PARTY_IDENTIFIER)]
    return Step(session, "What do you want to change?", choices=[[Choice(FIELD_LABELS[f], f.value) for f in fields]])


# ===== REDUCER =====

def advance(session: Session, text: str, user_settings: UserSettings) -> Step:
    """Feed one user input (typed text or a pressed choice value) into the session."""
    text = (text or "").strip()
    try:
        if isinstance(session, AddDebtSession):
            return _advance_add(session, text, user_settings)
        if isinstance(session, RepaySession):
            return _advance_repay(session, text)
        return _advance_edit(session, text, user_settings)
    except DebtValidationError as exc:
        return Step(session, f"{exc} Try again or /cancel.")


def _advance_add(session: AddDebtSession, text: str, user_settings: UserSettings) -> Step:
    session = session.model_copy()

    if session.step == "direction":
        session.direction = validate_direction(text)
        session.step = "party"
        choices = [
            [Choice(name, f"{CONTACT_PREFIX}{user_id}")]
            for user_id, name in session.contacts.items()
        ]
        return Step(session, "Who is the other party? Pick a contact or type a name or @username:", choices=choices)

    if session.step == "party":
        if text.startswith(CONTACT_PREFIX) and text[len(CONTACT_PREFIX):] in session.contacts:
            session.party_user_id = text[len(CONTACT_PREFIX):]
            session.party_identifier = session.contacts[session.party_user_id]
        else:
            session.party_identifier = validate_party_identifier(text)
            session.party_user_id = None
        session.step = "amount"
        return Step(session, "Enter the amount:")

    if session.step == "amount":
        session.amount = validate_amount(text)
        session.step = "currency"
        return Step(session, "Choose the currency:", choices=_currency_choices(user_settings))

    if session.step == "currency":
        session.currency = validate_currency(text)
        session.step = "due_date"
        return Step(
            session,
            "Enter the due date as DD-MM-YYYY, or skip:",
            choices=[[Choice("No due date", NO_DATE)]],
        )

    command = AddDebtCommand(
        direction=session.direction,
        party_identifier=session.party_identifier,
        party_user_id=session.party_user_id,
        amount=session.amount,
        currency=session.currency,
        due_date=validate_date(text),
    )
    return Step(None, "Saving the debt...", command=command)


def _advance_repay(session: RepaySession, text: str) -> Step:
    amount = validate_repay_amount(text, session.remaining)
    command = RepayDebtCommand(debt_id=session.debt_id, direction=session.direction, amount=amount)
    return Step(None, "Recording the repayment...", command=command)


def _advance_edit(session: EditSession, text: str, user_settings: UserSettings) -> Step:
    session = session.model_copy()

    if session.step == "field":
        field = validate_editable_field(text)
        if field is EditableField.PARTY_IDENTIFIER and session.linked:
            raise DebtValidationError("The contact of a linked debt cannot be changed.")
        session.field = field
        session.step = "value"
        if field is EditableField.CURRENCY:
            return Step(session, "Choose the new currency:", choices=_currency_choices(user_settings))
        if field is EditableField.DUE_DATE:
            return Step(
                session,
                "Enter the new due date as DD-MM-YYYY:",
                choices=[[Choice("Remove due date", NO_DATE)]],
            )
        return Step(session, f"Enter the new {FIELD_LABELS[field].lower()}:")

    new_value = validate_edit_value(session.field, text)
    command = EditDebtCommand(debt_id=session.debt_id, field=session.field, new_value=new_value)
    return Step(None, "Saving the change...", command=command)


# ===== SESSION STORE =====

class SessionStore:
    """
    Conversation state keyed by chat id.

    Sessions are evicted on completion, on /cancel, after an error and once
    they have been idle longer than the TTL.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds if ttl_seconds is not None else settings.SESSION_TTL_SECONDS
        self.clock = clock
        self._sessions: Dict[int, Tuple[Session, float]] = {}

    def get(self, chat_id: int) -> Optional[Session]:
        entry = self._sessions.get(chat_id)
        if entry is None:
            return None
        session, touched = entry
        if self.clock() - touched > self.ttl:
            del self._sessions[chat_id]
            return None
        return session

    def put(self, chat_id: int, session: Session) -> None:
        self._sessions[chat_id] = (session, self.clock())

    def evict(self, chat_id: int) -> bool:
        return self._sessions.pop(chat_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)
