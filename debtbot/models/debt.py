"""
Debt model - one directional claim between two parties.

Design principles:
- A linked debt exists as two Debt documents, one in each party's record,
  joined by a shared linked_debt_id
- Amounts are floats rounded to 2 decimals on every mutation
- pending_edit is present only while status = pending_edit_approval

Status machine:
    manual                    -> history (deleted / edited / repaid)
    pending_confirmation      -> active (counterpart appears) | removed (cancel)
    pending_approval          -> active (accept) | removed (reject / cancel)
    active                    -> history | pending_edit_approval | pending_deletion_approval
    pending_edit_approval     -> active (confirm applies, reject reverts)
    pending_deletion_approval -> history (confirm) | active (reject / cancel)
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from debtbot.models.base import _utcnow, new_id


class DebtStatus(str, Enum):
    MANUAL = "manual"
    PENDING_CONFIRMATION = "pending_confirmation"
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    PENDING_DELETION_APPROVAL = "pending_deletion_approval"
    PENDING_EDIT_APPROVAL = "pending_edit_approval"


# Statuses in which a linked debt must have an equal mirror on the other side
MIRRORED_STATUSES = frozenset({
    DebtStatus.ACTIVE,
    DebtStatus.PENDING_APPROVAL,
    DebtStatus.PENDING_EDIT_APPROVAL,
    DebtStatus.PENDING_DELETION_APPROVAL,
})


class DebtDirection(str, Enum):
    I_OWE = "i_owe"
    OWE_ME = "owe_me"

    @property
    def mirrored(self) -> "DebtDirection":
        """The list the same debt lives in on the counterpart's side."""
        return DebtDirection.OWE_ME if self is DebtDirection.I_OWE else DebtDirection.I_OWE


class EditableField(str, Enum):
    AMOUNT = "amount"
    CURRENCY = "currency"
    DUE_DATE = "due_date"
    PARTY_IDENTIFIER = "party_identifier"


def coerce_field_value(field, value):
    """Give a stored edit value back the type of the field it belongs to."""
    if value is None or field is None:
        return value
    field = EditableField(field)
    if field is EditableField.AMOUNT:
        return float(value)
    if field is EditableField.DUE_DATE:
        if isinstance(value, datetime):
            return value.date()
        return value if isinstance(value, date) else date.fromisoformat(str(value))
    return str(value)


class PendingEdit(BaseModel):
    """A proposed change waiting for the counterpart. Compared structurally."""
    field: EditableField
    new_value: Any = None
    requested_by: str
    repay_amount: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_new_value(cls, data):
        if isinstance(data, dict) and "field" in data:
            data = dict(data)
            data["new_value"] = coerce_field_value(data["field"], data.get("new_value"))
        return data


class Debt(BaseModel):
    """
    Invariants:
    - amount >= 0, 2-decimal precision
    - linked_debt_id is stable for the lifetime of the link
    - pending_edit is None unless status == pending_edit_approval
    - requested_by is None outside pending_approval / pending_deletion_approval
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)
    amount: float
    currency: str
    due_date: Optional[date] = None

    party_identifier: str
    party_user_id: Optional[str] = None
    linked_debt_id: Optional[str] = None

    status: DebtStatus = DebtStatus.MANUAL
    pending_edit: Optional[PendingEdit] = None
    # who proposed the debt (pending_approval) or asked to delete it (pending_deletion_approval)
    requested_by: Optional[str] = None

    created_date: datetime = Field(default_factory=_utcnow)
    reminder_snoozed_until: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.linked_debt_id and self.party_user_id)

    @property
    def requester(self) -> Optional[str]:
        """User id that started the handshake this debt is waiting on, if known."""
        if self.status is DebtStatus.PENDING_EDIT_APPROVAL and self.pending_edit is not None:
            return self.pending_edit.requested_by
        if self.status in (DebtStatus.PENDING_APPROVAL, DebtStatus.PENDING_DELETION_APPROVAL):
            return self.requested_by
        return None

    @property
    def awaits_owner_answer(self) -> bool:
        """The counterpart started the handshake, so the owner of this copy has to answer it."""
        requester = self.requester
        return requester is not None and requester == self.party_user_id

    def reset_to_active(self) -> None:
        self.status = DebtStatus.ACTIVE
        self.pending_edit = None
        self.requested_by = None
