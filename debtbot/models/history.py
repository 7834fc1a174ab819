from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from debtbot.models.base import _utcnow
from debtbot.models.debt import Debt, DebtDirection, EditableField, coerce_field_value


class HistoryAction(str, Enum):
    REPAID = "repaid"
    PARTIAL_REPAID = "partial_repaid"
    DELETED = "deleted"
    EDITED = "edited"


class HistoryEntry(BaseModel):
    """Immutable snapshot appended to the owner's record on every resolution."""
    model_config = ConfigDict(frozen=True)

    debt_id: str
    linked_debt_id: Optional[str] = None
    direction: DebtDirection
    party_identifier: str
    party_user_id: Optional[str] = None

    amount: Optional[float] = None
    currency: str
    due_date: Optional[date] = None

    action: HistoryAction
    resolved_date: datetime = Field(default_factory=_utcnow)

    # partial repayments
    repaid_amount: Optional[float] = None
    remaining_amount: Optional[float] = None

    # edits
    edited_field: Optional[EditableField] = None
    original_value: Any = None
    new_value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_edit_values(cls, data):
        if isinstance(data, dict) and data.get("edited_field"):
            data = dict(data)
            for key in ("original_value", "new_value"):
                data[key] = coerce_field_value(data["edited_field"], data.get(key))
        return data

    @classmethod
    def from_debt(cls, debt: Debt, direction: DebtDirection, action: HistoryAction, **extra) -> "HistoryEntry":
        fields = {
            "debt_id": debt.id,
            "linked_debt_id": debt.linked_debt_id,
            "direction": direction,
            "party_identifier": debt.party_identifier,
            "party_user_id": debt.party_user_id,
            "amount": debt.amount,
            "currency": debt.currency,
            "due_date": debt.due_date,
            "action": action,
        }
        fields.update(extra)
        return cls(**fields)
