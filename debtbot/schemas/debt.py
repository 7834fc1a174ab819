from datetime import date
from typing import Any, Optional

from pydantic import BaseModel

from debtbot.models.debt import DebtDirection, EditableField


class AddDebtCommand(BaseModel):
    direction: DebtDirection
    party_identifier: str
    amount: float
    currency: str
    due_date: Optional[date] = None
    # set when the caller already resolved the counterpart (e.g. picked from known contacts)
    party_user_id: Optional[str] = None


class RepayDebtCommand(BaseModel):
    debt_id: str
    direction: DebtDirection
    amount: float


class EditDebtCommand(BaseModel):
    debt_id: str
    field: EditableField
    # raw user input, parsed by the service
    new_value: Any = None


class OperationResult(BaseModel):
    success: bool
    message: str

    @classmethod
    def ok(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str) -> "OperationResult":
        return cls(success=False, message=message)
