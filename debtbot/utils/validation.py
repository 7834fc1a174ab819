"""Debt input validation utilities."""
import math
import re
from datetime import date, datetime
from typing import Optional, Union

from debtbot.core.config import settings
from debtbot.core.constants import AMOUNT_TOLERANCE
from debtbot.models.base import round_amount
from debtbot.models.debt import DebtDirection, EditableField

USERNAME_PATTERN = re.compile(r"^@[a-zA-Z0-9_]{5,32}$")
DATE_INPUT_FORMAT = "%d-%m-%Y"


class DebtValidationError(Exception):
    """Raised when user input cannot be turned into a valid debt command."""
    pass


def validate_amount(value: Union[str, float, int]) -> float:
    """
    Parse and validate a debt amount.

    Rules:
    - accepts "," as the decimal separator
    - must be a finite number greater than zero
    - result is rounded to 2 decimals
    """
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise DebtValidationError(f"Invalid amount: {value}. Enter a positive number.")
    if not math.isfinite(amount):
        raise DebtValidationError(f"Invalid amount: {value}. Enter a positive number.")
    amount = round_amount(amount)
    if amount <= 0:
        raise DebtValidationError("Amount must be greater than zero.")
    return amount


def validate_repay_amount(value: Union[str, float, int], remaining: float) -> float:
    amount = validate_amount(value)
    if amount > remaining + AMOUNT_TOLERANCE:
        raise DebtValidationError(
            f"Repay amount {amount:.2f} exceeds the remaining balance {remaining:.2f}."
        )
    return amount


def validate_currency(value: str) -> str:
    currency = (value or "").strip().upper()
    if currency not in settings.SUPPORTED_CURRENCIES:
        supported = ", ".join(settings.SUPPORTED_CURRENCIES)
        raise DebtValidationError(f"Unsupported currency: {value}. Choose one of: {supported}.")
    return currency


def validate_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse a DD-MM-YYYY string. Empty input or "-" means no due date."""
    if value is None or isinstance(value, date):
        return value
    text = value.strip()
    if text in ("", "-"):
        return None
    try:
        return datetime.strptime(text, DATE_INPUT_FORMAT).date()
    except ValueError:
        raise DebtValidationError(f"Invalid date: {value}. Use the DD-MM-YYYY format.")


def is_valid_username(value: Optional[str]) -> bool:
    return bool(value) and USERNAME_PATTERN.match(value.strip()) is not None


def normalize_username(value: str) -> str:
    """Handles are stored with a leading "@"."""
    value = value.strip()
    return value if value.startswith("@") else f"@{value}"


def validate_username(value: str) -> str:
    handle = normalize_username(value or "")
    if not is_valid_username(handle):
        raise DebtValidationError(
            f"Invalid username: {value}. Use @ followed by 5-32 letters, digits or underscores."
        )
    return handle


def validate_party_identifier(value: str) -> str:
    text = (value or "").strip()
    if not text:
        raise DebtValidationError("Counterpart name cannot be empty.")
    return text


def validate_direction(value: Union[str, DebtDirection]) -> DebtDirection:
    try:
        return DebtDirection(value)
    except ValueError:
        raise DebtValidationError(f"Unknown debt direction: {value}.")


def validate_editable_field(value: Union[str, EditableField]) -> EditableField:
    try:
        return EditableField(value)
    except ValueError:
        raise DebtValidationError(f"Field cannot be edited: {value}.")


def validate_edit_value(field: EditableField, value):
    """Coerce a raw new value to the type of the edited field."""
    if field is EditableField.AMOUNT:
        return validate_amount(value)
    if field is EditableField.CURRENCY:
        return validate_currency(value)
    if field is EditableField.DUE_DATE:
        return validate_date(value)
    return validate_party_identifier(value)
