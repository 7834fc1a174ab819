"""Tests for debt input validation."""
from datetime import date

import pytest

from debtbot.models.debt import DebtDirection, EditableField
from debtbot.utils.validation import (
    DebtValidationError,
    is_valid_username,
    normalize_username,
    validate_amount,
    validate_currency,
    validate_date,
    validate_direction,
    validate_edit_value,
    validate_repay_amount,
    validate_username,
)


class TestAmount:

    @pytest.mark.parametrize("raw,expected", [
        ("100", 100.0),
        ("12,5", 12.5),
        (" 3.456 ", 3.46),
        (7, 7.0),
    ])
    def test_valid(self, raw, expected):
        assert validate_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "0", "-1", "inf", "nan", "0.001", None])
    def test_invalid(self, raw):
        with pytest.raises(DebtValidationError):
            validate_amount(raw)

    def test_repay_within_tolerance(self):
        assert validate_repay_amount("10.0005", 10.0) == 10.0

    def test_repay_exceeding_remaining(self):
        with pytest.raises(DebtValidationError, match="exceeds"):
            validate_repay_amount("10.02", 10.0)


def test_currency_is_upper_cased():
    assert validate_currency(" usd ") == "USD"


def test_unsupported_currency():
    with pytest.raises(DebtValidationError):
        validate_currency("GBP")


class TestDate:

    def test_day_month_year(self):
        assert validate_date("05-01-2026") == date(2026, 1, 5)

    @pytest.mark.parametrize("raw", ["", "-", None])
    def test_no_date(self, raw):
        assert validate_date(raw) is None

    @pytest.mark.parametrize("raw", ["2026-01-05", "31-02-2026", "tomorrow"])
    def test_invalid(self, raw):
        with pytest.raises(DebtValidationError):
            validate_date(raw)


class TestUsername:

    @pytest.mark.parametrize("handle", ["@alice", "@bob_22", "@" + "a" * 32])
    def test_valid(self, handle):
        assert is_valid_username(handle)

    @pytest.mark.parametrize("handle", ["alice_1", "@abc", "@" + "a" * 33, "@bad-name", "", None])
    def test_invalid(self, handle):
        assert not is_valid_username(handle)

    def test_normalize_adds_at(self):
        assert normalize_username(" carol_333 ") == "@carol_333"
        assert validate_username("carol_333") == "@carol_333"

    def test_validate_rejects_short(self):
        with pytest.raises(DebtValidationError):
            validate_username("@ab")


def test_direction():
    assert validate_direction("owe_me") is DebtDirection.OWE_ME
    with pytest.raises(DebtValidationError):
        validate_direction("sideways")


def test_edit_value_follows_field():
    assert validate_edit_value(EditableField.AMOUNT, "5,5") == 5.5
    assert validate_edit_value(EditableField.CURRENCY, "eur") == "EUR"
    assert validate_edit_value(EditableField.DUE_DATE, "-") is None
    assert validate_edit_value(EditableField.PARTY_IDENTIFIER, " Bob ") == "Bob"
    with pytest.raises(DebtValidationError):
        validate_edit_value(EditableField.PARTY_IDENTIFIER, "  ")
