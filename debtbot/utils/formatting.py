"""
Presentation helpers: pure functions from records to display text.

List views are rendered as Telegram HTML; counterpart names are escaped.
"""

import math
from collections import OrderedDict
from datetime import date, datetime
from html import escape
from typing import Dict, List, Optional, Tuple

from debtbot.core.config import settings
from debtbot.models.debt import Debt, DebtDirection, DebtStatus, EditableField
from debtbot.models.history import HistoryAction, HistoryEntry
from debtbot.models.record import UserRecord, UserSettings

DATE_DISPLAY_FORMAT = "%d.%m.%Y"
NO_DATE = "none"

FIELD_LABELS = {
    EditableField.AMOUNT: "Amount",
    EditableField.CURRENCY: "Currency",
    EditableField.DUE_DATE: "Due date",
    EditableField.PARTY_IDENTIFIER: "Contact",
}

ACTION_LABELS = {
    HistoryAction.REPAID: "Repaid",
    HistoryAction.PARTIAL_REPAID: "Partially repaid",
    HistoryAction.DELETED: "Deleted",
    HistoryAction.EDITED: "Edited",
}

# Debts shown in the main (aggregated) lists
LISTED_STATUSES = (DebtStatus.ACTIVE, DebtStatus.MANUAL, DebtStatus.PENDING_EDIT_APPROVAL)


def format_amount(amount: Optional[float], currency: str) -> str:
    return f"{(amount or 0.0):.2f} {currency}"


def format_date(value) -> str:
    if value is None or value == "":
        return NO_DATE
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime(DATE_DISPLAY_FORMAT)
    return str(value)


def format_value_for_display(field: EditableField, value, currency: str = "") -> str:
    """Render an edited field's value the way users typed it in."""
    if field is EditableField.AMOUNT:
        try:
            return format_amount(float(value), currency).strip()
        except (TypeError, ValueError):
            return str(value)
    if field is EditableField.DUE_DATE:
        return format_date(value)
    return str(value) if value is not None else NO_DATE


def status_label(status: DebtStatus, party_name: str = "contact") -> str:
    labels = {
        DebtStatus.MANUAL: " (manual)",
        DebtStatus.PENDING_CONFIRMATION: f" (waiting for {party_name})",
        DebtStatus.PENDING_APPROVAL: f" (waiting for {party_name})",
        DebtStatus.ACTIVE: "",
        DebtStatus.PENDING_DELETION_APPROVAL: f" (deletion pending with {party_name})",
        DebtStatus.PENDING_EDIT_APPROVAL: f" (change pending with {party_name})",
    }
    return labels.get(status, f" ({status})")


def describe_debt(record: UserRecord, direction: DebtDirection, debt: Debt) -> str:
    """One-line plain-text description used in prompts and buttons."""
    name = record.party_name(debt)
    who = f"You owe {name}" if direction is DebtDirection.I_OWE else f"{name} owes you"
    text = f"{who}: {format_amount(debt.amount, debt.currency)}"
    if debt.due_date:
        text += f" (due {format_date(debt.due_date)})"
    return text


def _paginate(items: List, page: int, page_size: int) -> Tuple[List, int, int]:
    total_pages = math.ceil(len(items) / page_size) if items else 0
    page = max(1, min(page, total_pages or 1))
    start = (page - 1) * page_size
    return items[start:start + page_size], start, total_pages


def _format_direction(
    record: UserRecord,
    direction: DebtDirection,
    page: int,
    page_size: int,
    aggregate: bool,
    net_balance: Dict[str, float],
) -> Tuple[str, int]:
    debts = [d for d in record.debts.for_direction(direction) if d.status in LISTED_STATUSES]

    groups: "OrderedDict[object, List[Debt]]" = OrderedDict()
    for index, debt in enumerate(debts):
        key = (debt.party_user_id or debt.party_identifier, debt.currency) if aggregate else index
        groups.setdefault(key, []).append(debt)

    items, start, total_pages = _paginate(list(groups.values()), page, page_size)
    lines = []
    for number, group in enumerate(items, start=start + 1):
        first = group[0]
        name = escape(record.party_name(first))
        total = round(sum(d.amount for d in group), 2)
        status = DebtStatus.ACTIVE
        if all(d.status is DebtStatus.PENDING_EDIT_APPROVAL for d in group):
            status = DebtStatus.PENDING_EDIT_APPROVAL
        elif all(d.status is DebtStatus.MANUAL for d in group):
            status = DebtStatus.MANUAL
        due_dates = sorted(d.due_date for d in group if d.due_date)
        due = ""
        if due_dates:
            due = f" (next due: {format_date(due_dates[0])})" if aggregate else f" (due: {format_date(due_dates[0])})"
        lines.append(f"  {number}. {name}: <b>{format_amount(total, first.currency)}</b>{status_label(status, name)}{due}")

        sign = -1 if direction is DebtDirection.I_OWE else 1
        net_balance[first.currency] = net_balance.get(first.currency, 0.0) + sign * total

    return "\n".join(lines), total_pages


def _format_pending_section(
    record: UserRecord, title: str, status: DebtStatus, awaits_answer: Optional[bool] = None
) -> str:
    lines = []
    for direction, debt in record.debts.all():
        if debt.status is not status:
            continue
        if awaits_answer is not None and debt.awaits_owner_answer is not awaits_answer:
            continue
        name = escape(record.party_name(debt))
        who = "You owe" if direction is DebtDirection.I_OWE else "Owed to you by"
        lines.append(f"  {len(lines) + 1}. {who} {name}: <b>{format_amount(debt.amount, debt.currency)}</b>")
    if not lines:
        return ""
    return f"\n\n<b><u>{title}</u></b>\n" + "\n".join(lines)


def format_debts(
    record: UserRecord,
    page: int = 1,
    page_size: Optional[int] = None,
    aggregate: bool = True,
) -> Tuple[str, int]:
    """
    Render the debts overview.

    Active, manual and pending-edit debts are grouped per counterpart and
    currency and paginated; pending approvals, confirmations and deletions are
    listed in their own sections. Returns (text, total_pages).
    """
    page_size = page_size or settings.DEBTS_PAGE_SIZE
    net_balance: Dict[str, float] = {}

    owe_me, owe_me_pages = _format_direction(record, DebtDirection.OWE_ME, page, page_size, aggregate, net_balance)
    i_owe, i_owe_pages = _format_direction(record, DebtDirection.I_OWE, page, page_size, aggregate, net_balance)

    text = "<b><u>Owed to me:</u></b>\n" + (owe_me or "  <i>No debts</i>")
    text += "\n\n<b><u>I owe:</u></b>\n" + (i_owe or "  <i>No debts</i>")
    text += _format_pending_section(record, "Waiting for your approval:", DebtStatus.PENDING_APPROVAL, True)
    text += _format_pending_section(record, "Waiting for the other party's approval:", DebtStatus.PENDING_APPROVAL, False)
    text += _format_pending_section(record, "Waiting for the contact to join:", DebtStatus.PENDING_CONFIRMATION)
    text += _format_pending_section(
        record, "Deletion requests waiting for your answer:", DebtStatus.PENDING_DELETION_APPROVAL, True
    )
    text += _format_pending_section(
        record, "Waiting for deletion approval:", DebtStatus.PENDING_DELETION_APPROVAL, False
    )

    if record.settings.show_net_balance and net_balance:
        text += "\n\n<b><u>Net balance:</u></b>"
        for currency, balance in net_balance.items():
            sign = "+" if balance >= 0 else ""
            text += f"\n  {currency}: <b>{sign}{format_amount(balance, currency)}</b>"

    return text, max(owe_me_pages, i_owe_pages)


def _format_history_entry(record: UserRecord, entry: HistoryEntry) -> str:
    name = escape(record.known_users.get(entry.party_user_id or "", entry.party_identifier) or "Unknown")
    kind = "I owed" if entry.direction is DebtDirection.I_OWE else "Owed to me by"
    lines = [
        f"<b>{format_date(entry.resolved_date)} - {ACTION_LABELS[entry.action]}</b>",
        f"  <i>{kind} {name}</i>",
    ]
    if entry.action is HistoryAction.REPAID:
        lines.append(f"  Amount: {format_amount(entry.amount, entry.currency)}")
    elif entry.action is HistoryAction.PARTIAL_REPAID:
        lines.append(f"  Repaid: {format_amount(entry.repaid_amount, entry.currency)}")
        lines.append(f"  Remaining: {format_amount(entry.remaining_amount, entry.currency)}")
    elif entry.action is HistoryAction.DELETED:
        lines.append(f"  Amount when deleted: {format_amount(entry.amount, entry.currency)}")
    elif entry.action is HistoryAction.EDITED and entry.edited_field is not None:
        field = entry.edited_field
        lines.append(f"  Field: {FIELD_LABELS[field]}")
        lines.append(f"  Old value: {escape(format_value_for_display(field, entry.original_value, entry.currency))}")
        lines.append(f"  New value: {escape(format_value_for_display(field, entry.new_value, entry.currency))}")
    return "\n".join(lines)


def format_history(
    record: UserRecord,
    page: int = 1,
    page_size: Optional[int] = None,
    contact_user_id: Optional[str] = None,
) -> Tuple[str, int]:
    """Newest first, optionally only entries for one contact. Returns (text, total_pages)."""
    if not record.history:
        return "History is empty.", 0

    entries = [e for e in record.history if contact_user_id is None or e.party_user_id == contact_user_id]
    if not entries:
        return "No history entries match the filter.", 0

    entries.sort(key=lambda e: e.resolved_date, reverse=True)
    page_size = page_size or settings.HISTORY_PAGE_SIZE
    items, start, total_pages = _paginate(entries, page, page_size)

    header = f"<b>History (entries {start + 1}-{start + len(items)} of {len(entries)}):</b>\n\n"
    return header + "\n---\n".join(_format_history_entry(record, e) for e in items), total_pages


def describe_reminder_days(days: int) -> str:
    if days == 0:
        return "on the due date"
    return f"{days} day(s) before the due date"


def format_settings(user_settings: UserSettings) -> str:
    reminders = f"on, {describe_reminder_days(user_settings.reminder_days_before)}" if user_settings.reminders_enabled else "off"
    return (
        "<b>Settings</b>\n\n"
        f"Default currency: <b>{escape(user_settings.default_currency)}</b>\n"
        f"Show net balance: <b>{'yes' if user_settings.show_net_balance else 'no'}</b>\n"
        f"Due date reminders: <b>{reminders}</b>\n\n"
        "Tap a button to change a setting."
    )
