from typing import Iterable, List, Optional, Sequence, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from debtbot.bot.conversation import Choice
from debtbot.core.config import settings
from debtbot.core.constants import ActionVerb
from debtbot.models.debt import Debt, DebtDirection, DebtStatus
from debtbot.models.record import NotificationSettings, UserRecord, UserSettings
from debtbot.services.actions import build_action_token
from debtbot.services.settings_service import NOTIFICATION_GROUPS, REMINDER_DAY_OPTIONS
from debtbot.utils.formatting import describe_debt, describe_reminder_days, format_amount, status_label

CONVERSATION_PREFIX = "conv:"
PAGE_PREFIX = "page:"
REPAY_PREFIX = "repay:"
DELETE_PREFIX = "delete:"
DELETE_CONFIRM_PREFIX = "delete_yes:"
DELETE_ABORT = "delete_no"
EDIT_PREFIX = "edit:"
SETTINGS_PREFIX = "settings:"
HISTORY_PREFIX = "hist:"

ANSWER_VERBS = {
    DebtStatus.PENDING_APPROVAL: (("Accept", ActionVerb.ACCEPT), ("Reject", ActionVerb.REJECT)),
    DebtStatus.PENDING_DELETION_APPROVAL: (
        ("Confirm deletion", ActionVerb.CONFIRM_DELETE),
        ("Keep debt", ActionVerb.REJECT_DELETE),
    ),
    DebtStatus.PENDING_EDIT_APPROVAL: (
        ("Confirm change", ActionVerb.ACCEPT_EDIT),
        ("Reject change", ActionVerb.REJECT_EDIT),
    ),
}

NOTIFICATION_GROUP_LABELS = {
    "new": "New, accepted and rejected debts",
    "repaid": "Repayments",
    "delete": "Deletion requests",
    "edit": "Change requests",
    "reminder": "Due date reminders",
}


def choices_keyboard(choices: Sequence[Sequence[Choice]]) -> Optional[InlineKeyboardMarkup]:
    rows = [
        [InlineKeyboardButton(c.label, callback_data=f"{CONVERSATION_PREFIX}{c.value}") for c in row]
        for row in choices
        if row
    ]
    return InlineKeyboardMarkup(rows) if rows else None


def _debt_label(record: UserRecord, direction: DebtDirection, debt: Debt) -> str:
    if debt.awaits_owner_answer:
        return describe_debt(record, direction, debt) + " (waiting for your answer)"
    return describe_debt(record, direction, debt) + status_label(debt.status, record.party_name(debt))


def debt_picker(
    record: UserRecord,
    debts: Iterable[Tuple[DebtDirection, Debt]],
    prefix: str,
    with_direction: bool = True,
) -> Optional[InlineKeyboardMarkup]:
    """One button per debt; callback data is prefix + [direction:] + debt id."""
    rows: List[List[InlineKeyboardButton]] = []
    for direction, debt in debts:
        data = f"{prefix}{direction.value}:{debt.id}" if with_direction else f"{prefix}{debt.id}"
        rows.append([InlineKeyboardButton(_debt_label(record, direction, debt), callback_data=data)])
    return InlineKeyboardMarkup(rows) if rows else None


def answer_buttons(debt: Debt, subject: Optional[str] = None) -> List[InlineKeyboardButton]:
    """Accept/reject style buttons carrying the same action tokens as the notifications."""
    (yes_label, yes_verb), (no_label, no_verb) = ANSWER_VERBS[debt.status]
    if subject:
        yes_label = f"{yes_label}: {subject}"
    return [
        InlineKeyboardButton(yes_label, callback_data=build_action_token(yes_verb, debt.linked_debt_id)),
        InlineKeyboardButton(no_label, callback_data=build_action_token(no_verb, debt.linked_debt_id)),
    ]


def answer_rows(record: UserRecord) -> List[List[InlineKeyboardButton]]:
    """A row per pending request the owner of the record has to answer."""
    rows = []
    for _, debt in record.debts.all():
        if not debt.awaits_owner_answer or debt.status not in ANSWER_VERBS:
            continue
        subject = f"{record.party_name(debt)} {format_amount(debt.amount, debt.currency)}"
        rows.append(answer_buttons(debt, subject))
    return rows


def confirm_keyboard(yes_label: str, yes_data: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(yes_label, callback_data=yes_data)],
        [InlineKeyboardButton("No, keep it", callback_data=DELETE_ABORT)],
    ])


def _pagination_row(view: str, page: int, total_pages: int) -> List[InlineKeyboardButton]:
    if total_pages <= 1:
        return []
    row = []
    if page > 1:
        row.append(InlineKeyboardButton("<< Prev", callback_data=f"{PAGE_PREFIX}{view}:{page - 1}"))
    row.append(InlineKeyboardButton(f"{page}/{total_pages}", callback_data=f"{PAGE_PREFIX}{view}:{page}"))
    if page < total_pages:
        row.append(InlineKeyboardButton("Next >>", callback_data=f"{PAGE_PREFIX}{view}:{page + 1}"))
    return row


def debts_keyboard(record: UserRecord, page: int, total_pages: int) -> Optional[InlineKeyboardMarkup]:
    rows = answer_rows(record)
    row = _pagination_row("debts", page, total_pages)
    if row:
        rows.append(row)
    return InlineKeyboardMarkup(rows) if rows else None


# ===== HISTORY =====

def history_keyboard(page: int, total_pages: int, filtered: bool) -> InlineKeyboardMarkup:
    rows = []
    row = _pagination_row("history", page, total_pages)
    if row:
        rows.append(row)
    filters = [InlineKeyboardButton("Filter by contact", callback_data=f"{HISTORY_PREFIX}contacts")]
    if filtered:
        filters.append(InlineKeyboardButton("Show all", callback_data=f"{HISTORY_PREFIX}reset"))
    rows.append(filters)
    return InlineKeyboardMarkup(rows)


def history_contacts_keyboard(record: UserRecord) -> Optional[InlineKeyboardMarkup]:
    """Contacts that appear in the history, in order of first appearance."""
    seen = {}
    for entry in record.history:
        if entry.party_user_id and entry.party_user_id not in seen:
            seen[entry.party_user_id] = record.known_users.get(entry.party_user_id, entry.party_identifier)
    if not seen:
        return None
    rows = [
        [InlineKeyboardButton(name, callback_data=f"{HISTORY_PREFIX}contact:{user_id}")]
        for user_id, name in seen.items()
    ]
    rows.append([InlineKeyboardButton("Back", callback_data=f"{HISTORY_PREFIX}reset")])
    return InlineKeyboardMarkup(rows)


# ===== SETTINGS =====

def _on_off(value: bool) -> str:
    return "on" if value else "off"


def settings_keyboard(user_settings: UserSettings) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton(f"Currency ({user_settings.default_currency})", callback_data=f"{SETTINGS_PREFIX}currency"),
            InlineKeyboardButton(
                f"Net balance ({_on_off(user_settings.show_net_balance)})", callback_data=f"{SETTINGS_PREFIX}netbalance"
            ),
        ],
        [
            InlineKeyboardButton("Notifications", callback_data=f"{SETTINGS_PREFIX}notify"),
            InlineKeyboardButton("Reminders", callback_data=f"{SETTINGS_PREFIX}reminders"),
        ],
        [InlineKeyboardButton("Export my data", callback_data=f"{SETTINGS_PREFIX}export")],
        [InlineKeyboardButton("Close", callback_data=f"{SETTINGS_PREFIX}close")],
    ])


def _back_row() -> List[InlineKeyboardButton]:
    return [InlineKeyboardButton("Back to settings", callback_data=f"{SETTINGS_PREFIX}main")]


def currency_settings_keyboard(user_settings: UserSettings) -> InlineKeyboardMarkup:
    rows = []
    for currency in settings.SUPPORTED_CURRENCIES:
        mark = " (current)" if currency == user_settings.default_currency else ""
        rows.append([InlineKeyboardButton(f"{currency}{mark}", callback_data=f"{SETTINGS_PREFIX}currency:{currency}")])
    rows.append(_back_row())
    return InlineKeyboardMarkup(rows)


def reminder_settings_keyboard(user_settings: UserSettings) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(
        f"Reminders: {_on_off(user_settings.reminders_enabled)}", callback_data=f"{SETTINGS_PREFIX}reminders:toggle"
    )]]
    for days in REMINDER_DAY_OPTIONS:
        mark = " (current)" if days == user_settings.reminder_days_before else ""
        rows.append([InlineKeyboardButton(
            f"Remind {describe_reminder_days(days)}{mark}", callback_data=f"{SETTINGS_PREFIX}days:{days}"
        )])
    rows.append(_back_row())
    return InlineKeyboardMarkup(rows)


def notification_settings_keyboard(notification_settings: NotificationSettings) -> InlineKeyboardMarkup:
    rows = []
    for group, events in NOTIFICATION_GROUPS.items():
        enabled = [notification_settings.is_enabled(event) for event in events]
        state = "on" if all(enabled) else ("partly on" if any(enabled) else "off")
        rows.append([InlineKeyboardButton(
            f"{NOTIFICATION_GROUP_LABELS[group]}: {state}", callback_data=f"{SETTINGS_PREFIX}notify:{group}"
        )])
    rows.append(_back_row())
    return InlineKeyboardMarkup(rows)
