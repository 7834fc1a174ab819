"""Shared constants for the debt lifecycle."""

from enum import Enum

# Amounts closer than this are treated as equal (float arithmetic on 2-dp values).
AMOUNT_TOLERANCE = 0.001
# Mirrored debts whose amounts differ by more than this are considered desynced.
MIRROR_AMOUNT_TOLERANCE = 0.01

ACTION_PREFIX = "debt"


class NotificationEvent(str, Enum):
    """Named per-recipient notification preferences."""
    ON_NEW_PENDING = "on_new_pending"
    ON_ACCEPTED = "on_accepted"
    ON_REJECTED = "on_rejected"
    ON_REPAID = "on_repaid"
    ON_DELETE_REQUEST = "on_delete_request"
    ON_DELETE_CONFIRM = "on_delete_confirm"
    ON_DELETE_REJECT = "on_delete_reject"
    ON_EDIT_REQUEST = "on_edit_request"
    ON_EDIT_CONFIRM = "on_edit_confirm"
    ON_EDIT_REJECT = "on_edit_reject"
    ON_REMINDER = "on_reminder"


class ActionVerb(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CONFIRM_DELETE = "confirmdelete"
    REJECT_DELETE = "rejectdelete"
    ACCEPT_EDIT = "acceptedit"
    REJECT_EDIT = "rejectedit"
    SNOOZE = "snooze"


NOTIFY_FAILED_CAVEAT = "(Could not notify the other party.)"
