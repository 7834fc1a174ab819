"""
UserRecord - the per-user durable snapshot.

A record is always read and written whole; there are no partial updates and
no transactions spanning two users' records. Missing keys are filled from the
defaults below on every read, so merging settings is idempotent.
"""

from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from debtbot.core.config import settings
from debtbot.core.constants import NotificationEvent
from debtbot.models.debt import Debt, DebtDirection
from debtbot.models.history import HistoryEntry


class NotificationSettings(BaseModel):
    on_new_pending: bool = True
    on_accepted: bool = True
    on_rejected: bool = True
    on_repaid: bool = True
    on_delete_request: bool = True
    on_delete_confirm: bool = True
    on_delete_reject: bool = True
    on_edit_request: bool = True
    on_edit_confirm: bool = True
    on_edit_reject: bool = True
    on_reminder: bool = True

    def is_enabled(self, event: NotificationEvent) -> bool:
        return bool(getattr(self, event.value))


class UserSettings(BaseModel):
    username: Optional[str] = None
    default_currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    show_net_balance: bool = False
    reminders_enabled: bool = False
    reminder_days_before: int = 1
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    language: str = "en"


class DebtLists(BaseModel):
    i_owe: List[Debt] = []
    owe_me: List[Debt] = []

    def for_direction(self, direction: DebtDirection) -> List[Debt]:
        return self.i_owe if direction is DebtDirection.I_OWE else self.owe_me

    def all(self) -> Iterator[Tuple[DebtDirection, Debt]]:
        for debt in self.i_owe:
            yield DebtDirection.I_OWE, debt
        for debt in self.owe_me:
            yield DebtDirection.OWE_ME, debt


class UserRecord(BaseModel):
    debts: DebtLists = Field(default_factory=DebtLists)
    history: List[HistoryEntry] = []
    settings: UserSettings = Field(default_factory=UserSettings)
    # counterpart user id -> last known display handle (a cache, never used for routing)
    known_users: Dict[str, str] = {}

    def display_name(self, user_id: str) -> str:
        return self.settings.username or f"User_{user_id}"

    def party_name(self, debt: Debt) -> str:
        if debt.party_user_id and debt.party_user_id in self.known_users:
            return self.known_users[debt.party_user_id]
        return debt.party_identifier or "Unknown"

    def find_debt(self, debt_id: str) -> Optional[Tuple[DebtDirection, Debt]]:
        for direction, debt in self.debts.all():
            if debt.id == debt_id:
                return direction, debt
        return None

    def find_linked(self, linked_debt_id: str, *statuses) -> Optional[Tuple[DebtDirection, Debt]]:
        """Locate a debt by link id, optionally restricted to the given statuses."""
        for direction, debt in self.debts.all():
            if debt.linked_debt_id != linked_debt_id:
                continue
            if statuses and debt.status not in statuses:
                continue
            return direction, debt
        return None

    def find_mirror(self, direction: DebtDirection, linked_debt_id: str) -> Optional[Debt]:
        """The counterpart copy lives in the opposite list."""
        for debt in self.debts.for_direction(direction.mirrored):
            if debt.linked_debt_id == linked_debt_id:
                return debt
        return None

    def remove_debt(self, direction: DebtDirection, debt: Debt) -> None:
        debts = self.debts.for_direction(direction)
        debts[:] = [d for d in debts if d.id != debt.id]
