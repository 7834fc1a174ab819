"""
Read-only audit of a user's linked debts against the counterpart records.

Nothing is repaired here; the engine self-heals on the next interaction that
touches a broken link. The audit only reports what it would find.
"""

import logging
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel

from debtbot.core.constants import MIRROR_AMOUNT_TOLERANCE
from debtbot.models.debt import MIRRORED_STATUSES, DebtDirection, DebtStatus
from debtbot.models.record import UserRecord

logger = logging.getLogger(__name__)


class SyncIssueKind(str, Enum):
    MISSING_MIRROR = "missing_mirror"
    AMOUNT_MISMATCH = "amount_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"
    STATUS_MISMATCH = "status_mismatch"
    PENDING_EDIT_MISMATCH = "pending_edit_mismatch"


class SyncIssue(BaseModel):
    kind: SyncIssueKind
    debt_id: str
    linked_debt_id: str
    direction: DebtDirection
    counterpart_id: str
    detail: str


class ReconciliationService:
    def __init__(self, store):
        self.store = store

    async def audit(self, user_id: str) -> List[SyncIssue]:
        record = await self.store.read(user_id)
        counterparts: Dict[str, UserRecord] = {}
        issues: List[SyncIssue] = []

        for direction, debt in record.debts.all():
            if debt.status not in MIRRORED_STATUSES or not debt.is_linked:
                continue
            other_id = debt.party_user_id
            if other_id not in counterparts:
                counterparts[other_id] = await self.store.read(other_id)
            mirror = counterparts[other_id].find_mirror(direction, debt.linked_debt_id)

            def issue(kind: SyncIssueKind, detail: str) -> SyncIssue:
                return SyncIssue(
                    kind=kind, debt_id=debt.id, linked_debt_id=debt.linked_debt_id,
                    direction=direction, counterpart_id=other_id, detail=detail,
                )

            if mirror is None:
                issues.append(issue(SyncIssueKind.MISSING_MIRROR, "The counterpart has no copy of this debt."))
                continue
            if abs(mirror.amount - debt.amount) > MIRROR_AMOUNT_TOLERANCE:
                issues.append(issue(
                    SyncIssueKind.AMOUNT_MISMATCH, f"Local amount {debt.amount:.2f}, counterpart {mirror.amount:.2f}."
                ))
            if mirror.currency != debt.currency:
                issues.append(issue(
                    SyncIssueKind.CURRENCY_MISMATCH, f"Local currency {debt.currency}, counterpart {mirror.currency}."
                ))
            # both copies move through the same states together
            if mirror.status is not debt.status:
                issues.append(issue(
                    SyncIssueKind.STATUS_MISMATCH,
                    f"Local status {debt.status.value}, counterpart {mirror.status.value}.",
                ))
            elif debt.status is DebtStatus.PENDING_EDIT_APPROVAL and mirror.pending_edit != debt.pending_edit:
                issues.append(issue(SyncIssueKind.PENDING_EDIT_MISMATCH, "The proposed changes differ."))

        if issues:
            logger.warning("User %s has %d sync issue(s)", user_id, len(issues))
        return issues

