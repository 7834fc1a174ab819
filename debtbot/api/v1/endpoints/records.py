from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from debtbot.db.session import get_database
from debtbot.models.debt import Debt
from debtbot.models.history import HistoryEntry
from debtbot.models.record import UserRecord
from debtbot.repositories.record_repo import RecordRepository
from debtbot.services.reconciliation_service import ReconciliationService, SyncIssue

router = APIRouter()


class DebtsResponse(BaseModel):
    i_owe: List[Debt]
    owe_me: List[Debt]


async def _load_record(user_id: str) -> UserRecord:
    db = await get_database()
    record = await RecordRepository(db).read(user_id)
    if not (record.settings.username or record.history or record.debts.i_owe or record.debts.owe_me):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")
    return record


@router.get("/{user_id}/debts", response_model=DebtsResponse)
async def get_debts(user_id: str):
    """Current debts of a user, both directions"""
    record = await _load_record(user_id)
    return DebtsResponse(i_owe=record.debts.i_owe, owe_me=record.debts.owe_me)


@router.get("/{user_id}/history", response_model=List[HistoryEntry])
async def get_history(user_id: str, contact_user_id: Optional[str] = Query(default=None)):
    """Resolved debts, newest first"""
    record = await _load_record(user_id)
    entries = [e for e in record.history if contact_user_id is None or e.party_user_id == contact_user_id]
    return sorted(entries, key=lambda e: e.resolved_date, reverse=True)


@router.get("/{user_id}/sync-issues", response_model=List[SyncIssue])
async def get_sync_issues(user_id: str):
    """Audit linked debts against the counterpart records"""
    await _load_record(user_id)
    db = await get_database()
    return await ReconciliationService(RecordRepository(db)).audit(user_id)
