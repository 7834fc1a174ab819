"""
RecordRepository - whole-snapshot storage of per-user records.

Each user owns exactly one document keyed by their Telegram user id:

    {_id: "<user id>", debts: {i_owe: [...], owe_me: [...]}, history: [...],
     settings: {...}, known_users: {...}}

read() always returns a complete snapshot and write() always replaces it.
There is no partial update and no transaction across two users' documents.
"""

import logging
import re
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from debtbot.core.config import settings
from debtbot.models.record import UserRecord

logger = logging.getLogger(__name__)


class RecordRepository:
    """Repository for user records (the record store)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db[settings.RECORDS_COLLECTION]

    async def read(self, user_id: str) -> UserRecord:
        """Return the user's snapshot, or a default-shaped empty one if none exists."""
        doc = await self.collection.find_one({"_id": str(user_id)})
        if not doc:
            return UserRecord()
        doc.pop("_id", None)
        try:
            return UserRecord.model_validate(doc)
        except ValidationError as exc:
            logger.warning("Record for user %s is corrupted, starting from an empty one: %s", user_id, exc)
            return UserRecord()

    async def write(self, user_id: str, record: UserRecord) -> bool:
        doc = record.model_dump(mode="json")
        doc["_id"] = str(user_id)
        try:
            await self.collection.replace_one({"_id": str(user_id)}, doc, upsert=True)
        except PyMongoError as exc:
            logger.error("Failed to write record for user %s: %s", user_id, exc)
            return False
        return True

    async def find_user_id_by_username(
        self, handle: str, exclude_user_id: Optional[str] = None
    ) -> Optional[str]:
        """Case-insensitive exact match on the stored @handle."""
        query = {"settings.username": {"$regex": f"^{re.escape(handle)}$", "$options": "i"}}
        if exclude_user_id is not None:
            query["_id"] = {"$ne": str(exclude_user_id)}
        doc = await self.collection.find_one(query, {"_id": 1})
        return str(doc["_id"]) if doc else None

    async def list_user_ids(self) -> List[str]:
        docs = await self.collection.find({}, {"_id": 1}).to_list(None)
        return [str(doc["_id"]) for doc in docs]
