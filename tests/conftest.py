import pytest
from unittest.mock import AsyncMock, MagicMock

from debtbot.core.config import settings
from debtbot.models.record import UserRecord
from debtbot.services.debt_service import DebtSyncService
from debtbot.services.notifications import Delivery


class InMemoryRecordStore:
    """Record store with snapshot semantics: read and write both copy."""

    def __init__(self):
        self.records = {}
        self.writes = []
        self.failing_writes = set()

    async def read(self, user_id):
        record = self.records.get(str(user_id))
        return record.model_copy(deep=True) if record is not None else UserRecord()

    async def write(self, user_id, record):
        if str(user_id) in self.failing_writes:
            return False
        self.writes.append(str(user_id))
        self.records[str(user_id)] = record.model_copy(deep=True)
        return True

    async def find_user_id_by_username(self, handle, exclude_user_id=None):
        for user_id, record in self.records.items():
            if user_id == exclude_user_id:
                continue
            username = record.settings.username
            if username and username.lower() == handle.lower():
                return user_id
        return None

    async def list_user_ids(self):
        return list(self.records)

    def get(self, user_id) -> UserRecord:
        return self.records.get(str(user_id), UserRecord())

    def register(self, user_id, username=None) -> UserRecord:
        record = UserRecord()
        record.settings.username = username
        self.records[str(user_id)] = record
        return record


class RecordingDispatcher:
    def __init__(self):
        self.sent = []
        self.delivery = Delivery.DELIVERED

    async def send(self, recipient_id, text, controls=None):
        self.sent.append((recipient_id, text, controls))
        return self.delivery

    def to(self, recipient_id):
        return [(text, controls) for rid, text, controls in self.sent if rid == recipient_id]


@pytest.fixture
def mock_db():
    """Mock Motor database whose every collection is the same AsyncMock'd collection."""
    mock_db = MagicMock()
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.replace_one = AsyncMock()
    collection.create_index = AsyncMock()
    mock_db.__getitem__.return_value = collection
    mock_db.records = collection
    return mock_db


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(store, dispatcher):
    return DebtSyncService(store, dispatcher)


@pytest.fixture
def users(store):
    """Two registered users, alice ("1") and bob ("2")."""
    store.register("1", "@alice_1")
    store.register("2", "@bob_22")
    return "1", "2"


@pytest.fixture(autouse=True)
def currency_settings(monkeypatch):
    monkeypatch.setattr(settings, "SUPPORTED_CURRENCIES", ["RUB", "KZT", "USD", "EUR"])
    monkeypatch.setattr(settings, "DEFAULT_CURRENCY", "RUB")
