"""
Test the records and webhook endpoints
"""
import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, MagicMock, patch

from debtbot.core.config import settings
from debtbot.main import app


def record_doc(user_id, **fields):
    return {"_id": user_id, **fields}


def debt_doc(linked_debt_id, party_user_id, amount=10.0, status="active"):
    return {
        "id": f"{party_user_id}-{linked_debt_id}",
        "amount": amount,
        "currency": "RUB",
        "party_identifier": f"User_{party_user_id}",
        "party_user_id": party_user_id,
        "linked_debt_id": linked_debt_id,
        "status": status,
    }


@pytest.mark.asyncio
async def test_root():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.asyncio
async def test_get_debts(mock_db):
    mock_db.records.find_one.return_value = record_doc(
        "1", debts={"i_owe": [debt_doc("L1", "2")], "owe_me": []}, settings={"username": "@alice_1"},
    )

    with patch("debtbot.api.v1.endpoints.records.get_database", return_value=mock_db):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/records/1/debts")

    assert response.status_code == 200
    data = response.json()
    assert data["i_owe"][0]["linked_debt_id"] == "L1"
    assert data["owe_me"] == []


@pytest.mark.asyncio
async def test_unknown_record_is_404(mock_db):
    with patch("debtbot.api.v1.endpoints.records.get_database", return_value=mock_db):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/records/999/history")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_history_newest_first(mock_db):
    entry = {"debt_id": "d", "direction": "i_owe", "party_identifier": "Cafe", "currency": "RUB", "action": "deleted"}
    mock_db.records.find_one.return_value = record_doc("1", history=[
        {**entry, "resolved_date": "2026-01-01T10:00:00Z"},
        {**entry, "resolved_date": "2026-02-01T10:00:00Z", "action": "repaid"},
    ])

    with patch("debtbot.api.v1.endpoints.records.get_database", return_value=mock_db):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/records/1/history")

    assert response.status_code == 200
    assert [e["action"] for e in response.json()] == ["repaid", "deleted"]


@pytest.mark.asyncio
async def test_sync_issues_reports_missing_mirror(mock_db):
    records = {
        "1": record_doc("1", debts={"i_owe": [debt_doc("L1", "2")], "owe_me": []}),
        "2": record_doc("2", settings={"username": "@bob_22"}),
    }
    mock_db.records.find_one.side_effect = lambda query, *args: dict(records[query["_id"]])

    with patch("debtbot.api.v1.endpoints.records.get_database", return_value=mock_db):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/records/1/sync-issues")

    assert response.status_code == 200
    issues = response.json()
    assert len(issues) == 1
    assert issues[0]["kind"] == "missing_mirror"
    assert issues[0]["counterpart_id"] == "2"


@pytest.fixture
def telegram_app():
    application = MagicMock()
    application.bot = MagicMock()
    application.process_update = AsyncMock()
    app.state.telegram = application
    yield application
    app.state.telegram = None


@pytest.mark.asyncio
async def test_webhook_rejects_bad_secret(telegram_app, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/v1/telegram/webhook",
            json={"update_id": 1},
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )

    assert response.status_code == 403
    telegram_app.process_update.assert_not_awaited()


@pytest.mark.asyncio
async def test_webhook_passes_update_to_bot(telegram_app, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    with patch("debtbot.api.v1.endpoints.telegram.Update.de_json", return_value=MagicMock(update_id=1)) as de_json:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/telegram/webhook",
                json={"update_id": 1},
                headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
            )

    assert response.status_code == 200
    de_json.assert_called_once_with({"update_id": 1}, telegram_app.bot)
    telegram_app.process_update.assert_awaited_once()


@pytest.mark.asyncio
async def test_webhook_without_bot_is_unavailable(monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/telegram/webhook", json={"update_id": 1})

    assert response.status_code == 503
