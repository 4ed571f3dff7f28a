"""
Tests for the HTTP trigger endpoints.

The app is built around in-memory components; no lifespan, no database.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from app.main import create_app
from envelope_ledger.config import ApiSettings
from envelope_ledger.errors import CompensationFailure
from envelope_ledger.models.ledger import Income, Owner, RecurringObligation, SavingsGoal
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.services.storage import StorageError


API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}


class RaisingRunner:
    """Stands in for a scheduled-run component and raises on every call."""

    def __init__(self, error):
        self.error = error

    async def run(self, **kwargs):
        raise self.error

    async def apply_all_due(self, **kwargs):
        raise self.error


@pytest.fixture
async def client(components):
    app = create_app(components=components, api_settings=ApiSettings(api_key=API_KEY))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestAuth:
    """Health is open; triggers need the API key."""

    async def test_health(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_missing_key_is_rejected(self, client):
        response = await client.post("/process-recurring")
        assert response.status_code == 401

    async def test_wrong_key_is_rejected(self, client):
        response = await client.post("/process-recurring", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    async def test_no_key_configured_means_open(self, components):
        app = create_app(components=components, api_settings=ApiSettings(api_key=None))
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/process-recurring")
        assert response.status_code == 200


class TestProcessRecurring:

    async def test_returns_camel_case_batch(self, client, memory_storage):
        await memory_storage.save_recurring(RecurringObligation(
            owner=Owner(user_id=uuid4()),
            envelope_id=uuid4(),
            amount=Decimal("9.99"),
            description="Music",
            next_due_date=date.today(),
        ))

        response = await client.post("/process-recurring", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["date"] == date.today().isoformat()
        assert body["totalDue"] == 1
        assert body["processed"] == 1
        assert body["results"][0]["amount"] == 9.99
        assert body["results"][0]["status"] == "success"

    async def test_storage_outage_is_503(self, client, components):
        components.recurring = RaisingRunner(StorageError("database unreachable"))

        response = await client.post("/process-recurring", headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["error"] == "storage_error"


class TestProcessSavings:

    async def test_runs_for_month(self, client, memory_storage):
        owner = Owner(household_id=uuid4())
        await memory_storage.add_income(Income(
            owner=owner, period=PeriodKey.parse("2024-03"), amount=Decimal("150"), description="Salary"
        ))
        await memory_storage.adjust_available_pool(owner, PeriodKey.parse("2024-03"), Decimal("150"))
        await memory_storage.save_goal(SavingsGoal(
            owner=owner,
            envelope_id=uuid4(),
            auto_contribute=True,
            monthly_contribution=Decimal("100"),
        ))

        response = await client.post(
            "/process-savings-contributions",
            json={"householdId": str(owner.household_id), "monthKey": "2024-03"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["monthKey"] == "2024-03"
        assert body["processed"] == 1
        assert body["totalAllocated"] == 100.0

    async def test_body_is_optional(self, client):
        response = await client.post("/process-savings-contributions", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["results"] == []

    @pytest.mark.parametrize("payload", [
        {"monthKey": "2024-3"},
        {"monthKey": "March"},
        {"userId": str(uuid4()), "householdId": str(uuid4())},
        {"userId": "not-a-uuid"},
    ])
    async def test_invalid_body_is_422(self, client, payload):
        response = await client.post("/process-savings-contributions", json=payload, headers=HEADERS)
        assert response.status_code == 422

    async def test_compensation_failure_is_500(self, client, components):
        components.savings = RaisingRunner(CompensationFailure(
            "Contribution could not be reversed",
            StorageError("history write failed"),
            StorageError("allocation update failed"),
        ))

        response = await client.post("/process-savings-contributions", headers=HEADERS)

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "compensation_failure"
        assert "check-integrity" in body["action"]


class TestCheckIntegrity:

    async def _drift(self, storage, owner):
        period = PeriodKey.parse("2024-03")
        await storage.add_income(Income(owner=owner, period=period, amount=Decimal("2000"), description="Salary"))
        await storage.adjust_envelope_allocated(owner, uuid4(), period, Decimal("400"))
        await storage.adjust_envelope_allocated(owner, uuid4(), period, Decimal("1000"))
        await storage.set_available_pool(owner, period, Decimal("550"))

    async def test_check_reports_drift(self, client, memory_storage):
        owner = Owner(household_id=uuid4())
        await self._drift(memory_storage, owner)

        response = await client.post(
            "/check-integrity",
            json={"householdId": str(owner.household_id), "monthKey": "2024-03"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["isValid"] is False
        assert body["storedToBeBudgeted"] == 550.0
        assert body["calculatedToBeBudgeted"] == 600.0
        assert body["discrepancy"] == 50.0
        assert body["fixed"] is False

    async def test_fix(self, client, memory_storage):
        owner = Owner(user_id=uuid4())
        await self._drift(memory_storage, owner)

        response = await client.post(
            "/check-integrity",
            json={"userId": str(owner.user_id), "monthKey": "2024-03", "fix": True},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["fixed"] is True
        budget = await memory_storage.get_budget_period(owner, PeriodKey.parse("2024-03"))
        assert budget.available_pool == Decimal("600.00")

    @pytest.mark.parametrize("payload", [
        {"monthKey": "2024-03"},
        {"userId": str(uuid4())},
        {"userId": str(uuid4()), "monthKey": "2024-00"},
    ])
    async def test_invalid_body_is_422(self, client, payload):
        response = await client.post("/check-integrity", json=payload, headers=HEADERS)
        assert response.status_code == 422
