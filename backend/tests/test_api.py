"""API tests: authorization, validation errors, and service error mapping.

The session and current user are dependency-overridden; service calls made
through ``run_sync`` are stubbed on the mock session.
"""
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import IntegrityError

from app.main import app
from app.core.deps import get_current_user
from app.db.session import get_session
from app.rules.errors import NotFoundError, PolicyValidationError
from app.services.sla import SlaConflictError

ORG_ID = uuid.uuid4()
NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeUser:
    """Minimal user stub for dependency overrides."""

    def __init__(self, role: str = "admin"):
        self.id = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")
        self.organization_id = ORG_ID
        self.email = f"{role}@example.com"
        self.first_name = "Test"
        self.last_name = role.title()
        self.role = role
        self.phone = None
        self.is_active = True
        self.deleted_at = None


def make_mock_session(run_sync_result=None, run_sync_error=None):
    """AsyncMock session whose run_sync returns (or raises) the given stub."""
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=MagicMock())
    mock_session.run_sync = AsyncMock(return_value=run_sync_result, side_effect=run_sync_error)
    return mock_session


@pytest.fixture
def as_user():
    """Install session and user overrides; returns a setter for the role and session."""
    def _install(role: str = "admin", session=None):
        session = session or make_mock_session()

        async def _session():
            yield session

        async def _user():
            return FakeUser(role=role)

        app.dependency_overrides[get_session] = _session
        app.dependency_overrides[get_current_user] = _user
        return session

    yield _install
    app.dependency_overrides.clear()


async def _request(method: str, url: str, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


def _rule_row(**overrides) -> SimpleNamespace:
    values = dict(
        id=uuid.uuid4(), name="Critical after 2h", description=None, is_active=True,
        trigger_type="time_based", trigger_hours=2.0, trigger_priority=None, trigger_status=None,
        action_type="notify_manager", target_user_id=None, target_role=None, new_priority=None,
        notification_recipients=[], created_at=NOW, updated_at=NOW,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# ─── Authentication ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["/api/v1/tickets", "/api/v1/sla/definitions", "/api/v1/escalation-rules"])
async def test_endpoints_require_auth(url):
    session = make_mock_session()

    async def _session():
        yield session

    app.dependency_overrides[get_session] = _session
    try:
        response = await _request("GET", url)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


# ─── Role checks ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_technician_cannot_read_audit_logs(as_user):
    as_user("technician")
    response = await _request("GET", "/api/v1/audit/logs")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_technician_cannot_create_sla_definition(as_user):
    session = as_user("technician")
    response = await _request("POST", "/api/v1/sla/definitions", json={
        "name": "High incidents", "priority": "high", "ticket_type": "incident",
        "response_time_hours": 1, "resolution_time_hours": 8,
    })
    assert response.status_code == 403
    session.run_sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_manager_cannot_clean_audit_logs(as_user):
    as_user("manager")
    response = await _request("DELETE", "/api/v1/audit/clean", params={"days_to_keep": 90})
    assert response.status_code == 403


# ─── Escalation rule validation ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_flat_rule_mismatch_names_offending_field(as_user):
    """time_based trigger with a trigger_priority set is rejected, naming trigger_priority."""
    session = as_user("manager")
    response = await _request("POST", "/api/v1/escalation-rules", json={
        "name": "Broken rule",
        "trigger_type": "time_based",
        "trigger_hours": 2,
        "trigger_priority": "high",
        "action_type": "notify_manager",
    })

    assert response.status_code == 422
    error = response.json()["detail"][0]
    assert error["type"] == "policy_invalid"
    assert error["ctx"]["field"] == "trigger_priority"
    session.run_sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_nested_rule_missing_payload_is_422(as_user):
    as_user("manager")
    response = await _request("POST", "/api/v1/escalation-rules", json={
        "name": "No target",
        "trigger": {"type": "manual"},
        "action": {"type": "change_priority"},
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_valid_flat_rule_is_created(as_user):
    row = _rule_row()
    session = as_user("manager", make_mock_session(run_sync_result=row))

    response = await _request("POST", "/api/v1/escalation-rules", json={
        "name": "Critical after 2h",
        "trigger_type": "time_based",
        "trigger_hours": 2,
        "action_type": "notify_manager",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["trigger_type"] == "time_based"
    assert body["action_type"] == "notify_manager"
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_rule_update_rejects_unknown_fields(as_user):
    as_user("manager")
    response = await _request("PATCH", f"/api/v1/escalation-rules/{uuid.uuid4()}", json={"priority": "high"})
    assert response.status_code == 422


# ─── Service error mapping ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_policy_error_from_service_is_422_with_field(as_user):
    as_user("admin", make_mock_session(
        run_sync_error=PolicyValidationError("business_hours_end", "must be after business_hours_start"),
    ))
    response = await _request("POST", "/api/v1/sla/definitions", json={
        "name": "Odd hours", "priority": "high", "ticket_type": "incident",
        "response_time_hours": 1, "resolution_time_hours": 8,
        "business_hours_start": 18, "business_hours_end": 8,
    })

    assert response.status_code == 422
    assert response.json()["detail"] == {
        "field": "business_hours_end",
        "message": "must be after business_hours_start",
    }


@pytest.mark.asyncio
async def test_duplicate_active_definition_is_409(as_user):
    as_user("admin", make_mock_session(run_sync_error=SlaConflictError("already exists")))
    response = await _request("POST", "/api/v1/sla/definitions", json={
        "name": "High incidents", "priority": "high", "ticket_type": "incident",
        "response_time_hours": 1, "resolution_time_hours": 8,
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unique_index_race_is_409(as_user):
    """A create that loses the race on the active-scope index is a conflict, not a 500."""
    as_user("admin", make_mock_session(run_sync_error=IntegrityError(
        "INSERT INTO sla_definitions", {}, Exception("uq_sla_definitions_active_scope"),
    )))
    response = await _request("POST", "/api/v1/sla/definitions", json={
        "name": "High incidents", "priority": "high", "ticket_type": "incident",
        "response_time_hours": 1, "resolution_time_hours": 8,
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_sla_definition_needs_a_business_day(as_user):
    as_user("admin")
    response = await _request("POST", "/api/v1/sla/definitions", json={
        "name": "No days", "priority": "low", "ticket_type": "request",
        "response_time_hours": 4, "resolution_time_hours": 24, "business_days": [],
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_missing_ticket_is_404(as_user):
    as_user("technician", make_mock_session(run_sync_error=NotFoundError("Ticket not found")))
    response = await _request("GET", f"/api/v1/tickets/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_bad_request_from_service_is_400(as_user):
    as_user("manager", make_mock_session(run_sync_error=ValueError("No unbilled billable time")))
    response = await _request("POST", "/api/v1/billing/invoices", json={
        "client_id": str(uuid.uuid4()), "period_start": "2025-03-01", "period_end": "2025-03-31",
    })
    assert response.status_code == 400
    assert "unbilled" in response.json()["detail"]


# ─── Deadline calculation ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_calculate_without_definition_returns_nulls(as_user):
    as_user("technician", make_mock_session(run_sync_result=None))
    response = await _request("POST", "/api/v1/sla/calculate", json={"priority": "low", "ticket_type": "change"})

    assert response.status_code == 200
    body = response.json()
    assert body["response_due_at"] is None
    assert body["resolution_due_at"] is None
