"""Tests for the audit log helper."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.core.tenancy import TenantContext
from app.models.audit import AuditLog
from app.services import audit as audit_service


@pytest.mark.parametrize(
    "action, entity_type, expected",
    [
        ("DELETE", "sla_definition", "high"),
        ("DELETE", "ticket", "high"),
        ("UPDATE", "ticket", "medium"),
        ("UPDATE", "contract", "medium"),
        ("UPDATE", "user", "medium"),
        ("UPDATE", "escalation_rule", "low"),
        ("CREATE", "ticket", "low"),
    ],
)
def test_crud_severity(action, entity_type, expected):
    assert audit_service.crud_severity(action, entity_type) == expected


def test_snapshot_is_json_safe():
    obj = SimpleNamespace(
        id=uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e"),
        due=datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc),
        rate=Decimal("95.50"),
    )
    snap = audit_service.snapshot(obj, ["id", "due", "rate"])
    assert snap == {
        "id": "f96955d0-752f-4e0c-b1dc-d26d8dd1460e",
        "due": "2025-01-06 09:30:00+00:00",
        "rate": "95.50",
    }


def test_log_event_copies_actor_and_session_from_tenant():
    tenant = TenantContext(
        organization_id=uuid.uuid4(),
        actor_id=uuid.uuid4(),
        actor_email="manager@msp.example.com",
        actor_role="manager",
        ip_address="10.0.0.7",
        user_agent="pytest",
        session_id="req-123",
    )
    db = MagicMock()
    entity_id = uuid.uuid4()

    entry = audit_service.log_event(
        db, tenant, "UPDATE", "ticket", entity_id,
        old_values={"status": "open"}, new_values={"status": "resolved"},
        metadata={"source": "api"}, severity="medium",
    )

    assert isinstance(entry, AuditLog)
    assert entry.organization_id == tenant.organization_id
    assert entry.actor_email == "manager@msp.example.com"
    assert entry.ip_address == "10.0.0.7"
    assert entry.session_id == "req-123"
    assert entry.entity_id == entity_id
    assert entry.event_metadata == {"source": "api"}
    db.add.assert_called_once_with(entry)
    db.flush.assert_called_once()


def test_security_events_are_high_severity():
    entry = audit_service.log_security_event(
        MagicMock(), TenantContext.system(uuid.uuid4()), "LOGIN_FAILED", "Failed login for a@b.c",
    )
    assert entry.severity == "high"
    assert entry.entity_type == "security"


def test_crud_event_default_description():
    entry = audit_service.log_crud_event(
        MagicMock(), TenantContext.system(uuid.uuid4()), "DELETE", "sla_definition", uuid.uuid4(),
        entity_name="Critical incidents",
    )
    assert entry.severity == "high"
    assert entry.description == "DELETE sla_definition Critical incidents"


def test_clean_old_logs_rejects_zero_days():
    with pytest.raises(ValueError):
        audit_service.clean_old_logs(MagicMock(), 0)


def test_clean_old_logs_returns_rowcount():
    db = MagicMock()
    db.execute.return_value.rowcount = 7
    assert audit_service.clean_old_logs(db, 90, organization_id=uuid.uuid4()) == 7
