"""Tests for the SMS outbox: retry bookkeeping, templates, Twilio transport."""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.core.config import settings
from app.core.tenancy import TenantContext
from app.services import sms as sms_service

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


def _notification(retry_count: int = 0) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(), organization_id=uuid.uuid4(), to_number="+15550100", from_number=None,
        message="hello", status="pending", retry_count=retry_count, next_retry_at=NOW,
        error_message=None, provider_response=None, provider_message_id=None, sent_at=None,
    )


def _config(**overrides) -> SimpleNamespace:
    values = dict(provider="twilio", enabled=True, account_sid="AC123", auth_token="secret", from_number="+15550199")
    values.update(overrides)
    return SimpleNamespace(**values)


# ─── Retry bookkeeping ────────────────────────────────────────────────────────

def test_record_failure_schedules_retry():
    notification = _notification()

    sms_service.record_failure(notification, "timeout", NOW)

    assert notification.retry_count == 1
    assert notification.status == "pending"
    assert notification.next_retry_at == NOW + timedelta(minutes=settings.SMS_RETRY_DELAY_MINUTES)
    assert notification.error_message == "timeout"


def test_record_failure_marks_failed_at_cap():
    notification = _notification(retry_count=settings.SMS_MAX_RETRIES)

    sms_service.record_failure(notification, "still down", NOW)

    assert notification.status == "failed"
    assert notification.next_retry_at is None
    assert notification.retry_count == settings.SMS_MAX_RETRIES


def test_retries_stop_after_max():
    notification = _notification()
    for _ in range(settings.SMS_MAX_RETRIES + 1):
        sms_service.record_failure(notification, "down", NOW)
    assert notification.status == "failed"
    assert notification.retry_count == settings.SMS_MAX_RETRIES


# ─── Delivery ─────────────────────────────────────────────────────────────────

@patch("app.services.sms.get_settings_row")
def test_deliver_success_marks_sent(mock_settings):
    mock_settings.return_value = _config()
    provider = MagicMock()
    provider.send.return_value = sms_service.SendResult(success=True, message_id="SM1", status="queued", response={})
    notification = _notification()

    assert sms_service.deliver(MagicMock(), notification, provider=provider, now=NOW) is True
    assert notification.status == "sent"
    assert notification.provider_message_id == "SM1"
    assert notification.sent_at == NOW
    assert notification.from_number == "+15550199"


@patch("app.services.sms.get_settings_row")
def test_deliver_failure_reschedules(mock_settings):
    mock_settings.return_value = _config()
    provider = MagicMock()
    provider.send.return_value = sms_service.SendResult(success=False, error="HTTP 500")
    notification = _notification()

    assert sms_service.deliver(MagicMock(), notification, provider=provider, now=NOW) is False
    assert notification.status == "pending"
    assert notification.retry_count == 1


@patch("app.services.sms.get_settings_row")
def test_deliver_disabled_fails_without_sending(mock_settings):
    mock_settings.return_value = _config(enabled=False)
    provider = MagicMock()
    notification = _notification()

    assert sms_service.deliver(MagicMock(), notification, provider=provider, now=NOW) is False
    assert notification.status == "failed"
    provider.send.assert_not_called()


# ─── Templates ────────────────────────────────────────────────────────────────

def test_render_template_fills_known_placeholders():
    out = sms_service.render_template("Ticket {{ticket_number}} is {{ status }}", {"ticket_number": "TKT-1", "status": "open"})
    assert out == "Ticket TKT-1 is open"


def test_render_template_leaves_unknown_placeholders():
    assert sms_service.render_template("Hi {{name}}", {}) == "Hi {{name}}"


# ─── Twilio transport ─────────────────────────────────────────────────────────

def test_twilio_send_posts_form_and_reads_sid():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(201, json={"sid": "SM42", "status": "queued"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    result = sms_service.TwilioProvider(_config(), client).send("+15550100", "hello")

    assert result.success is True
    assert result.message_id == "SM42"
    assert seen["url"].endswith("/Accounts/AC123/Messages.json")
    assert "Body=hello" in seen["body"]


def test_twilio_error_response_is_a_failed_result():
    client = httpx.Client(transport=httpx.MockTransport(
        lambda request: httpx.Response(400, json={"message": "Invalid 'To' number"})
    ))
    result = sms_service.TwilioProvider(_config(), client).send("bad", "hello")

    assert result.success is False
    assert result.error == "Invalid 'To' number"


def test_twilio_unconfigured_does_not_call_network():
    client = MagicMock()
    result = sms_service.TwilioProvider(_config(auth_token=None), client).send("+15550100", "hello")
    assert result.success is False
    client.request.assert_not_called()


def test_unknown_provider_rejected():
    with pytest.raises(ValueError):
        sms_service.provider_for(_config(provider="carrier-pigeon"))


# ─── Breach fan-out ───────────────────────────────────────────────────────────

def test_queue_sla_breach_never_raises():
    db = MagicMock()
    db.begin_nested.side_effect = RuntimeError("savepoint failed")
    ticket = SimpleNamespace(id=uuid.uuid4())

    assert sms_service.queue_sla_breach(db, TenantContext.system(uuid.uuid4()), ticket, MagicMock()) == 0
