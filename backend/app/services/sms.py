"""SMS notifications: provider transport, templates, and the retry outbox.

Every message is persisted in ``sms_notifications`` before any network call.
A failed attempt schedules a retry (``retry_count + 1``,
``next_retry_at = now + delay``, status ``pending``) until SMS_MAX_RETRIES is
exhausted, after which the row is ``failed`` for good. Nothing here is
allowed to raise into a ticket mutation or the SLA detector.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tenancy import TenantContext
from app.models.sms import SmsNotification, SmsSettings, SmsStatus, SmsTemplate, UserSmsPreference
from app.models.ticket import Ticket
from app.models.user import User
from app.rules.errors import NotFoundError
from app.services import audit as audit_service

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_SLA_BREACH_TEMPLATE = (
    "SLA breach: ticket {{ticket_number}} ({{priority}}) missed its {{violation_type}} deadline "
    "due {{due_at}}. Subject: {{subject}}"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Provider ───

@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    status: str | None = None
    response: dict | None = None
    error: str | None = None


class TwilioProvider:
    """Twilio REST API over httpx (Messages resource, form-encoded, basic auth)."""

    def __init__(self, config: SmsSettings, client: httpx.Client | None = None):
        self.account_sid = config.account_sid
        self.auth_token = config.auth_token
        self.from_number = config.from_number
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _messages_url(self, message_id: str | None = None) -> str:
        base = f"{settings.TWILIO_API_BASE_URL.rstrip('/')}/Accounts/{self.account_sid}/Messages"
        return f"{base}/{message_id}.json" if message_id else f"{base}.json"

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        kwargs.setdefault("auth", (self.account_sid, self.auth_token))
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=settings.SMS_HTTP_TIMEOUT_SECONDS) as client:
            return client.request(method, url, **kwargs)

    def send(self, to_number: str, body: str) -> SendResult:
        if not self.configured:
            return SendResult(success=False, error="Twilio credentials not configured")
        try:
            resp = self._request(
                "POST", self._messages_url(), data={"To": to_number, "From": self.from_number, "Body": body}
            )
        except httpx.HTTPError as exc:
            logger.warning("Twilio send to %s failed: %s", to_number, exc)
            return SendResult(success=False, error=str(exc))

        payload = _json_body(resp)
        if resp.status_code >= 400:
            return SendResult(
                success=False,
                response=payload,
                error=payload.get("message") or f"HTTP {resp.status_code}",
            )
        return SendResult(success=True, message_id=payload.get("sid"), status=payload.get("status"), response=payload)

    def delivery_status(self, message_id: str) -> str | None:
        try:
            resp = self._request("GET", self._messages_url(message_id))
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Twilio status check for %s failed: %s", message_id, exc)
            return None
        return _json_body(resp).get("status")


def _json_body(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {"raw": resp.text}
    return body if isinstance(body, dict) else {"body": body}


PROVIDERS = {"twilio": TwilioProvider}


def provider_for(config: SmsSettings, client: httpx.Client | None = None):
    provider_cls = PROVIDERS.get(config.provider)
    if provider_cls is None:
        raise ValueError(f"Unsupported SMS provider: {config.provider}")
    return provider_cls(config, client)


# ─── Settings, templates, preferences ───

def get_settings_row(db: Session, tenant: TenantContext) -> SmsSettings:
    row = db.execute(
        select(SmsSettings).where(SmsSettings.organization_id == tenant.organization_id)
    ).scalars().first()
    if row is None:
        row = SmsSettings(organization_id=tenant.organization_id, provider="twilio", enabled=False, provider_config={})
        db.add(row)
        db.flush()
    return row


def update_settings(db: Session, tenant: TenantContext, changes: dict) -> SmsSettings:
    row = get_settings_row(db, tenant)
    before = audit_service.snapshot(row, ["provider", "from_number", "enabled"])
    for field in ("provider", "account_sid", "auth_token", "from_number", "enabled", "provider_config"):
        if field in changes:
            setattr(row, field, changes[field])
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "sms_settings", row.id,
        old_values=before,
        new_values=audit_service.snapshot(row, ["provider", "from_number", "enabled"]),
    )
    return row


def list_templates(db: Session, tenant: TenantContext, template_type: str | None = None) -> list[SmsTemplate]:
    stmt = select(SmsTemplate).where(
        SmsTemplate.organization_id == tenant.organization_id,
        SmsTemplate.active.is_(True),
    )
    if template_type:
        stmt = stmt.where(SmsTemplate.type == template_type)
    return list(db.execute(stmt.order_by(SmsTemplate.name)).scalars().all())


def save_template(db: Session, tenant: TenantContext, values: dict, template_id: uuid.UUID | None = None) -> SmsTemplate:
    if template_id is None:
        template = SmsTemplate(organization_id=tenant.organization_id)
        db.add(template)
        action = "CREATE"
    else:
        template = db.execute(
            select(SmsTemplate).where(
                SmsTemplate.id == template_id,
                SmsTemplate.organization_id == tenant.organization_id,
            )
        ).scalars().first()
        if template is None:
            raise NotFoundError(f"SMS template {template_id} not found")
        action = "UPDATE"
    for field in ("name", "type", "template", "active"):
        if field in values:
            setattr(template, field, values[field])
    template.variables = sorted(set(_PLACEHOLDER.findall(template.template or "")))
    db.flush()
    audit_service.log_crud_event(db, tenant, action, "sms_template", template.id, entity_name=template.name)
    return template


def render_template(template: str, variables: dict) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left as-is."""
    def _sub(match: re.Match) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)
    return _PLACEHOLDER.sub(_sub, template)


def user_preferences(db: Session, user_id: uuid.UUID) -> list[UserSmsPreference]:
    return list(db.execute(
        select(UserSmsPreference).where(UserSmsPreference.user_id == user_id)
    ).scalars().all())


def save_user_preference(db: Session, user_id: uuid.UUID, values: dict) -> UserSmsPreference:
    pref = db.execute(
        select(UserSmsPreference).where(
            UserSmsPreference.user_id == user_id,
            UserSmsPreference.phone_number == values["phone_number"],
        )
    ).scalars().first()
    if pref is None:
        pref = UserSmsPreference(user_id=user_id, phone_number=values["phone_number"])
        db.add(pref)
    for field in ("enabled", "notification_types"):
        if field in values:
            setattr(pref, field, values[field])
    db.flush()
    return pref


# ─── Outbox ───

def queue(
    db: Session,
    tenant: TenantContext,
    to_number: str,
    message: str,
    from_number: str | None = None,
    user_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    ticket_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> SmsNotification:
    notification = SmsNotification(
        organization_id=tenant.organization_id,
        user_id=user_id,
        client_id=client_id,
        ticket_id=ticket_id,
        to_number=to_number,
        from_number=from_number,
        message=message,
        status=SmsStatus.pending.value,
        retry_count=0,
        next_retry_at=now or _now(),
    )
    db.add(notification)
    db.flush()
    return notification


def record_failure(notification: SmsNotification, error: str | None, now: datetime | None = None) -> None:
    """Schedule the next retry, or mark failed once the cap is reached."""
    now = now or _now()
    notification.error_message = error
    if notification.retry_count < settings.SMS_MAX_RETRIES:
        notification.retry_count += 1
        notification.next_retry_at = now + timedelta(minutes=settings.SMS_RETRY_DELAY_MINUTES)
        notification.status = SmsStatus.pending.value
        logger.info(
            "SMS %s failed (%s); retry %d/%d at %s",
            notification.id, error, notification.retry_count, settings.SMS_MAX_RETRIES,
            notification.next_retry_at.isoformat(),
        )
    else:
        notification.status = SmsStatus.failed.value
        notification.next_retry_at = None
        logger.warning("SMS %s failed permanently after %d retries: %s", notification.id, notification.retry_count, error)


def deliver(
    db: Session,
    notification: SmsNotification,
    provider=None,
    now: datetime | None = None,
) -> bool:
    """One delivery attempt. Returns True when the provider accepted the message."""
    now = now or _now()
    config = get_settings_row(db, TenantContext.system(notification.organization_id))
    if not config.enabled:
        notification.status = SmsStatus.failed.value
        notification.next_retry_at = None
        notification.error_message = "SMS notifications are disabled for this organization"
        return False

    provider = provider or provider_for(config)
    result = provider.send(notification.to_number, notification.message)
    notification.from_number = notification.from_number or config.from_number
    notification.provider_response = result.response

    if result.success:
        notification.status = SmsStatus.sent.value
        notification.provider_message_id = result.message_id
        notification.sent_at = now
        notification.next_retry_at = None
        notification.error_message = None
        return True

    record_failure(notification, result.error, now)
    return False


def send_sms(
    db: Session,
    tenant: TenantContext,
    to_number: str,
    message: str,
    provider=None,
    **links,
) -> SmsNotification:
    notification = queue(db, tenant, to_number, message, **links)
    deliver(db, notification, provider=provider)
    db.flush()
    return notification


def send_template(
    db: Session,
    tenant: TenantContext,
    to_number: str,
    template_type: str,
    variables: dict,
    provider=None,
    **links,
) -> SmsNotification:
    templates = list_templates(db, tenant, template_type)
    if not templates:
        raise NotFoundError(f"No SMS template found for type: {template_type}")
    return send_sms(db, tenant, to_number, render_template(templates[0].template, variables), provider=provider, **links)


def process_due(db: Session, now: datetime | None = None, limit: int = 50, provider=None) -> dict:
    """Retry sweep: attempt every pending notification whose ``next_retry_at`` has passed."""
    now = now or _now()
    due = db.execute(
        select(SmsNotification)
        .where(
            SmsNotification.status == SmsStatus.pending.value,
            SmsNotification.next_retry_at <= now,
        )
        .order_by(SmsNotification.next_retry_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    ).scalars().all()

    stats = {"attempted": 0, "sent": 0, "rescheduled": 0, "failed": 0}
    for notification in due:
        stats["attempted"] += 1
        try:
            ok = deliver(db, notification, provider=provider, now=now)
        except ValueError as exc:
            # unsupported provider; retrying will not help
            notification.status = SmsStatus.failed.value
            notification.next_retry_at = None
            notification.error_message = str(exc)
            ok = False
        if ok:
            stats["sent"] += 1
        elif notification.status == SmsStatus.pending.value:
            stats["rescheduled"] += 1
        else:
            stats["failed"] += 1
    db.flush()
    return stats


def list_notifications(
    db: Session,
    tenant: TenantContext,
    status: str | None = None,
    ticket_id: uuid.UUID | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[SmsNotification], int]:
    conditions = [SmsNotification.organization_id == tenant.organization_id]
    if status:
        conditions.append(SmsNotification.status == status)
    if ticket_id:
        conditions.append(SmsNotification.ticket_id == ticket_id)
    total = db.execute(select(func.count(SmsNotification.id)).where(*conditions)).scalar() or 0
    rows = db.execute(
        select(SmsNotification)
        .where(*conditions)
        .order_by(SmsNotification.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()
    return list(rows), total


def refresh_delivery_status(db: Session, tenant: TenantContext, notification_id: uuid.UUID) -> SmsNotification:
    notification = db.execute(
        select(SmsNotification).where(
            SmsNotification.id == notification_id,
            SmsNotification.organization_id == tenant.organization_id,
        )
    ).scalars().first()
    if notification is None or not notification.provider_message_id:
        raise NotFoundError("Notification not found or has no provider message id")
    status = provider_for(get_settings_row(db, tenant)).delivery_status(notification.provider_message_id)
    if status == "delivered":
        notification.status = SmsStatus.delivered.value
        notification.delivered_at = _now()
    elif status in ("failed", "undelivered"):
        notification.status = SmsStatus.failed.value
    db.flush()
    return notification


# ─── SLA breach fan-out ───

def _breach_recipients(db: Session, tenant: TenantContext, ticket: Ticket) -> list[tuple[uuid.UUID, str]]:
    audience = User.role == "admin"
    if ticket.assigned_to is not None:
        audience = or_(audience, User.id == ticket.assigned_to)
    prefs = db.execute(
        select(UserSmsPreference)
        .join(User, User.id == UserSmsPreference.user_id)
        .where(
            User.organization_id == tenant.organization_id,
            User.is_active.is_(True),
            audience,
            UserSmsPreference.enabled.is_(True),
        )
    ).scalars().all()
    seen: set[str] = set()
    out = []
    for pref in prefs:
        if "sla_breached" in (pref.notification_types or []) and pref.phone_number not in seen:
            seen.add(pref.phone_number)
            out.append((pref.user_id, pref.phone_number))
    return out


def queue_sla_breach(db: Session, tenant: TenantContext, ticket: Ticket, violation, now: datetime | None = None) -> int:
    """Queue breach SMS for the assignee and org admins. Never raises."""
    try:
        with db.begin_nested():
            config = get_settings_row(db, tenant)
            if not config.enabled:
                return 0
            templates = list_templates(db, tenant, "sla_breached")
            body = render_template(
                templates[0].template if templates else DEFAULT_SLA_BREACH_TEMPLATE,
                {
                    "ticket_number": ticket.ticket_number,
                    "subject": ticket.subject,
                    "priority": ticket.priority,
                    "violation_type": violation.violation_type,
                    "due_at": violation.expected_time.strftime("%Y-%m-%d %H:%M UTC"),
                },
            )
            recipients = _breach_recipients(db, tenant, ticket)
            for user_id, phone in recipients:
                queue(db, tenant, phone, body, from_number=config.from_number,
                      user_id=user_id, ticket_id=ticket.id, now=now)
            return len(recipients)
    except Exception:
        logger.exception("Could not queue SLA breach SMS for ticket %s", ticket.id)
        return 0
