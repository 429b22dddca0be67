import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class SmsStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    delivered = "delivered"
    failed = "failed"


class SmsTemplateType(str, enum.Enum):
    ticket_created = "ticket_created"
    ticket_updated = "ticket_updated"
    ticket_resolved = "ticket_resolved"
    sla_breached = "sla_breached"
    escalation = "escalation"
    custom = "custom"


class SmsSettings(Base, UUIDMixin, TimestampMixin, TenantMixin):
    __tablename__ = "sms_settings"
    __table_args__ = (UniqueConstraint("organization_id", name="uq_sms_settings_org"),)

    provider: Mapped[str] = mapped_column(String(20), nullable=False, default="twilio")
    account_sid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class SmsTemplate(Base, UUIDMixin, TimestampMixin, TenantMixin):
    __tablename__ = "sms_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    template: Mapped[str] = mapped_column(Text, nullable=False)  # {{var}} placeholders
    variables: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SmsNotification(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """One outbound message. Failures are retried via ``next_retry_at`` until the cap."""

    __tablename__ = "sms_notifications"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    ticket_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True, index=True
    )
    to_number: Mapped[str] = mapped_column(String(20), nullable=False)
    from_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SmsStatus.pending.value, index=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserSmsPreference(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "user_sms_preferences"
    __table_args__ = (UniqueConstraint("user_id", "phone_number", name="uq_user_sms_phone"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notification_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
