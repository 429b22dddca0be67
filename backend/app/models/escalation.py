import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class EscalationRule(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """Trigger -> action policy. Columns are flat and nullable; ``policy`` is the typed view."""

    __tablename__ = "escalation_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    trigger_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    trigger_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    target_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notification_recipients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def policy(self):
        from app.rules.escalation_policy import FLAT_COLUMNS, EscalationPolicy

        return EscalationPolicy.model_validate({c: getattr(self, c) for c in FLAT_COLUMNS})

    def apply_policy(self, policy) -> None:
        for column, value in policy.to_columns().items():
            setattr(self, column, value)


class EscalationFiring(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """Ledger of fired (rule, ticket, occurrence) triples; the unique key makes firing exactly-once."""

    __tablename__ = "escalation_firings"
    __table_args__ = (
        UniqueConstraint("rule_id", "ticket_id", "occurrence_key", name="uq_escalation_firing_occurrence"),
    )

    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("escalation_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    occurrence_key: Mapped[str] = mapped_column(String(200), nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)  # succeeded, failed
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
