import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin
from app.rules.business_hours import BusinessCalendar
from app.rules import sla_engine


class SlaDefinition(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """Response/resolution budgets for one (priority, ticket type) in an org."""

    __tablename__ = "sla_definitions"
    __table_args__ = (
        # one active definition per scope; soft-deleted rows do not collide
        Index(
            "uq_sla_definitions_active_scope",
            "organization_id", "priority", "ticket_type",
            unique=True,
            postgresql_where=text("is_active"),
        ),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    ticket_type: Mapped[str] = mapped_column(String(20), nullable=False)
    response_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    business_hours_start: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    business_hours_end: Mapped[int] = mapped_column(Integer, nullable=False, default=17)
    business_days: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: [1, 2, 3, 4, 5])
    holidays: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ISO date strings
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def calendar(self) -> BusinessCalendar:
        return BusinessCalendar.from_values(
            self.business_hours_start,
            self.business_hours_end,
            self.business_days,
            self.holidays,
        )


class SlaViolation(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """A missed deadline. At most one open row per (ticket, violation_type)."""

    __tablename__ = "sla_violations"
    __table_args__ = (
        Index(
            "uq_sla_violations_open",
            "ticket_id", "violation_type",
            unique=True,
            postgresql_where=text("NOT is_resolved"),
        ),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sla_definition_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True
    )
    violation_type: Mapped[str] = mapped_column(String(30), nullable=False)  # response_time, resolution_time, escalation
    expected_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def minutes_late(self, now: datetime | None = None) -> int:
        """Derived on read so it never goes stale."""
        return sla_engine.violation_minutes(self.expected_time, self.actual_time, now or datetime.now(timezone.utc))

    @property
    def violation_minutes(self) -> int:
        return self.minutes_late()
