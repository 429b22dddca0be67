import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    waiting_on_client = "waiting_on_client"
    waiting_on_third_party = "waiting_on_third_party"
    resolved = "resolved"
    closed = "closed"


TERMINAL_STATUSES = frozenset({TicketStatus.resolved.value, TicketStatus.closed.value})


class TicketPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TicketType(str, enum.Enum):
    incident = "incident"
    request = "request"
    problem = "problem"
    change = "change"


class TicketSource(str, enum.Enum):
    email = "email"
    phone = "phone"
    portal = "portal"
    chat = "chat"
    api = "api"


class Ticket(Base, UUIDMixin, TimestampMixin, TenantMixin):
    """Unit of work. Drives the SLA clock and escalation triggers."""

    __tablename__ = "tickets"

    ticket_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contract_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contracts.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketPriority.medium.value, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=TicketStatus.open.value, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketType.incident.value)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketSource.portal.value)

    # SLA clock; NULL when no definition matched at the last computation
    sla_definition_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sla_definitions.id", ondelete="SET NULL"), nullable=True
    )
    response_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    first_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # transition timestamps; part of escalation occurrence keys
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    priority_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    time_spent_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TicketComment(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "ticket_comments"

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )  # NULL for system comments
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
