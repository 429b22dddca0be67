"""Pydantic schemas for ticket API endpoints."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.ticket import TicketPriority, TicketSource, TicketStatus, TicketType


# ─── Tickets ───

class TicketCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    client_id: uuid.UUID
    contract_id: uuid.UUID | None = None
    assigned_to: uuid.UUID | None = None
    subject: str = Field(min_length=1, max_length=500)
    description: str = ""
    priority: TicketPriority = TicketPriority.medium.value
    type: TicketType = TicketType.incident.value
    source: TicketSource = TicketSource.portal.value
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)


class TicketUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    subject: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    type: TicketType | None = None
    assigned_to: uuid.UUID | None = None
    contract_id: uuid.UUID | None = None
    tags: list[str] | None = None


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ticket_number: str
    client_id: uuid.UUID
    contract_id: uuid.UUID | None
    created_by: uuid.UUID | None
    assigned_to: uuid.UUID | None
    subject: str
    description: str
    priority: str
    status: str
    type: str
    source: str
    sla_definition_id: uuid.UUID | None
    response_due_at: datetime | None
    resolution_due_at: datetime | None
    due_date: datetime | None
    first_response_at: datetime | None
    resolved_at: datetime | None
    closed_at: datetime | None
    time_spent_minutes: int
    tags: list[str]
    created_at: datetime
    updated_at: datetime


class TicketListResponse(BaseModel):
    items: list[TicketOut]
    total: int
    page: int
    page_size: int


# ─── Comments ───

class CommentCreate(BaseModel):
    content: str = Field(min_length=1)
    is_internal: bool = False


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID | None
    content: str
    is_internal: bool
    created_at: datetime
