"""Pydantic schemas for SLA definitions, deadlines and violations."""
import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.ticket import TicketPriority, TicketType


class SlaDefinitionIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    priority: TicketPriority
    ticket_type: TicketType
    response_time_hours: int = Field(ge=0)
    resolution_time_hours: int = Field(ge=0)
    business_hours_start: int = Field(default=9, ge=0, le=23)
    business_hours_end: int = Field(default=17, ge=0, le=23)
    business_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5], min_length=1)
    holidays: list[date] = Field(default_factory=list)
    is_active: bool = True


class SlaDefinitionUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    priority: TicketPriority | None = None
    ticket_type: TicketType | None = None
    response_time_hours: int | None = Field(default=None, ge=0)
    resolution_time_hours: int | None = Field(default=None, ge=0)
    business_hours_start: int | None = Field(default=None, ge=0, le=23)
    business_hours_end: int | None = Field(default=None, ge=0, le=23)
    business_days: list[int] | None = Field(default=None, min_length=1)
    holidays: list[date] | None = None
    is_active: bool | None = None


class SlaDefinitionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None
    priority: str
    ticket_type: str
    response_time_hours: int
    resolution_time_hours: int
    business_hours_start: int
    business_hours_end: int
    business_days: list[int]
    holidays: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SlaCalculateIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    priority: TicketPriority
    ticket_type: TicketType
    start_time: datetime | None = None


class SlaCalculateOut(BaseModel):
    response_due_at: datetime | None
    resolution_due_at: datetime | None


class SlaViolationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ticket_id: uuid.UUID
    sla_definition_id: uuid.UUID | None
    violation_type: str
    expected_time: datetime
    actual_time: datetime | None
    violation_minutes: int
    is_resolved: bool
    resolved_at: datetime | None
    sla_details: dict
    created_at: datetime


class SlaViolationListResponse(BaseModel):
    items: list[SlaViolationOut]
    total: int
    page: int
    page_size: int


class DeadlineStateOut(BaseModel):
    due_at: datetime
    met_at: datetime | None
    state: str  # on_track, at_risk, breached, met


class TicketSlaOut(BaseModel):
    ticket_id: uuid.UUID
    sla_definition_id: uuid.UUID | None
    response: DeadlineStateOut | None
    resolution: DeadlineStateOut | None
    open_violations: list[SlaViolationOut]


class SlaStatsOut(BaseModel):
    days: int
    total_tickets: int
    total_violations: int
    resolved_violations: int
    open_violations: int
    violations_by_type: dict[str, int]
