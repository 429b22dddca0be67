"""Pydantic schemas for time entries, billing rates and invoices."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import ActivityType, InvoiceStatus
from app.models.ticket import TicketType


# ─── Time entries ───

class TimeEntryCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    minutes_spent: int = Field(gt=0)
    description: str = ""
    is_billable: bool = True
    activity_type: ActivityType = ActivityType.work.value
    start_time: datetime | None = None
    end_time: datetime | None = None
    user_id: uuid.UUID | None = None


class TimeEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID
    description: str
    minutes_spent: int
    is_billable: bool
    activity_type: str
    start_time: datetime
    end_time: datetime | None
    invoice_id: uuid.UUID | None


# ─── Rates ───

class BillingRateCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    rate_name: str = Field(min_length=1, max_length=100)
    hourly_rate: Decimal = Field(ge=0)
    service_type: TicketType
    user_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None
    effective_date: date
    expiry_date: date | None = None
    description: str | None = None


class BillingRateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    rate_name: str
    hourly_rate: Decimal
    service_type: str
    user_id: uuid.UUID | None
    client_id: uuid.UUID | None
    is_active: bool
    effective_date: date
    expiry_date: date | None


# ─── Invoices ───

class InvoiceGenerateIn(BaseModel):
    client_id: uuid.UUID
    period_start: date
    period_end: date
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    due_days: int = Field(default=30, ge=0)
    notes: str | None = None


class InvoiceStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: InvoiceStatus
    amount_paid: Decimal | None = Field(default=None, ge=0)


class InvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    time_entry_id: uuid.UUID | None
    ticket_id: uuid.UUID | None
    description: str
    quantity: Decimal
    unit_rate: Decimal
    amount: Decimal
    item_type: str


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    invoice_number: str
    status: str
    period_start: date
    period_end: date
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    invoice_date: date
    due_date: date
    paid_date: date | None
    notes: str | None
    items: list[InvoiceItemOut] = []
