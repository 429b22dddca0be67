"""Pydantic schemas for client and contract endpoints."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.client import ClientStatus, ContractStatus, ContractType


# ─── Clients ───

class ClientCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, max_length=255)
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    status: ClientStatus = ClientStatus.active.value
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class ClientUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    status: ClientStatus | None = None
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class ClientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    company_name: str | None
    email: str | None
    phone: str | None
    status: str
    hourly_rate: Decimal | None
    notes: str | None
    created_at: datetime


# ─── Contracts ───

class ContractCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    client_id: uuid.UUID
    contract_number: str | None = None
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    type: ContractType
    status: ContractStatus = ContractStatus.draft.value
    start_date: date
    end_date: date
    monthly_value: Decimal = Field(default=Decimal("0"), ge=0)
    hourly_rate: Decimal = Field(default=Decimal("0"), ge=0)
    included_hours: int = Field(default=0, ge=0)


class ContractUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    type: ContractType | None = None
    status: ContractStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    monthly_value: Decimal | None = Field(default=None, ge=0)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    included_hours: int | None = Field(default=None, ge=0)


class ContractOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    contract_number: str
    name: str
    description: str | None
    type: str
    status: str
    start_date: date
    end_date: date
    monthly_value: Decimal
    hourly_rate: Decimal
    included_hours: int
    created_at: datetime
