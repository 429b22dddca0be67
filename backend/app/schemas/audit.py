import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: uuid.UUID | None
    actor_email: str | None
    action: str
    entity_type: str
    entity_id: uuid.UUID | None
    entity_name: str | None
    old_values: dict | None
    new_values: dict | None
    metadata: dict | None = Field(default=None, validation_alias="event_metadata")
    ip_address: str | None
    user_agent: str | None
    severity: str
    description: str | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogOut]
    total: int
    page: int
    page_size: int


class AuditSummaryOut(BaseModel):
    days: int
    total_events: int
    by_severity: dict[str, int]
    by_action: dict[str, int]
    login_events: int
    failed_logins: int
    delete_events: int
    active_users: int


class AuditCleanOut(BaseModel):
    deleted: int
    days_to_keep: int
