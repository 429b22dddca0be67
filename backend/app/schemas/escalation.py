"""Pydantic schemas for escalation rules.

Rules are accepted either nested (``trigger``/``action`` tagged unions) or in
the flat column shape; the flat shape is validated column by column so the
error names the offending column.
"""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_core import PydanticCustomError

from app.rules.errors import PolicyValidationError
from app.rules.escalation_policy import (
    FLAT_COLUMNS,
    Action,
    EscalationPolicy,
    Trigger,
    nest_flat,
    parse_policy,
)


class EscalationRuleIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True
    trigger: Trigger
    action: Action

    @model_validator(mode="before")
    @classmethod
    def accept_flat(cls, data: Any):
        if isinstance(data, dict) and any(c in data for c in FLAT_COLUMNS):
            try:
                parse_policy({c: data.get(c) for c in FLAT_COLUMNS})
            except PolicyValidationError as exc:
                raise PydanticCustomError(
                    "policy_invalid",
                    "{field}: {message}",
                    {"field": exc.field, "message": exc.message},
                ) from exc
            return nest_flat(data)
        return data

    def policy(self) -> EscalationPolicy:
        return EscalationPolicy(trigger=self.trigger, action=self.action)


class EscalationRuleUpdate(BaseModel):
    """Partial update. Flat columns are merged onto the stored rule before validation."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None
    trigger: Trigger | None = None
    action: Action | None = None
    trigger_type: str | None = None
    trigger_hours: float | None = None
    trigger_priority: str | None = None
    trigger_status: str | None = None
    action_type: str | None = None
    target_user_id: uuid.UUID | None = None
    target_role: str | None = None
    new_priority: str | None = None
    notification_recipients: list[str] | None = None


class EscalationRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None
    is_active: bool
    trigger_type: str
    trigger_hours: float | None
    trigger_priority: str | None
    trigger_status: str | None
    action_type: str
    target_user_id: uuid.UUID | None
    target_role: str | None
    new_priority: str | None
    notification_recipients: list[str]
    created_at: datetime
    updated_at: datetime


class EscalateIn(BaseModel):
    rule_id: uuid.UUID | None = None


class EscalationFiringOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    rule_id: uuid.UUID
    ticket_id: uuid.UUID
    occurrence_key: str
    action_type: str
    outcome: str
    detail: str | None
    fired_at: datetime


class RuleTestIn(BaseModel):
    ticket_id: uuid.UUID


class RuleTestOut(BaseModel):
    rule_id: uuid.UUID
    ticket_id: uuid.UUID
    would_fire: bool
    occurrence_key: str | None
    already_fired: bool
    action_type: str
    reason: str


class EscalationStatsOut(BaseModel):
    days: int
    total_firings: int
    by_priority: dict[str, int]
    by_status: dict[str, int]
    by_action: dict[str, int]
    by_outcome: dict[str, int]
