"""Escalation rule policy as tagged unions.

Storage keeps every trigger/action field as a nullable column. These models
make "exactly one payload, consistent with the tag" structural: each variant
forbids the fields of the others, so a mismatch fails validation and names
the offending field.
"""
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from app.models.ticket import TicketPriority, TicketStatus
from app.rules.errors import PolicyValidationError


class _Variant(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ─── Triggers ───

class TimeBasedTrigger(_Variant):
    type: Literal["time_based"] = "time_based"
    hours: float = Field(gt=0)


class PriorityChangeTrigger(_Variant):
    type: Literal["priority_change"] = "priority_change"
    priority: TicketPriority


class StatusChangeTrigger(_Variant):
    type: Literal["status_change"] = "status_change"
    status: TicketStatus


class ManualTrigger(_Variant):
    type: Literal["manual"] = "manual"


Trigger = Annotated[
    Union[TimeBasedTrigger, PriorityChangeTrigger, StatusChangeTrigger, ManualTrigger],
    Field(discriminator="type"),
]


# ─── Actions ───

class NotifyManagerAction(_Variant):
    """Empty recipients means every active admin/manager of the organization."""

    type: Literal["notify_manager"] = "notify_manager"
    recipients: list[str] = Field(default_factory=list)


class NotifyStakeholdersAction(_Variant):
    type: Literal["notify_stakeholders"] = "notify_stakeholders"
    recipients: list[str] = Field(min_length=1)


class ReassignTicketAction(_Variant):
    type: Literal["reassign_ticket"] = "reassign_ticket"
    target_user_id: uuid.UUID | None = None
    target_role: str | None = None

    @model_validator(mode="after")
    def exactly_one_target(self):
        if (self.target_user_id is None) == (self.target_role is None):
            raise ValueError("exactly one of target_user_id or target_role is required")
        return self


class ChangePriorityAction(_Variant):
    type: Literal["change_priority"] = "change_priority"
    new_priority: TicketPriority


Action = Annotated[
    Union[NotifyManagerAction, NotifyStakeholdersAction, ReassignTicketAction, ChangePriorityAction],
    Field(discriminator="type"),
]


# ─── Flat column mapping ───

# (union, nested key) -> storage column
_COLUMN_FOR = {
    ("trigger", "type"): "trigger_type",
    ("trigger", "hours"): "trigger_hours",
    ("trigger", "priority"): "trigger_priority",
    ("trigger", "status"): "trigger_status",
    ("action", "type"): "action_type",
    ("action", "recipients"): "notification_recipients",
    ("action", "target_user_id"): "target_user_id",
    ("action", "target_role"): "target_role",
    ("action", "new_priority"): "new_priority",
}
FLAT_COLUMNS = tuple(_COLUMN_FOR.values())


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def nest_flat(data: dict) -> dict:
    """Turn the flat column shape into ``{"trigger": {...}, "action": {...}}``.

    Blank values (None, "", []) count as absent. Keys that are not policy
    columns pass through untouched.
    """
    out = {k: v for k, v in data.items() if k not in FLAT_COLUMNS}
    nested: dict[str, dict] = {"trigger": {}, "action": {}}
    for (union, key), column in _COLUMN_FOR.items():
        value = data.get(column)
        if not _is_blank(value):
            nested[union][key] = value
    out.setdefault("trigger", nested["trigger"])
    out.setdefault("action", nested["action"])
    return out


def merge_columns(current: dict, changes: dict) -> dict:
    """Overlay flat column changes on a stored rule.

    Changing ``trigger_type`` (or ``action_type``) clears the old variant's
    payload columns first, so a variant switch does not inherit stale fields.
    """
    merged = dict(current)
    for union in ("trigger", "action"):
        tag = f"{union}_type"
        if tag in changes and changes[tag] != current.get(tag):
            for (u, _), column in _COLUMN_FOR.items():
                if u == union:
                    merged[column] = None
    merged.update({k: v for k, v in changes.items() if k in FLAT_COLUMNS})
    return merged


def column_for_error(loc: tuple) -> str:
    """Map a pydantic error location to the storage column it concerns."""
    union = next((p for p in loc if p in ("trigger", "action")), None)
    if union is None:
        return str(loc[0]) if loc else "policy"
    leaf = loc[-1]
    if leaf == union or leaf in {
        "time_based", "priority_change", "status_change", "manual",
        "notify_manager", "notify_stakeholders", "reassign_ticket", "change_priority",
    }:
        # tag missing/invalid, or a variant-level validator failed
        if union == "action" and leaf == "reassign_ticket":
            return "target_user_id"
        return f"{union}_type"
    return _COLUMN_FOR.get((union, leaf), str(leaf))


class EscalationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger: Trigger
    action: Action

    @model_validator(mode="before")
    @classmethod
    def accept_flat(cls, data: Any):
        if isinstance(data, dict) and any(c in data for c in FLAT_COLUMNS):
            return nest_flat(data)
        return data

    def to_columns(self) -> dict:
        """Flat storage columns; fields of other variants are explicitly None."""
        columns: dict[str, Any] = {c: None for c in FLAT_COLUMNS}
        for union, model in (("trigger", self.trigger), ("action", self.action)):
            for key, value in model.model_dump(mode="json").items():
                columns[_COLUMN_FOR[(union, key)]] = value
        if columns["notification_recipients"] is None:
            columns["notification_recipients"] = []
        if columns["target_user_id"] is not None:
            columns["target_user_id"] = uuid.UUID(columns["target_user_id"])
        return columns


def parse_policy(data: dict) -> EscalationPolicy:
    """Validate a nested or flat payload, raising PolicyValidationError on the first bad field."""
    try:
        return EscalationPolicy.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        raise PolicyValidationError(column_for_error(tuple(first["loc"])), first["msg"]) from exc
