"""Escalation trigger matching.

Each trigger maps the current ticket state (plus the transition being
applied, if any) to an *occurrence key*. A rule fires at most once per
(rule, ticket, occurrence key); the ledger in ``escalation_firings``
enforces that. No key means the trigger does not apply right now.

time_based triggers measure ticket age from ``created_at`` and only apply
while the ticket is in a non-terminal status. Each threshold is one
occurrence for the lifetime of the ticket.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.models.ticket import TERMINAL_STATUSES
from app.rules.business_hours import as_utc
from app.rules.escalation_policy import (
    ManualTrigger,
    PriorityChangeTrigger,
    StatusChangeTrigger,
    TimeBasedTrigger,
)


@dataclass(frozen=True)
class TicketSnapshot:
    status: str
    priority: str
    created_at: datetime


@dataclass(frozen=True)
class Transition:
    field: str  # "status" | "priority"
    old: str | None
    new: str
    at: datetime


def occurrence_key(
    trigger,
    ticket: TicketSnapshot,
    now: datetime,
    transition: Transition | None = None,
    manual: bool = False,
) -> str | None:
    if isinstance(trigger, TimeBasedTrigger):
        if ticket.status in TERMINAL_STATUSES:
            return None
        if as_utc(now) - as_utc(ticket.created_at) > timedelta(hours=trigger.hours):
            return f"age:{trigger.hours:g}h"
        return None

    if isinstance(trigger, (StatusChangeTrigger, PriorityChangeTrigger)):
        field = "status" if isinstance(trigger, StatusChangeTrigger) else "priority"
        target = getattr(trigger, field).value
        if (
            transition is not None
            and transition.field == field
            and transition.new == target
            and transition.old != transition.new
        ):
            return f"{field}:{target}@{as_utc(transition.at).isoformat()}"
        return None

    if isinstance(trigger, ManualTrigger):
        return f"manual@{as_utc(now).isoformat()}" if manual else None

    raise TypeError(f"unknown trigger variant: {type(trigger).__name__}")
