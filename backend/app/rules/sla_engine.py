"""SLA deadline computation and deadline-state classification.

Pure functions only; persistence lives in app.services.sla.
"""
import enum
from dataclasses import dataclass
from datetime import datetime

from app.rules.business_hours import BusinessCalendar, add_business_hours, as_utc, business_time_between


class SlaState(str, enum.Enum):
    on_track = "on_track"
    at_risk = "at_risk"
    breached = "breached"
    met = "met"


class ViolationType(str, enum.Enum):
    response_time = "response_time"
    resolution_time = "resolution_time"
    escalation = "escalation"


@dataclass(frozen=True)
class SlaDeadlines:
    response_due_at: datetime
    resolution_due_at: datetime


def compute_deadlines(
    calendar: BusinessCalendar,
    start: datetime,
    response_hours: float,
    resolution_hours: float,
) -> SlaDeadlines:
    return SlaDeadlines(
        response_due_at=add_business_hours(calendar, start, response_hours),
        resolution_due_at=add_business_hours(calendar, start, resolution_hours),
    )


def is_missed(due_at: datetime | None, met_at: datetime | None, now: datetime) -> bool:
    """Deadline passed with nothing recorded against it."""
    return due_at is not None and met_at is None and as_utc(now) > as_utc(due_at)


def is_met_late(due_at: datetime | None, met_at: datetime | None) -> bool:
    return due_at is not None and met_at is not None and as_utc(met_at) > as_utc(due_at)


def deadline_state(
    calendar: BusinessCalendar,
    due_at: datetime,
    met_at: datetime | None,
    started_at: datetime,
    now: datetime,
    at_risk_percent: float,
) -> SlaState:
    """Classify one deadline.

    at_risk means less than ``at_risk_percent`` of the business-time budget
    between start and due remains on the calendar's clock. Nights, weekends
    and holidays neither consume nor count toward the remainder.
    """
    due_at = as_utc(due_at)
    if met_at is not None:
        return SlaState.met if as_utc(met_at) <= due_at else SlaState.breached
    now = as_utc(now)
    if now > due_at:
        return SlaState.breached
    total = business_time_between(calendar, started_at, due_at).total_seconds()
    remaining = business_time_between(calendar, now, due_at).total_seconds()
    if total > 0 and remaining < total * at_risk_percent / 100:
        return SlaState.at_risk
    return SlaState.on_track


def violation_minutes(expected: datetime, actual: datetime | None, now: datetime) -> int:
    """Whole minutes past ``expected``; open violations count up to ``now``."""
    end = as_utc(actual) if actual is not None else as_utc(now)
    return max(0, int((end - as_utc(expected)).total_seconds() // 60))
