"""Business-hours arithmetic for SLA clocks.

All instants are timezone-aware UTC. A calendar is the half-open daily
window [start_hour, end_hour) on the listed ISO weekdays (1=Monday), minus
holiday dates. Budgets are consumed only inside that window; a budget that
runs out exactly at close of business is due at the closing instant.
"""
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from app.rules.errors import PolicyValidationError

DEFAULT_BUSINESS_DAYS = (1, 2, 3, 4, 5)


# ─── Validation (authoring time) ───

def validate_window(start_hour: int, end_hour: int, business_days: Iterable[int]) -> None:
    for name, hour in (("business_hours_start", start_hour), ("business_hours_end", end_hour)):
        if not 0 <= hour <= 23:
            raise PolicyValidationError(name, f"must be between 0 and 23, got {hour}")
    if start_hour >= end_hour:
        raise PolicyValidationError(
            "business_hours_end",
            f"must be after business_hours_start ({start_hour} >= {end_hour})",
        )
    days = list(business_days)
    if not days:
        raise PolicyValidationError("business_days", "at least one business day is required")
    bad = [d for d in days if d not in range(1, 8)]
    if bad:
        raise PolicyValidationError("business_days", f"weekdays must be 1-7 (ISO), got {bad}")


def parse_holiday(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise PolicyValidationError("holidays", f"not an ISO date: {value!r}")


# ─── Calendar ───

@dataclass(frozen=True)
class BusinessCalendar:
    start_hour: int = 9
    end_hour: int = 17
    business_days: frozenset[int] = frozenset(DEFAULT_BUSINESS_DAYS)
    holidays: frozenset[date] = frozenset()

    def __post_init__(self):
        validate_window(self.start_hour, self.end_hour, self.business_days)

    @classmethod
    def from_values(
        cls,
        start_hour: int,
        end_hour: int,
        business_days: Iterable[int] | None,
        holidays: Iterable[date | str] | None,
    ) -> "BusinessCalendar":
        return cls(
            start_hour=start_hour,
            end_hour=end_hour,
            business_days=frozenset(int(d) for d in (business_days or DEFAULT_BUSINESS_DAYS)),
            holidays=frozenset(parse_holiday(h) for h in (holidays or [])),
        )

    def is_business_day(self, day: date) -> bool:
        return day.isoweekday() in self.business_days and day not in self.holidays

    def opening(self, day: date) -> datetime:
        return datetime.combine(day, time(self.start_hour), tzinfo=timezone.utc)

    def closing(self, day: date) -> datetime:
        return datetime.combine(day, time(self.end_hour), tzinfo=timezone.utc)


def as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


# ─── Walk ───

def next_business_instant(calendar: BusinessCalendar, instant: datetime) -> datetime:
    """First instant >= ``instant`` at which the business clock is running."""
    cursor = as_utc(instant)
    day = cursor.date()
    while True:
        if calendar.is_business_day(day):
            opening = calendar.opening(day)
            if cursor < opening:
                return opening
            if cursor < calendar.closing(day):
                return cursor
        day += timedelta(days=1)
        cursor = datetime.combine(day, time.min, tzinfo=timezone.utc)


def add_business_hours(calendar: BusinessCalendar, start: datetime, hours: float) -> datetime:
    """Consume ``hours`` of business time starting at ``start``.

    A zero budget yields the next business instant (``start`` itself when
    already inside business hours).
    """
    if hours < 0:
        raise ValueError(f"hours must be >= 0, got {hours}")
    remaining = timedelta(hours=hours)
    cursor = next_business_instant(calendar, start)
    while True:
        closing = calendar.closing(cursor.date())
        available = closing - cursor
        if remaining <= available:
            return cursor + remaining
        remaining -= available
        cursor = next_business_instant(calendar, closing)


def business_time_between(calendar: BusinessCalendar, start: datetime, end: datetime) -> timedelta:
    """Business time elapsed on the clock from ``start`` to ``end`` (zero when end <= start)."""
    start, end = as_utc(start), as_utc(end)
    total = timedelta(0)
    if end <= start:
        return total
    cursor = next_business_instant(calendar, start)
    while cursor < end:
        closing = calendar.closing(cursor.date())
        total += min(closing, end) - cursor
        cursor = next_business_instant(calendar, closing)
    return total
