from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta
from typing import Optional

from .entities import RecurrenceRule
from .enums import RepeatType, Weekday
from .errors import RuleValidationError

_WEEKDAY_NAMES = {
    "MONDAY": Weekday.MON,
    "TUESDAY": Weekday.TUE,
    "WEDNESDAY": Weekday.WED,
    "THURSDAY": Weekday.THU,
    "FRIDAY": Weekday.FRI,
    "SATURDAY": Weekday.SAT,
    "SUNDAY": Weekday.SUN,
}


def parse_weekdays(value: str | Iterable[str] | None) -> frozenset[Weekday]:
    """Parse ``"MON,WED"`` style input (or an iterable of tokens).

    Tokens are case-insensitive and may be abbreviations or full day names.
    """
    if value is None:
        return frozenset()
    tokens = value.split(",") if isinstance(value, str) else value
    days = set()
    for token in tokens:
        name = str(token).strip().upper()
        if not name:
            continue
        if name in Weekday.__members__:
            days.add(Weekday[name])
        elif name in _WEEKDAY_NAMES:
            days.add(_WEEKDAY_NAMES[name])
        else:
            raise RuleValidationError(f"Unknown weekday: {token!r}")
    return frozenset(days)


def format_weekdays(days: Iterable[Weekday]) -> str:
    return ",".join(day.value for day in sorted(days, key=lambda day: day.index))


def build_rule(
    repeat_type: str,
    interval: int = 1,
    weekdays: str | Iterable[str] | None = None,
    end_date: Optional[date] = None,
    rule_id: int | None = None,
) -> RecurrenceRule:
    try:
        parsed_type = RepeatType(str(repeat_type).strip().upper())
    except ValueError as exc:
        raise RuleValidationError(f"Unknown repeat type: {repeat_type!r}") from exc
    rule = RecurrenceRule(
        id=rule_id,
        type=parsed_type,
        interval=interval,
        weekdays=parse_weekdays(weekdays),
        end_date=end_date,
    )
    validate_rule(rule)
    return rule


def validate_rule(rule: RecurrenceRule) -> None:
    if not isinstance(rule.type, RepeatType):
        raise RuleValidationError(f"Unknown repeat type: {rule.type!r}")
    if not isinstance(rule.interval, int) or rule.interval < 1:
        raise RuleValidationError(f"Interval must be a positive integer, got {rule.interval!r}")
    if rule.type == RepeatType.WEEKLY and not rule.weekdays:
        raise RuleValidationError("Weekly rules need at least one weekday")


def occurrences_between(rule: RecurrenceRule, base_date: date, horizon: date) -> list[date]:
    """Occurrence dates after ``base_date`` up to ``horizon`` and the rule's end date.

    The result is strictly increasing and never contains ``base_date`` itself.
    Monthly rules keep the base day of month; when a target month is too short
    the occurrence lands on that month's last day instead of being skipped.
    """
    limit = horizon if rule.end_date is None else min(horizon, rule.end_date)
    if limit <= base_date:
        return []

    if rule.type == RepeatType.DAILY:
        return _daily(base_date, rule.interval, limit)
    if rule.type == RepeatType.WEEKLY:
        return _weekly(base_date, rule.interval, rule.weekdays, limit)
    if rule.type == RepeatType.MONTHLY:
        return _monthly(base_date, rule.interval, limit)
    raise ValueError(f"Unsupported repeat type: {rule.type!r}")


def _daily(base: date, interval: int, limit: date) -> list[date]:
    dates = []
    current = base + timedelta(days=interval)
    while current <= limit:
        dates.append(current)
        current += timedelta(days=interval)
    return dates


def _weekly(base: date, interval: int, weekdays: frozenset[Weekday], limit: date) -> list[date]:
    offsets = sorted(day.index for day in weekdays)
    dates = []
    week_start = base - timedelta(days=base.weekday())
    while week_start <= limit:
        for offset in offsets:
            candidate = week_start + timedelta(days=offset)
            if base < candidate <= limit:
                dates.append(candidate)
        week_start += timedelta(weeks=interval)
    return dates


def _monthly(base: date, interval: int, limit: date) -> list[date]:
    dates = []
    step = 1
    current = add_months(base, interval)
    while current <= limit:
        dates.append(current)
        step += 1
        # Always offset from the base so a clamped month does not drag later ones.
        current = add_months(base, interval * step)
    return dates


def add_months(base: date, months: int) -> date:
    year = base.year + (base.month - 1 + months) // 12
    month = (base.month - 1 + months) % 12 + 1
    day = min(base.day, _days_in_month(year, month))
    return date(year, month, day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - timedelta(days=1)).day
