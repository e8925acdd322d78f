from __future__ import annotations

from datetime import date

import pytest

from task_recurrence.domain.entities import RecurrenceRule
from task_recurrence.domain.enums import RepeatType, Weekday
from task_recurrence.domain.errors import RuleValidationError
from task_recurrence.domain.horizon import horizon_for
from task_recurrence.domain.recurrence import (
    add_months,
    build_rule,
    format_weekdays,
    occurrences_between,
    parse_weekdays,
    validate_rule,
)


def test_daily_steps_by_interval() -> None:
    rule = build_rule("DAILY", interval=3)

    dates = occurrences_between(rule, date(2024, 1, 1), date(2024, 1, 10))

    assert dates == [date(2024, 1, 4), date(2024, 1, 7), date(2024, 1, 10)]


def test_end_date_caps_occurrences() -> None:
    rule = build_rule("DAILY", end_date=date(2024, 1, 5))

    dates = occurrences_between(rule, date(2024, 1, 1), date(2024, 1, 29))

    assert dates == [date(2024, 1, d) for d in (2, 3, 4, 5)]


def test_monthly_clamps_to_month_end_in_leap_year() -> None:
    rule = build_rule("MONTHLY")

    dates = occurrences_between(rule, date(2024, 1, 31), date(2024, 12, 31))

    assert dates == [
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
        date(2024, 5, 31),
        date(2024, 6, 30),
        date(2024, 7, 31),
        date(2024, 8, 31),
        date(2024, 9, 30),
        date(2024, 10, 31),
        date(2024, 11, 30),
        date(2024, 12, 31),
    ]


def test_monthly_clamp_does_not_drift_after_short_month() -> None:
    rule = build_rule("MONTHLY")

    dates = occurrences_between(rule, date(2023, 1, 31), date(2023, 4, 30))

    assert dates == [date(2023, 2, 28), date(2023, 3, 31), date(2023, 4, 30)]


def test_monthly_one_year_from_first_of_month() -> None:
    rule = build_rule("MONTHLY")
    base = date(2024, 1, 1)

    dates = occurrences_between(rule, base, horizon_for(RepeatType.MONTHLY, base))

    expected = [date(2024, month, 1) for month in range(2, 13)] + [date(2025, 1, 1)]
    assert dates == expected
    assert len(set(dates)) == 12


def test_weekly_interval_skips_whole_weeks() -> None:
    rule = build_rule("WEEKLY", interval=2, weekdays="MON,WED")

    # 2024-01-01 is a Monday.
    dates = occurrences_between(rule, date(2024, 1, 1), date(2024, 1, 31))

    assert dates == [
        date(2024, 1, 3),
        date(2024, 1, 15),
        date(2024, 1, 17),
        date(2024, 1, 29),
        date(2024, 1, 31),
    ]


def test_weekly_never_emits_days_before_base_in_first_week() -> None:
    rule = build_rule("WEEKLY", weekdays=["mon"])

    dates = occurrences_between(rule, date(2024, 1, 3), date(2024, 1, 20))

    assert dates == [date(2024, 1, 8), date(2024, 1, 15)]


@pytest.mark.parametrize(
    "rule",
    [
        build_rule("DAILY", interval=2),
        build_rule("WEEKLY", weekdays="TUE,FRI,SUN"),
        build_rule("MONTHLY", interval=5),
        build_rule("DAILY", end_date=date(2024, 1, 12)),
    ],
)
def test_occurrences_stay_within_horizon(rule: RecurrenceRule) -> None:
    base = date(2024, 1, 1)
    horizon = horizon_for(rule.type, base)
    limit = min(horizon, rule.end_date or horizon)

    dates = occurrences_between(rule, base, horizon)

    assert dates
    assert all(base < d <= limit for d in dates)
    assert dates == sorted(set(dates))


def test_nothing_when_horizon_not_after_base() -> None:
    rule = build_rule("DAILY")

    assert occurrences_between(rule, date(2024, 1, 1), date(2024, 1, 1)) == []


def test_horizon_policy() -> None:
    assert horizon_for(RepeatType.DAILY, date(2024, 1, 1)) == date(2024, 1, 29)
    assert horizon_for(RepeatType.WEEKLY, date(2024, 1, 31)) == date(2024, 4, 30)
    assert horizon_for(RepeatType.MONTHLY, date(2024, 2, 29)) == date(2025, 2, 28)


def test_add_months_across_year_boundary() -> None:
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)


def test_parse_weekdays_accepts_names_and_abbreviations() -> None:
    assert parse_weekdays(" mon, Wednesday ,") == frozenset({Weekday.MON, Weekday.WED})
    assert format_weekdays({Weekday.SUN, Weekday.MON}) == "MON,SUN"


def test_parse_weekdays_rejects_unknown_day() -> None:
    with pytest.raises(RuleValidationError):
        parse_weekdays("MON,FUNDAY")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"repeat_type": "YEARLY"},
        {"repeat_type": "DAILY", "interval": 0},
        {"repeat_type": "WEEKLY"},
    ],
)
def test_build_rule_rejects_invalid_definitions(kwargs: dict) -> None:
    with pytest.raises(RuleValidationError):
        build_rule(**kwargs)


def test_validate_rule_rejects_negative_interval() -> None:
    with pytest.raises(RuleValidationError):
        validate_rule(RecurrenceRule(id=None, type=RepeatType.DAILY, interval=-1))
