from __future__ import annotations

from datetime import date, timedelta

from .enums import RepeatType
from .recurrence import add_months


def horizon_for(repeat_type: RepeatType, reference: date) -> date:
    """Furthest date to materialize: daily 4 weeks, weekly 3 months, monthly 1 year."""
    if repeat_type == RepeatType.DAILY:
        return reference + timedelta(weeks=4)
    if repeat_type == RepeatType.WEEKLY:
        return add_months(reference, 3)
    if repeat_type == RepeatType.MONTHLY:
        return add_months(reference, 12)
    raise ValueError(f"Unsupported repeat type: {repeat_type!r}")
