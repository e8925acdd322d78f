from __future__ import annotations

from enum import IntEnum, StrEnum


class RepeatType(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class Weekday(StrEnum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @property
    def index(self) -> int:
        """Offset from Monday, matching ``date.weekday()``."""
        return list(Weekday).index(self)


class EditScope(StrEnum):
    THIS_ONLY = "THIS_ONLY"
    AFTER_THIS = "AFTER_THIS"
    ALL = "ALL"


class DeleteScope(StrEnum):
    THIS_ONLY = "THIS_ONLY"
    THIS_AND_FUTURE = "THIS_AND_FUTURE"


class MutationStatus(StrEnum):
    APPLIED = "applied"
    NOOP = "noop"


class PriorityLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4
