from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from .enums import MutationStatus, PriorityLevel, RepeatType, Weekday


@dataclass(frozen=True)
class TaskEntity:
    id: int | None
    owner_id: int | None
    title: str
    note: str = ""
    priority: int = PriorityLevel.MEDIUM.value
    due_date: Optional[date] = None
    is_completed: bool = False
    rule_id: int | None = None


@dataclass(frozen=True)
class RecurrenceRule:
    id: int | None
    type: RepeatType
    interval: int = 1
    weekdays: frozenset[Weekday] = field(default_factory=frozenset)
    end_date: Optional[date] = None
    # Date the occurrence sequence is counted from; set when a series is stored.
    anchor_date: Optional[date] = None


@dataclass(frozen=True)
class Anchor:
    """Pivot of a series mutation, captured before anything is changed."""

    task_id: int
    original_due_date: date


@dataclass(frozen=True)
class MutationResult:
    status: MutationStatus
    task: TaskEntity | None = None
    rule_id: int | None = None
    created: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def applied(self) -> bool:
        return self.status is MutationStatus.APPLIED


@dataclass(frozen=True)
class BatchSummary:
    created: int = 0
    deleted: int = 0
    reclaimed: int = 0
    failed_rule_ids: tuple[int, ...] = ()
