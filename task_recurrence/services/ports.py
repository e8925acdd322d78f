"""
Store contracts used by the recurrence services.

The engine never talks to the database directly; it only calls these
methods. ``infra.repository`` implements them on SQLAlchemy sessions and the
test suite implements them in memory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from task_recurrence.domain.entities import RecurrenceRule, TaskEntity


class TaskStore(ABC):
    @abstractmethod
    def find_by_id(self, task_id: int) -> Optional[TaskEntity]:
        pass

    @abstractmethod
    def find_by_rule_id(self, rule_id: int) -> list[TaskEntity]:
        """All tasks of a series ordered by due date, then id."""
        pass

    @abstractmethod
    def find_series_base(self, rule_id: int) -> Optional[TaskEntity]:
        """Task whose content seeds new occurrences.

        The earliest open dated task; when every task is completed, the latest
        dated one; a dateless task only when nothing else is left.
        """
        pass

    @abstractmethod
    def find_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        pass

    @abstractmethod
    def find_incomplete_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        pass

    @abstractmethod
    def distinct_due_dates_by_rule_id(self, rule_id: int) -> set[date]:
        pass

    @abstractmethod
    def insert(self, task: TaskEntity) -> TaskEntity:
        pass

    @abstractmethod
    def insert_many(self, tasks: Iterable[TaskEntity]) -> int:
        """Insert tasks, skipping any whose (rule_id, due_date) already exists."""
        pass

    @abstractmethod
    def update_one(self, task_id: int, data: dict) -> Optional[TaskEntity]:
        pass

    @abstractmethod
    def delete_many(self, task_ids: Iterable[int]) -> int:
        pass


class RuleStore(ABC):
    @abstractmethod
    def find_by_id(self, rule_id: int, for_update: bool = False) -> Optional[RecurrenceRule]:
        pass

    @abstractmethod
    def insert(self, rule: RecurrenceRule) -> RecurrenceRule:
        pass

    @abstractmethod
    def update_end_date(self, rule_id: int, end_date: Optional[date]) -> None:
        pass

    @abstractmethod
    def update_definition(self, rule_id: int, rule: RecurrenceRule) -> RecurrenceRule:
        pass

    @abstractmethod
    def delete_orphans(self) -> int:
        pass

    @abstractmethod
    def find_active_rules(self, as_of: date) -> list[RecurrenceRule]:
        """Rules with no end date or an end date on/after ``as_of``."""
        pass

    @abstractmethod
    def find_expired_rules(self, as_of: date) -> list[RecurrenceRule]:
        """Rules whose end date is before ``as_of``."""
        pass


@dataclass(frozen=True)
class Stores:
    tasks: TaskStore
    rules: RuleStore


UnitOfWork = Callable[[], AbstractContextManager[Stores]]


class Clock(Protocol):
    def today(self) -> date: ...
