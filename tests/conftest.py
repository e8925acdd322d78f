from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Iterable, Iterator, Optional

import pytest

from task_recurrence.domain.entities import RecurrenceRule, TaskEntity
from task_recurrence.domain.errors import RuleNotFoundError
from task_recurrence.services.ports import RuleStore, Stores, TaskStore
from task_recurrence.services.series_service import SeriesMutationManager


class DuplicateOccurrence(Exception):
    pass


def _series_key(task: TaskEntity) -> tuple:
    return (task.due_date is None, task.due_date or date.min, task.id or 0)


class FakeTaskStore(TaskStore):
    def __init__(self) -> None:
        self.tasks: dict[int, TaskEntity] = {}
        self._id = 1
        self.fail_on: set[str] = set()
        self.broken_rule_ids: set[int] = set()

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    def _conflicts(self, task: TaskEntity) -> bool:
        if task.rule_id is None or task.due_date is None:
            return False
        return any(
            other.id != task.id and other.rule_id == task.rule_id and other.due_date == task.due_date
            for other in self.tasks.values()
        )

    def _series(self, rule_id: int) -> list[TaskEntity]:
        return sorted((t for t in self.tasks.values() if t.rule_id == rule_id), key=_series_key)

    def find_by_id(self, task_id: int) -> Optional[TaskEntity]:
        return self.tasks.get(task_id)

    def find_by_rule_id(self, rule_id: int) -> list[TaskEntity]:
        return self._series(rule_id)

    def find_series_base(self, rule_id: int) -> Optional[TaskEntity]:
        if rule_id in self.broken_rule_ids:
            raise RuntimeError(f"rule {rule_id} is broken")
        series = self._series(rule_id)
        dated = [t for t in series if t.due_date is not None]
        open_tasks = [t for t in dated if not t.is_completed]
        if open_tasks:
            return open_tasks[0]
        if dated:
            return dated[-1]
        return series[0] if series else None

    def find_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        return [t for t in self._series(rule_id) if t.due_date is not None and t.due_date >= from_date]

    def find_incomplete_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        return [t for t in self.find_by_rule_id_from_date(rule_id, from_date) if not t.is_completed]

    def distinct_due_dates_by_rule_id(self, rule_id: int) -> set[date]:
        return {t.due_date for t in self._series(rule_id) if t.due_date is not None}

    def insert(self, task: TaskEntity) -> TaskEntity:
        stored = replace(task, id=self._id)
        if self._conflicts(stored):
            raise DuplicateOccurrence(stored)
        self.tasks[stored.id] = stored
        self._id += 1
        return stored

    def insert_many(self, tasks: Iterable[TaskEntity]) -> int:
        self._maybe_fail("insert_many")
        inserted = 0
        for task in tasks:
            stored = replace(task, id=self._id)
            if self._conflicts(stored):
                continue
            self.tasks[stored.id] = stored
            self._id += 1
            inserted += 1
        return inserted

    def update_one(self, task_id: int, data: dict) -> Optional[TaskEntity]:
        self._maybe_fail("update_one")
        task = self.tasks.get(task_id)
        if task is None:
            return None
        updated = replace(task, **data)
        if self._conflicts(updated):
            raise DuplicateOccurrence(updated)
        self.tasks[task_id] = updated
        return updated

    def delete_many(self, task_ids: Iterable[int]) -> int:
        self._maybe_fail("delete_many")
        deleted = 0
        for task_id in list(task_ids):
            if self.tasks.pop(task_id, None) is not None:
                deleted += 1
        return deleted


class FakeRuleStore(RuleStore):
    def __init__(self, tasks: FakeTaskStore) -> None:
        self.rules: dict[int, RecurrenceRule] = {}
        self.locked: list[int] = []
        self._tasks = tasks
        self._id = 1

    def find_by_id(self, rule_id: int, for_update: bool = False) -> Optional[RecurrenceRule]:
        if for_update:
            self.locked.append(rule_id)
        return self.rules.get(rule_id)

    def insert(self, rule: RecurrenceRule) -> RecurrenceRule:
        stored = replace(rule, id=self._id)
        self.rules[stored.id] = stored
        self._id += 1
        return stored

    def update_end_date(self, rule_id: int, end_date: Optional[date]) -> None:
        if rule_id not in self.rules:
            raise RuleNotFoundError(rule_id)
        self.rules[rule_id] = replace(self.rules[rule_id], end_date=end_date)

    def update_definition(self, rule_id: int, rule: RecurrenceRule) -> RecurrenceRule:
        if rule_id not in self.rules:
            raise RuleNotFoundError(rule_id)
        self.rules[rule_id] = replace(rule, id=rule_id)
        return self.rules[rule_id]

    def delete_orphans(self) -> int:
        referenced = {t.rule_id for t in self._tasks.tasks.values()}
        orphans = [rule_id for rule_id in self.rules if rule_id not in referenced]
        for rule_id in orphans:
            del self.rules[rule_id]
        return len(orphans)

    def find_active_rules(self, as_of: date) -> list[RecurrenceRule]:
        return [r for r in self.rules.values() if r.end_date is None or r.end_date >= as_of]

    def find_expired_rules(self, as_of: date) -> list[RecurrenceRule]:
        return [r for r in self.rules.values() if r.end_date is not None and r.end_date < as_of]


class FakeUnitOfWork:
    """In-memory unit of work that restores its stores when the block raises."""

    def __init__(self) -> None:
        self.tasks = FakeTaskStore()
        self.rules = FakeRuleStore(self.tasks)
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def __call__(self) -> Iterator[Stores]:
        snapshot = (dict(self.tasks.tasks), self.tasks._id, dict(self.rules.rules), self.rules._id)
        try:
            yield Stores(tasks=self.tasks, rules=self.rules)
        except Exception:
            self.tasks.tasks, self.tasks._id, self.rules.rules, self.rules._id = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    def series(self, rule_id: int) -> list[TaskEntity]:
        return self.tasks.find_by_rule_id(rule_id)

    def series_dates(self, rule_id: int) -> list[date]:
        return [t.due_date for t in self.series(rule_id)]

    def task_on(self, rule_id: int, due_date: date) -> TaskEntity:
        return next(t for t in self.series(rule_id) if t.due_date == due_date)


class FixedClock:
    def __init__(self, today: date) -> None:
        self._today = today

    def today(self) -> date:
        return self._today


@pytest.fixture
def uow() -> FakeUnitOfWork:
    return FakeUnitOfWork()


@pytest.fixture
def series_clock() -> FixedClock:
    return FixedClock(date(2024, 1, 1))


@pytest.fixture
def manager(uow: FakeUnitOfWork, series_clock: FixedClock) -> SeriesMutationManager:
    return SeriesMutationManager(uow, clock=series_clock)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(date(2024, 3, 1))
