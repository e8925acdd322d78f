from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, distinct, exists, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from task_recurrence.domain.entities import RecurrenceRule, TaskEntity
from task_recurrence.domain.enums import RepeatType
from task_recurrence.domain.errors import RuleNotFoundError
from task_recurrence.domain.recurrence import format_weekdays, parse_weekdays
from task_recurrence.services.ports import RuleStore, Stores, TaskStore

from .db import transaction
from .models import RepeatRuleModel, TaskModel

TASK_FIELDS = {"owner_id", "title", "note", "priority", "due_date", "is_completed", "rule_id"}


def _to_entity(model: TaskModel) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        owner_id=model.owner_id,
        title=model.title,
        note=model.note,
        priority=model.priority,
        due_date=model.due_date,
        is_completed=model.is_completed,
        rule_id=model.rule_id,
    )


def _to_rule(model: RepeatRuleModel) -> RecurrenceRule:
    return RecurrenceRule(
        id=model.id,
        type=RepeatType(model.type),
        interval=model.interval_value,
        weekdays=parse_weekdays(model.week_days),
        end_date=model.end_date,
        anchor_date=model.anchor_date,
    )


def _task_row(task: TaskEntity) -> dict:
    now = datetime.utcnow()
    return {
        "owner_id": task.owner_id,
        "title": task.title,
        "note": task.note,
        "priority": task.priority,
        "due_date": task.due_date,
        "is_completed": task.is_completed,
        "completed_at": now if task.is_completed else None,
        "rule_id": task.rule_id,
        "created_at": now,
        "updated_at": now,
    }


def _series_order():
    return (TaskModel.due_date.is_(None), TaskModel.due_date.asc(), TaskModel.id.asc())


class TaskRepository(TaskStore):
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_id(self, task_id: int) -> Optional[TaskEntity]:
        task = self._session.get(TaskModel, task_id)
        return _to_entity(task) if task else None

    def find_by_rule_id(self, rule_id: int) -> list[TaskEntity]:
        stmt = select(TaskModel).where(TaskModel.rule_id == rule_id).order_by(*_series_order())
        return [_to_entity(task) for task in self._session.scalars(stmt)]

    def find_series_base(self, rule_id: int) -> Optional[TaskEntity]:
        open_stmt = (
            select(TaskModel)
            .where(
                TaskModel.rule_id == rule_id,
                TaskModel.due_date.is_not(None),
                TaskModel.is_completed.is_(False),
            )
            .order_by(TaskModel.due_date.asc(), TaskModel.id.asc())
            .limit(1)
        )
        task = self._session.scalars(open_stmt).first()
        if task is None:
            latest_stmt = (
                select(TaskModel)
                .where(TaskModel.rule_id == rule_id)
                .order_by(TaskModel.due_date.is_(None), TaskModel.due_date.desc(), TaskModel.id.desc())
                .limit(1)
            )
            task = self._session.scalars(latest_stmt).first()
        return _to_entity(task) if task else None

    def find_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        stmt = (
            select(TaskModel)
            .where(TaskModel.rule_id == rule_id, TaskModel.due_date >= from_date)
            .order_by(*_series_order())
        )
        return [_to_entity(task) for task in self._session.scalars(stmt)]

    def find_incomplete_by_rule_id_from_date(self, rule_id: int, from_date: date) -> list[TaskEntity]:
        stmt = (
            select(TaskModel)
            .where(
                TaskModel.rule_id == rule_id,
                TaskModel.due_date >= from_date,
                TaskModel.is_completed.is_(False),
            )
            .order_by(*_series_order())
        )
        return [_to_entity(task) for task in self._session.scalars(stmt)]

    def distinct_due_dates_by_rule_id(self, rule_id: int) -> set[date]:
        stmt = select(distinct(TaskModel.due_date)).where(
            TaskModel.rule_id == rule_id,
            TaskModel.due_date.is_not(None),
        )
        return set(self._session.scalars(stmt))

    def insert(self, task: TaskEntity) -> TaskEntity:
        model = TaskModel(**_task_row(task))
        self._session.add(model)
        self._session.flush()
        self._session.refresh(model)
        return _to_entity(model)

    def insert_many(self, tasks: Iterable[TaskEntity]) -> int:
        rows = [_task_row(task) for task in tasks]
        if not rows:
            return 0
        connection = self._session.connection()
        dialect = connection.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(TaskModel.__table__).on_conflict_do_nothing(
                index_elements=["rule_id", "due_date"]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(TaskModel.__table__).on_conflict_do_nothing(
                index_elements=["rule_id", "due_date"]
            )
        else:
            self._session.add_all(TaskModel(**row) for row in rows)
            self._session.flush()
            return len(rows)
        # Row by row so the count reflects what the conflict clause skipped.
        inserted = 0
        for row in rows:
            inserted += connection.execute(stmt.values(**row)).rowcount
        return inserted

    def update_one(self, task_id: int, data: dict) -> Optional[TaskEntity]:
        unknown = set(data) - TASK_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        task = self._session.get(TaskModel, task_id)
        if not task:
            return None

        if "is_completed" in data and bool(data["is_completed"]) != task.is_completed:
            task.completed_at = datetime.utcnow() if data["is_completed"] else None
        for key, value in data.items():
            setattr(task, key, value)
        self._session.flush()
        return _to_entity(task)

    def delete_many(self, task_ids: Iterable[int]) -> int:
        ids = list(task_ids)
        if not ids:
            return 0
        result = self._session.execute(
            delete(TaskModel).where(TaskModel.id.in_(ids)),
            execution_options={"synchronize_session": "fetch"},
        )
        return result.rowcount


class RuleRepository(RuleStore):
    def __init__(self, session: Session) -> None:
        self._session = session

    def find_by_id(self, rule_id: int, for_update: bool = False) -> Optional[RecurrenceRule]:
        stmt = select(RepeatRuleModel).where(RepeatRuleModel.id == rule_id)
        if for_update:
            stmt = stmt.with_for_update()
        rule = self._session.scalars(stmt).first()
        return _to_rule(rule) if rule else None

    def insert(self, rule: RecurrenceRule) -> RecurrenceRule:
        model = RepeatRuleModel(
            type=rule.type.value,
            interval_value=rule.interval,
            week_days=format_weekdays(rule.weekdays) or None,
            end_date=rule.end_date,
            anchor_date=rule.anchor_date,
        )
        self._session.add(model)
        self._session.flush()
        return _to_rule(model)

    def update_end_date(self, rule_id: int, end_date: Optional[date]) -> None:
        model = self._get(rule_id)
        model.end_date = end_date
        self._session.flush()

    def update_definition(self, rule_id: int, rule: RecurrenceRule) -> RecurrenceRule:
        model = self._get(rule_id)
        model.type = rule.type.value
        model.interval_value = rule.interval
        model.week_days = format_weekdays(rule.weekdays) or None
        model.end_date = rule.end_date
        model.anchor_date = rule.anchor_date
        self._session.flush()
        return _to_rule(model)

    def delete_orphans(self) -> int:
        referenced = exists(select(TaskModel.id).where(TaskModel.rule_id == RepeatRuleModel.id))
        result = self._session.execute(
            delete(RepeatRuleModel).where(~referenced),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def find_active_rules(self, as_of: date) -> list[RecurrenceRule]:
        stmt = (
            select(RepeatRuleModel)
            .where(or_(RepeatRuleModel.end_date.is_(None), RepeatRuleModel.end_date >= as_of))
            .order_by(RepeatRuleModel.id.asc())
        )
        return [_to_rule(rule) for rule in self._session.scalars(stmt)]

    def find_expired_rules(self, as_of: date) -> list[RecurrenceRule]:
        stmt = (
            select(RepeatRuleModel)
            .where(RepeatRuleModel.end_date.is_not(None), RepeatRuleModel.end_date < as_of)
            .order_by(RepeatRuleModel.id.asc())
        )
        return [_to_rule(rule) for rule in self._session.scalars(stmt)]

    def _get(self, rule_id: int) -> RepeatRuleModel:
        model = self._session.get(RepeatRuleModel, rule_id)
        if model is None:
            raise RuleNotFoundError(rule_id)
        return model


class SqlUnitOfWork:
    """Yields both stores bound to one session inside one transaction."""

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory

    @contextmanager
    def __call__(self) -> Iterator[Stores]:
        with transaction(self._session_factory) as session:
            yield Stores(tasks=TaskRepository(session), rules=RuleRepository(session))
