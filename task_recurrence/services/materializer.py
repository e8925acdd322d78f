from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import replace
from datetime import date
from typing import Optional

from task_recurrence.domain.entities import RecurrenceRule, TaskEntity
from task_recurrence.domain.recurrence import occurrences_between

from .ports import Stores

logger = logging.getLogger(__name__)


def materialize(
    rule: RecurrenceRule,
    base_task: TaskEntity,
    already_materialized: Collection[date],
    horizon: date,
    not_before: Optional[date] = None,
) -> list[TaskEntity]:
    """New task instances needed to cover ``rule`` up to ``horizon``.

    Only computes the delta; inserting it is up to the caller. Dates already in
    ``already_materialized`` (and, when given, dates before ``not_before``) are
    left out. A base task without a due date yields nothing.
    """
    if base_task.due_date is None:
        return []

    new_tasks = []
    for due_date in occurrences_between(rule, base_task.due_date, horizon):
        if due_date in already_materialized:
            continue
        if not_before is not None and due_date < not_before:
            continue
        new_tasks.append(
            replace(
                base_task,
                id=None,
                due_date=due_date,
                is_completed=False,
                rule_id=rule.id,
            )
        )
    return new_tasks


class OccurrenceMaterializer:
    """Brings the stored series of a rule in line with the rule, up to a horizon."""

    def extend(
        self,
        stores: Stores,
        rule: RecurrenceRule,
        base_task: TaskEntity,
        horizon: date,
        not_before: Optional[date] = None,
    ) -> int:
        if rule.id is None:
            raise ValueError("Cannot materialize a rule that has not been stored")
        if base_task.due_date is None:
            logger.warning(
                "Base task %s has no due date; nothing to materialize for rule %s",
                base_task.id,
                rule.id,
            )
            return 0

        # Lock the rule row first so a concurrent writer re-reads a current date set.
        stores.rules.find_by_id(rule.id, for_update=True)
        existing = stores.tasks.distinct_due_dates_by_rule_id(rule.id)
        new_tasks = materialize(rule, base_task, existing, horizon, not_before=not_before)
        if not new_tasks:
            return 0

        created = stores.tasks.insert_many(new_tasks)
        logger.debug("Materialized %s occurrence(s) for rule %s up to %s", created, rule.id, horizon)
        return created
