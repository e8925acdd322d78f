"""
Edit and delete protocols for recurring task series.

Every public method runs start to finish inside one unit of work, so a
protocol either lands completely or not at all. The anchor of a protocol
(task id plus its due date before any change) is captured up front and passed
along explicitly; later steps never re-read it from the store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import date, timedelta
from typing import Optional

from task_recurrence.domain.entities import Anchor, MutationResult, RecurrenceRule, TaskEntity
from task_recurrence.domain.enums import DeleteScope, EditScope, MutationStatus
from task_recurrence.domain.errors import (
    InvalidAnchorError,
    RuleNotFoundError,
    RuleValidationError,
    TaskNotFoundError,
)
from task_recurrence.domain.horizon import horizon_for
from task_recurrence.domain.recurrence import occurrences_between, validate_rule

from .materializer import OccurrenceMaterializer
from .ports import Clock, Stores, UnitOfWork

logger = logging.getLogger(__name__)

CONTENT_FIELDS = frozenset({"title", "note", "priority", "due_date", "is_completed"})
CREATE_FIELDS = CONTENT_FIELDS | {"owner_id"}
SYNC_FIELDS = ("title", "note", "priority")


def _clean_fields(data: dict | None, allowed: frozenset[str]) -> dict:
    cleaned = dict(data or {})
    unknown = set(cleaned) - allowed
    if unknown:
        raise ValueError(f"Unsupported task fields: {sorted(unknown)}")
    if "title" in cleaned and cleaned["title"] is None:
        del cleaned["title"]
    return cleaned


def _series_key(task: TaskEntity) -> tuple:
    return (task.due_date is None, task.due_date or date.min, task.id or 0)


class SeriesMutationManager:
    def __init__(
        self,
        unit_of_work: UnitOfWork,
        materializer: OccurrenceMaterializer | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._uow = unit_of_work
        self._materializer = materializer or OccurrenceMaterializer()
        self._clock = clock

    def _today(self) -> date:
        return self._clock.today() if self._clock is not None else date.today()

    # -- creation -----------------------------------------------------------

    def create_with_rule(self, task_fields: dict, rule: RecurrenceRule) -> MutationResult:
        """Insert a base task and start a series from it.

        A base task without a due date is stored as a plain task and the result
        is a NOOP: there is nothing to repeat from.
        """
        validate_rule(rule)
        fields = _clean_fields(task_fields, CREATE_FIELDS)
        if not fields.get("title"):
            raise ValueError("A task needs a title")

        with self._uow() as stores:
            owner_id = fields.pop("owner_id", None)
            base = stores.tasks.insert(TaskEntity(id=None, owner_id=owner_id, **fields))
            if base.due_date is None:
                logger.warning("Task %s has no due date; created without a repeat rule", base.id)
                return MutationResult(MutationStatus.NOOP, task=base)
            return self._start_series(stores, base, rule)

    def attach_rule(self, task_id: int, rule: RecurrenceRule) -> MutationResult:
        """Make an existing task the first occurrence of a new series."""
        validate_rule(rule)
        with self._uow() as stores:
            task = self._get_task(stores, task_id)
            if task.rule_id is not None:
                return self._split_this_only(stores, task, self._anchor(task), {}, rule)
            if task.due_date is None:
                logger.warning("Task %s has no due date; repeat rule not attached", task.id)
                return MutationResult(MutationStatus.NOOP, task=task)
            return self._start_series(stores, task, rule)

    # -- edits --------------------------------------------------------------

    def edit(
        self,
        task_id: int,
        scope: EditScope | str,
        changes: dict | None = None,
        rule: RecurrenceRule | None = None,
    ) -> MutationResult:
        scope = EditScope(scope)
        if rule is not None:
            validate_rule(rule)
        changes = _clean_fields(changes, CONTENT_FIELDS)

        with self._uow() as stores:
            task = self._get_task(stores, task_id)
            if task.rule_id is None:
                return self._edit_plain(stores, task, changes, rule)

            if scope == EditScope.THIS_ONLY:
                if rule is None:
                    return self._edit_occurrence(stores, task, changes)
                return self._split_this_only(stores, task, self._anchor(task), changes, rule)
            if scope == EditScope.AFTER_THIS:
                return self._split_after_this(stores, task, self._anchor(task), changes, rule)
            return self._edit_all(stores, task, changes, rule)

    def _edit_plain(
        self,
        stores: Stores,
        task: TaskEntity,
        changes: dict,
        rule: RecurrenceRule | None,
    ) -> MutationResult:
        edited = self._apply(stores, task.id, changes)
        touched = 1 if changes else 0
        if rule is None:
            return MutationResult(MutationStatus.APPLIED, task=edited, updated=touched)
        if edited.due_date is None:
            logger.warning("Task %s has no due date; repeat rule not attached", edited.id)
            return MutationResult(MutationStatus.NOOP, task=edited, updated=touched)
        return replace(self._start_series(stores, edited, rule), updated=touched)

    def _edit_occurrence(self, stores: Stores, task: TaskEntity, changes: dict) -> MutationResult:
        data = dict(changes)
        if "due_date" in data and data["due_date"] is None:
            # A dateless task cannot stay part of a series.
            data["rule_id"] = None
        edited = self._apply(stores, task.id, data)
        return MutationResult(
            MutationStatus.APPLIED,
            task=edited,
            rule_id=edited.rule_id,
            updated=1 if data else 0,
        )

    def _split_this_only(
        self,
        stores: Stores,
        task: TaskEntity,
        anchor: Anchor,
        changes: dict,
        rule: RecurrenceRule,
    ) -> MutationResult:
        old_rule = self._get_rule(stores, task.rule_id)

        stores.tasks.update_one(anchor.task_id, {"rule_id": None})
        self._terminate(stores, old_rule.id, anchor.original_due_date)
        leftovers = stores.tasks.find_incomplete_by_rule_id_from_date(
            old_rule.id, anchor.original_due_date
        )
        deleted = stores.tasks.delete_many(t.id for t in leftovers)
        edited = self._apply(stores, anchor.task_id, changes)

        logger.info(
            "Split rule %s at task %s (%s); removed %s later occurrence(s)",
            old_rule.id,
            anchor.task_id,
            anchor.original_due_date,
            deleted,
        )
        if edited.due_date is None:
            logger.warning("Task %s lost its due date; no new series started", edited.id)
            return MutationResult(MutationStatus.APPLIED, task=edited, updated=1, deleted=deleted)
        return replace(self._start_series(stores, edited, rule), updated=1, deleted=deleted)

    def _split_after_this(
        self,
        stores: Stores,
        task: TaskEntity,
        anchor: Anchor,
        changes: dict,
        rule: RecurrenceRule | None,
    ) -> MutationResult:
        old_rule = self._get_rule(stores, task.rule_id)
        followers = [
            t
            for t in stores.tasks.find_incomplete_by_rule_id_from_date(
                old_rule.id, anchor.original_due_date
            )
            if t.id != anchor.task_id
        ]

        if changes.get("due_date", task.due_date) is None:
            return self._stop_series(stores, old_rule, anchor, changes, followers)

        self._terminate(stores, old_rule.id, anchor.original_due_date)
        definition = rule if rule is not None else old_rule
        new_rule = stores.rules.insert(replace(definition, id=None))
        edited, updated, deleted = self._shift_series(
            stores, new_rule, anchor.task_id, changes, followers
        )

        logger.info(
            "Moved task %s and %s following occurrence(s) from rule %s to rule %s; removed %s",
            anchor.task_id,
            updated,
            old_rule.id,
            new_rule.id,
            deleted,
        )
        return MutationResult(
            MutationStatus.APPLIED,
            task=edited,
            rule_id=new_rule.id,
            updated=updated + 1,
            deleted=deleted,
        )

    def _stop_series(
        self,
        stores: Stores,
        old_rule: RecurrenceRule,
        anchor: Anchor,
        changes: dict,
        followers: list[TaskEntity],
    ) -> MutationResult:
        self._terminate(stores, old_rule.id, anchor.original_due_date)
        deleted = stores.tasks.delete_many(t.id for t in followers)
        edited = self._apply(stores, anchor.task_id, {**changes, "rule_id": None})
        logger.info(
            "Task %s lost its due date; stopped rule %s and removed %s later occurrence(s)",
            anchor.task_id,
            old_rule.id,
            deleted,
        )
        return MutationResult(MutationStatus.APPLIED, task=edited, updated=1, deleted=deleted)

    def _edit_all(
        self,
        stores: Stores,
        task: TaskEntity,
        changes: dict,
        rule: RecurrenceRule | None,
    ) -> MutationResult:
        current_rule = self._get_rule(stores, task.rule_id)
        series = stores.tasks.find_by_rule_id(current_rule.id)
        incomplete = [t for t in series if not t.is_completed and t.due_date is not None]
        if not incomplete:
            logger.info("Every task of rule %s is completed; series left unchanged", current_rule.id)
            return MutationResult(MutationStatus.NOOP, task=task, rule_id=current_rule.id)

        first = min(incomplete, key=_series_key)
        anchor = self._anchor(first)
        followers = [
            t
            for t in incomplete
            if t.id != anchor.task_id and t.due_date >= anchor.original_due_date
        ]
        follower_ids = {t.id for t in followers}

        if anchor.task_id == task.id:
            if "due_date" in changes and changes["due_date"] is None:
                raise RuleValidationError("The first open task of a series needs a due date")
            anchor_changes = changes
        else:
            edited_changes = dict(changes)
            if task.id in follower_ids:
                # Its date comes from the re-dated sequence below.
                edited_changes.pop("due_date", None)
            edited = self._apply(stores, task.id, edited_changes)
            anchor_changes = {name: getattr(edited, name) for name in SYNC_FIELDS}

        if rule is not None:
            current_rule = stores.rules.update_definition(current_rule.id, rule)
        _, updated, deleted = self._shift_series(
            stores, current_rule, anchor.task_id, anchor_changes, followers
        )

        logger.info(
            "Updated rule %s from task %s: %s occurrence(s) re-dated, %s removed",
            current_rule.id,
            anchor.task_id,
            updated,
            deleted,
        )
        return MutationResult(
            MutationStatus.APPLIED,
            task=stores.tasks.find_by_id(task.id),
            rule_id=current_rule.id,
            updated=updated + 1,
            deleted=deleted,
        )

    # -- deletes ------------------------------------------------------------

    def delete(self, task_id: int, scope: DeleteScope | str) -> MutationResult:
        scope = DeleteScope(scope)
        with self._uow() as stores:
            task = self._get_task(stores, task_id)
            if scope == DeleteScope.THIS_ONLY or task.rule_id is None or task.due_date is None:
                if scope == DeleteScope.THIS_AND_FUTURE:
                    logger.info("Task %s is not part of a dated series; deleting it alone", task.id)
                deleted = stores.tasks.delete_many([task.id])
                return MutationResult(MutationStatus.APPLIED, rule_id=task.rule_id, deleted=deleted)

            anchor = self._anchor(task)
            rule = self._get_rule(stores, task.rule_id)
            following = [
                t.id
                for t in stores.tasks.find_by_rule_id_from_date(rule.id, anchor.original_due_date)
                if t.id != anchor.task_id
            ]
            deleted = stores.tasks.delete_many(following)
            self._terminate(stores, rule.id, anchor.original_due_date)
            deleted += stores.tasks.delete_many([anchor.task_id])

            logger.info("Deleted task %s and %s later occurrence(s) of rule %s", task.id, deleted - 1, rule.id)
            return MutationResult(MutationStatus.APPLIED, rule_id=rule.id, deleted=deleted)

    def expire_rule(self, rule_id: int, as_of: date) -> MutationResult:
        """Remove tasks dated on/after ``as_of`` from a rule whose end date has passed."""
        with self._uow() as stores:
            rule = self._get_rule(stores, rule_id)
            if rule.end_date is None or rule.end_date >= as_of:
                return MutationResult(MutationStatus.NOOP, rule_id=rule.id)
            stale = stores.tasks.find_by_rule_id_from_date(rule.id, as_of)
            deleted = stores.tasks.delete_many(t.id for t in stale)
            if deleted:
                logger.info("Rule %s ended on %s; removed %s stale task(s)", rule.id, rule.end_date, deleted)
            return MutationResult(MutationStatus.APPLIED, rule_id=rule.id, deleted=deleted)

    # -- shared steps -------------------------------------------------------

    def _start_series(self, stores: Stores, task: TaskEntity, rule: RecurrenceRule) -> MutationResult:
        stored = stores.rules.insert(replace(rule, id=None, anchor_date=task.due_date))
        base = stores.tasks.update_one(task.id, {"rule_id": stored.id})
        created = self._materializer.extend(stores, stored, base, horizon_for(stored.type, base.due_date))
        logger.info("Started rule %s from task %s with %s occurrence(s)", stored.id, base.id, created)
        return MutationResult(MutationStatus.APPLIED, task=base, rule_id=stored.id, created=created)

    def _shift_series(
        self,
        stores: Stores,
        rule: RecurrenceRule,
        anchor_id: int,
        anchor_changes: dict,
        followers: Iterable[TaskEntity],
    ) -> tuple[TaskEntity, int, int]:
        """Link the anchor to ``rule`` and re-date its followers along the rule.

        Followers take the anchor's title, note and priority. The new sequence
        runs at least as far as the current horizon and the last follower, so
        only a rule that really yields fewer dates deletes followers; a longer
        sequence is left for regular materialization to fill.
        """
        followers = sorted(followers, key=_series_key)
        # Free the old dates first so re-dating inside one rule never collides.
        for follower in followers:
            stores.tasks.update_one(follower.id, {"due_date": None})
        anchor = self._apply(stores, anchor_id, {**anchor_changes, "rule_id": rule.id})
        if anchor.due_date is None:
            raise InvalidAnchorError(f"Task {anchor_id} has no due date to re-date the series from")
        if rule.anchor_date != anchor.due_date:
            rule = stores.rules.update_definition(rule.id, replace(rule, anchor_date=anchor.due_date))

        moving = {anchor_id} | {f.id for f in followers}
        occupied = {
            t.due_date
            for t in stores.tasks.find_by_rule_id(rule.id)
            if t.id not in moving and t.due_date is not None
        }
        limit = max(
            horizon_for(rule.type, anchor.due_date),
            horizon_for(rule.type, self._today()),
            max((f.due_date for f in followers if f.due_date is not None), default=anchor.due_date),
        )
        dates = [d for d in occurrences_between(rule, anchor.due_date, limit) if d not in occupied]

        content = {name: getattr(anchor, name) for name in SYNC_FIELDS}
        for follower, due_date in zip(followers, dates):
            stores.tasks.update_one(follower.id, {**content, "due_date": due_date, "rule_id": rule.id})
        deleted = stores.tasks.delete_many(f.id for f in followers[len(dates):])
        return anchor, min(len(followers), len(dates)), deleted

    def _terminate(self, stores: Stores, rule_id: int, anchor_date: date) -> None:
        end_date = anchor_date - timedelta(days=1)
        stores.rules.update_end_date(rule_id, end_date)
        logger.info("Rule %s now ends on %s", rule_id, end_date)

    @staticmethod
    def _anchor(task: TaskEntity) -> Anchor:
        if task.due_date is None:
            raise InvalidAnchorError(f"Task {task.id} has no due date to pivot the series on")
        return Anchor(task_id=task.id, original_due_date=task.due_date)

    @staticmethod
    def _apply(stores: Stores, task_id: int, changes: dict) -> TaskEntity:
        task = stores.tasks.update_one(task_id, changes) if changes else stores.tasks.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _get_task(stores: Stores, task_id: int) -> TaskEntity:
        task = stores.tasks.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _get_rule(stores: Stores, rule_id: Optional[int]) -> RecurrenceRule:
        rule = stores.rules.find_by_id(rule_id) if rule_id is not None else None
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule
