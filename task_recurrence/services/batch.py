from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date

from task_recurrence.domain.entities import BatchSummary, RecurrenceRule
from task_recurrence.domain.horizon import horizon_for

from .materializer import OccurrenceMaterializer
from .ports import Clock, UnitOfWork
from .series_service import SeriesMutationManager

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Nightly job: reclaim orphan rules, extend live series, clean up ended ones.

    Each step and each rule runs in its own unit of work. A rule that fails is
    logged and skipped; the next run retries it.
    """

    def __init__(
        self,
        unit_of_work: UnitOfWork,
        clock: Clock,
        materializer: OccurrenceMaterializer | None = None,
        series: SeriesMutationManager | None = None,
    ) -> None:
        self._uow = unit_of_work
        self._clock = clock
        self._materializer = materializer or OccurrenceMaterializer()
        self._series = series or SeriesMutationManager(unit_of_work, self._materializer, clock=clock)

    def run_daily_extension(self) -> BatchSummary:
        started = time.monotonic()
        today = self._clock.today()
        logger.info("Repeat batch started for %s", today)

        with self._uow() as stores:
            reclaimed = stores.rules.delete_orphans()
        if reclaimed:
            logger.info("Reclaimed %s orphan repeat rule(s)", reclaimed)

        with self._uow() as stores:
            active = stores.rules.find_active_rules(today)
            expired = stores.rules.find_expired_rules(today)
        logger.info("Extending %s active repeat rule(s)", len(active))

        created = 0
        deleted = 0
        failed: list[int] = []

        for rule in active:
            try:
                created += self._extend_rule(rule, today)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to extend repeat rule %s", rule.id)
                failed.append(rule.id)

        for rule in expired:
            try:
                deleted += self._series.expire_rule(rule.id, today).deleted
            except Exception:  # noqa: BLE001
                logger.exception("Failed to clean up ended repeat rule %s", rule.id)
                failed.append(rule.id)

        summary = BatchSummary(
            created=created,
            deleted=deleted,
            reclaimed=reclaimed,
            failed_rule_ids=tuple(failed),
        )
        logger.info(
            "Repeat batch finished in %.0fms: created=%s deleted=%s reclaimed=%s failed=%s",
            (time.monotonic() - started) * 1000,
            summary.created,
            summary.deleted,
            summary.reclaimed,
            len(summary.failed_rule_ids),
        )
        return summary

    def _extend_rule(self, rule: RecurrenceRule, today: date) -> int:
        with self._uow() as stores:
            base_task = stores.tasks.find_series_base(rule.id)
            if base_task is None:
                logger.warning("Repeat rule %s has no tasks left; skipping", rule.id)
                return 0
            # Content comes from the base task, the date sequence from the rule's anchor.
            base_date = rule.anchor_date or base_task.due_date
            if base_date is None:
                logger.warning(
                    "Repeat rule %s has neither an anchor date nor a dated task; skipping",
                    rule.id,
                )
                return 0
            return self._materializer.extend(
                stores,
                rule,
                replace(base_task, due_date=base_date),
                horizon_for(rule.type, today),
                not_before=today,
            )
