from __future__ import annotations

import logging
import sys

from task_recurrence.infra.clock import SystemClock
from task_recurrence.infra.db import init_db
from task_recurrence.infra.logging import setup_logging
from task_recurrence.infra.repository import SqlUnitOfWork
from task_recurrence.services.batch import BatchCoordinator

logger = logging.getLogger(__name__)


def main() -> None:
    log_file = setup_logging()
    logger.debug("Logging to %s", log_file)
    try:
        init_db()
    except Exception as exc:  # noqa: BLE001
        logger.error("Database is not reachable: %s", exc)
        sys.exit(1)

    coordinator = BatchCoordinator(SqlUnitOfWork(), SystemClock())
    summary = coordinator.run_daily_extension()
    if summary.failed_rule_ids:
        logger.warning("Repeat rules that failed this run: %s", list(summary.failed_rule_ids))
        sys.exit(2)


if __name__ == "__main__":
    main()
