from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from task_recurrence.config import PROJECT_ROOT, SETTINGS


def setup_logging(level: str | None = None) -> Path:
    """Configure root logging for the batch process and return the log file path."""
    log_dir = Path(SETTINGS.log_dir)
    if not log_dir.is_absolute():
        log_dir = PROJECT_ROOT / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / SETTINGS.log_file

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=(level or SETTINGS.log_level).upper(),
        handlers=[file_handler, console_handler],
        force=True,
    )
    # Statements reach the log only with SQL_ECHO on.
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if SETTINGS.sql_echo else logging.WARNING
    )
    return log_file
