from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_env(search_dirs: list[Path] | None = None) -> Path | None:
    """Load the first ``.env`` found, then its ``.env.<APP_ENV>`` override.

    Returns the directory the base file was read from, if there was one.
    """
    env_name = os.getenv("APP_ENV", "development")
    dirs = search_dirs or [Path.cwd(), PROJECT_ROOT]

    loaded_from = None
    for base in dirs:
        if (base / ".env").exists():
            load_dotenv(base / ".env")
            loaded_from = base
            break

    for base in dirs:
        override = base / f".env.{env_name}"
        if override.exists():
            load_dotenv(override, override=True)
            break
    return loaded_from


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "task_recurrence.log"
    sql_echo: bool = False

    @classmethod
    def from_env(cls) -> Settings:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise RuntimeError(
                "DATABASE_URL is not set. Copy .env.example to .env and point it at your database."
            )

        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in logging.getLevelNamesMapping():
            raise RuntimeError(f"LOG_LEVEL={log_level!r} is not a logging level")

        return cls(
            database_url=database_url,
            log_level=log_level,
            log_dir=os.getenv("LOG_DIR", "").strip() or "logs",
            log_file=os.getenv("LOG_FILE", "").strip() or "task_recurrence.log",
            sql_echo=_env_flag("SQL_ECHO"),
        )


load_env()

SETTINGS = Settings.from_env()
