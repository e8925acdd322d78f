from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from task_recurrence.config import SETTINGS

engine = create_engine(SETTINGS.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def init_db() -> None:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


@contextmanager
def transaction(session_factory: sessionmaker | None = None) -> Iterator[Session]:
    """One session, one transaction: commit on clean exit, roll back on error."""
    factory = session_factory or SessionLocal
    with factory() as session, session.begin():
        yield session
