from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .db import Base


def utcnow() -> datetime:
    return datetime.utcnow()


class RepeatRuleModel(Base):
    __tablename__ = "repeat_rules"

    id = Column(Integer, primary_key=True)
    type = Column(String(10), nullable=False)
    interval_value = Column(Integer, nullable=False, default=1)
    week_days = Column(String(32), nullable=True)
    end_date = Column(Date, nullable=True, index=True)
    anchor_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class TaskModel(Base):
    __tablename__ = "tasks"
    # Backstop against two writers materializing the same occurrence.
    __table_args__ = (UniqueConstraint("rule_id", "due_date", name="uq_tasks_rule_id_due_date"),)

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, nullable=True, index=True)
    title = Column(String(200), nullable=False)
    note = Column(Text, nullable=False, default="")
    priority = Column(Integer, nullable=False, default=2)
    due_date = Column(Date, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    rule_id = Column(
        Integer,
        ForeignKey("repeat_rules.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
