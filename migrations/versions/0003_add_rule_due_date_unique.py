"""add unique occurrence constraint"""
from __future__ import annotations

from alembic import op

revision = "0003_add_rule_due_date_unique"
down_revision = "0002_create_tasks"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_unique_constraint(
        "uq_tasks_rule_id_due_date",
        "tasks",
        ["rule_id", "due_date"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_tasks_rule_id_due_date", "tasks", type_="unique")
