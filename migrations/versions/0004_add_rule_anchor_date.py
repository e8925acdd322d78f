"""add anchor_date to repeat_rules"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0004_add_rule_anchor_date"
down_revision = "0003_add_rule_due_date_unique"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("repeat_rules", sa.Column("anchor_date", sa.Date(), nullable=True))
    # Existing series keep repeating from their earliest dated task.
    op.execute(
        "UPDATE repeat_rules SET anchor_date = "
        "(SELECT MIN(tasks.due_date) FROM tasks WHERE tasks.rule_id = repeat_rules.id)"
    )


def downgrade() -> None:
    op.drop_column("repeat_rules", "anchor_date")
