"""create repeat_rules table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_create_repeat_rules"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "repeat_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("interval_value", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("week_days", sa.String(length=32), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_repeat_rules_end_date", "repeat_rules", ["end_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_repeat_rules_end_date", table_name="repeat_rules")
    op.drop_table("repeat_rules")
