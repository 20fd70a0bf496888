"""create task history table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0003_create_task_history"
down_revision = "0002_create_task_cycles"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "task_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "cycle_id",
            sa.Integer(),
            sa.ForeignKey("task_cycles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_task_history_task_id", "task_history", ["task_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_task_history_task_id", table_name="task_history")
    op.drop_table("task_history")
