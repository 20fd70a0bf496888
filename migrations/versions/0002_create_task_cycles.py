"""create task cycles table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_create_task_cycles"
down_revision = "0001_create_tasks"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "task_cycles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("date_type", sa.String(length=10), nullable=False, server_default="solar"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_overdue", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_task_cycles_task_id", "task_cycles", ["task_id"], unique=False)
    op.create_index("ix_task_cycles_due_date", "task_cycles", ["due_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_task_cycles_due_date", table_name="task_cycles")
    op.drop_index("ix_task_cycles_task_id", table_name="task_cycles")
    op.drop_table("task_cycles")
