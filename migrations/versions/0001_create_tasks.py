"""create tasks table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_create_tasks"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("recurrence_pattern", sa.JSON(), nullable=False),
        sa.Column("date_type", sa.String(length=10), nullable=False, server_default="solar"),
        sa.Column("auto_restart", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reminder_offset", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reminder_unit", sa.String(length=10), nullable=False, server_default="minutes"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tasks_is_active", "tasks", ["is_active"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_tasks_is_active", table_name="tasks")
    op.drop_table("tasks")
