"""create scheduled notifications table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0004_create_scheduled_notifications"
down_revision = "0003_create_task_history"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "cycle_id",
            sa.Integer(),
            sa.ForeignKey("task_cycles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("trigger_at", sa.DateTime(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_scheduled_notifications_task_id", "scheduled_notifications", ["task_id"], unique=False
    )
    op.create_index(
        "ix_scheduled_notifications_trigger_at", "scheduled_notifications", ["trigger_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_scheduled_notifications_trigger_at", table_name="scheduled_notifications")
    op.drop_index("ix_scheduled_notifications_task_id", table_name="scheduled_notifications")
    op.drop_table("scheduled_notifications")
