from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    recurrence_pattern = Column(JSON, nullable=False)
    date_type = Column(String(10), nullable=False, default="solar")
    auto_restart = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    reminder_offset = Column(Integer, nullable=False, default=0)
    reminder_unit = Column(String(10), nullable=False, default="minutes")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class TaskCycleModel(Base):
    __tablename__ = "task_cycles"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False, index=True)
    date_type = Column(String(10), nullable=False, default="solar")
    is_completed = Column(Boolean, nullable=False, default=False)
    is_overdue = Column(Boolean, nullable=False, default=False)
    completed_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class TaskHistoryModel(Base):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    cycle_id = Column(Integer, ForeignKey("task_cycles.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)


class ScheduledNotificationModel(Base):
    __tablename__ = "scheduled_notifications"

    id = Column(String(32), primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    cycle_id = Column(Integer, ForeignKey("task_cycles.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False, default="")
    trigger_at = Column(DateTime, nullable=False, index=True)
    delivered = Column(Boolean, nullable=False, default=False)
    cancelled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
