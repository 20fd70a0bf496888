from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from nevermiss.domain.entities import TaskCycleEntity, TaskEntity, TaskHistoryEntity
from nevermiss.domain.enums import DateType, HistoryAction, ReminderUnit
from nevermiss.domain.patterns import parse_pattern, pattern_to_dict

from .db import SessionLocal
from .models import ScheduledNotificationModel, TaskCycleModel, TaskHistoryModel, TaskModel

SessionFactory = Callable[[], Session]


def to_db_time(value: datetime | None) -> datetime | None:
    """Columns hold naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _cycle_to_entity(model: TaskCycleModel) -> TaskCycleEntity:
    return TaskCycleEntity(
        id=model.id,
        task_id=model.task_id,
        start_date=from_db_time(model.start_date),
        due_date=from_db_time(model.due_date),
        date_type=DateType(model.date_type),
        is_completed=model.is_completed,
        is_overdue=model.is_overdue,
        completed_date=from_db_time(model.completed_date),
        created_at=from_db_time(model.created_at),
    )


def _to_entity(model: TaskModel, current_cycle: TaskCycleModel | None = None) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        title=model.title,
        description=model.description,
        recurrence_pattern=parse_pattern(model.recurrence_pattern),
        date_type=DateType(model.date_type),
        auto_restart=model.auto_restart,
        is_active=model.is_active,
        reminder_offset=model.reminder_offset,
        reminder_unit=ReminderUnit(model.reminder_unit),
        created_at=from_db_time(model.created_at),
        updated_at=from_db_time(model.updated_at),
        current_cycle=_cycle_to_entity(current_cycle) if current_cycle else None,
    )


def _normalize_task_data(data: dict) -> dict:
    normalized = dict(data)
    if "recurrence_pattern" in normalized:
        normalized["recurrence_pattern"] = pattern_to_dict(parse_pattern(normalized["recurrence_pattern"]))
    for key, enum in (("date_type", DateType), ("reminder_unit", ReminderUnit)):
        if key in normalized:
            normalized[key] = enum(normalized[key]).value
    return normalized


def _current_cycle(session: Session, task_id: int) -> TaskCycleModel | None:
    stmt = (
        select(TaskCycleModel)
        .where(TaskCycleModel.task_id == task_id, TaskCycleModel.is_completed.is_(False))
        .order_by(TaskCycleModel.created_at.desc(), TaskCycleModel.id.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


class TaskRepository:
    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def list_tasks(self, active_only: bool = False) -> list[TaskEntity]:
        with self._session_factory() as session:
            stmt = select(TaskModel)
            if active_only:
                stmt = stmt.where(TaskModel.is_active.is_(True))
            stmt = stmt.order_by(TaskModel.created_at.asc(), TaskModel.id.asc())
            return [_to_entity(task, _current_cycle(session, task.id)) for task in session.scalars(stmt)]

    def get_task(self, task_id: int) -> Optional[TaskEntity]:
        with self._session_factory() as session:
            task = session.get(TaskModel, task_id)
            return _to_entity(task, _current_cycle(session, task.id)) if task else None

    def create_task(self, data: dict) -> TaskEntity:
        with self._session_factory() as session:
            task = TaskModel(**_normalize_task_data(data))
            session.add(task)
            session.commit()
            session.refresh(task)
            return _to_entity(task)

    def update_task(self, task_id: int, data: dict) -> Optional[TaskEntity]:
        with self._session_factory() as session:
            task = session.get(TaskModel, task_id)
            if not task:
                return None
            for key, value in _normalize_task_data(data).items():
                setattr(task, key, value)
            session.commit()
            session.refresh(task)
            return _to_entity(task, _current_cycle(session, task.id))

    def delete_task(self, task_id: int) -> None:
        # SQLite does not enforce the ON DELETE CASCADE clauses unless asked to.
        with self._session_factory() as session:
            task = session.get(TaskModel, task_id)
            if task:
                for model in (ScheduledNotificationModel, TaskHistoryModel, TaskCycleModel):
                    session.execute(delete(model).where(model.task_id == task_id))
                session.delete(task)
                session.commit()


class CycleRepository:
    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def save_cycle(self, cycle: TaskCycleEntity) -> TaskCycleEntity:
        """Insert a new cycle, or update the one with the same id."""
        with self._session_factory() as session:
            model = session.get(TaskCycleModel, cycle.id) if cycle.id is not None else None
            if model is None:
                model = TaskCycleModel(task_id=cycle.task_id)
                session.add(model)
            model.start_date = to_db_time(cycle.start_date)
            model.due_date = to_db_time(cycle.due_date)
            model.date_type = DateType(cycle.date_type).value
            model.is_completed = cycle.is_completed
            model.is_overdue = cycle.is_overdue
            model.completed_date = to_db_time(cycle.completed_date)
            model.created_at = to_db_time(cycle.created_at)
            session.commit()
            session.refresh(model)
            return _cycle_to_entity(model)

    def get_cycle(self, cycle_id: int) -> Optional[TaskCycleEntity]:
        with self._session_factory() as session:
            model = session.get(TaskCycleModel, cycle_id)
            return _cycle_to_entity(model) if model else None

    def list_for_task(self, task_id: int) -> list[TaskCycleEntity]:
        with self._session_factory() as session:
            stmt = (
                select(TaskCycleModel)
                .where(TaskCycleModel.task_id == task_id)
                .order_by(TaskCycleModel.created_at.asc(), TaskCycleModel.id.asc())
            )
            return [_cycle_to_entity(model) for model in session.scalars(stmt)]


class HistoryRepository:
    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def add_entry(self, entry: TaskHistoryEntity) -> TaskHistoryEntity:
        with self._session_factory() as session:
            model = TaskHistoryModel(
                task_id=entry.task_id,
                cycle_id=entry.cycle_id,
                action=HistoryAction(entry.action).value,
                timestamp=to_db_time(entry.timestamp),
            )
            session.add(model)
            session.commit()
            session.refresh(model)
            return _history_to_entity(model)

    def list_for_task(self, task_id: int) -> list[TaskHistoryEntity]:
        with self._session_factory() as session:
            stmt = (
                select(TaskHistoryModel)
                .where(TaskHistoryModel.task_id == task_id)
                .order_by(TaskHistoryModel.timestamp.asc(), TaskHistoryModel.id.asc())
            )
            return [_history_to_entity(model) for model in session.scalars(stmt)]


def _history_to_entity(model: TaskHistoryModel) -> TaskHistoryEntity:
    return TaskHistoryEntity(
        id=model.id,
        task_id=model.task_id,
        cycle_id=model.cycle_id,
        action=HistoryAction(model.action),
        timestamp=from_db_time(model.timestamp),
    )
