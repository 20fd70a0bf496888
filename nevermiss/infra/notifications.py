from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, update

from nevermiss.domain.entities import TaskCycleEntity, TaskEntity
from nevermiss.domain.enums import ReminderUnit

from .db import SessionLocal
from .models import ScheduledNotificationModel
from .repository import SessionFactory, from_db_time, to_db_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledNotification:
    id: str
    task_id: int
    cycle_id: int
    title: str
    body: str
    trigger_at: datetime
    delivered: bool
    cancelled: bool


def reminder_delta(offset: int, unit: ReminderUnit | str) -> timedelta:
    unit = ReminderUnit(unit)
    if unit == ReminderUnit.HOURS:
        return timedelta(hours=offset)
    if unit == ReminderUnit.DAYS:
        return timedelta(days=offset)
    return timedelta(minutes=offset)


def _to_entity(model: ScheduledNotificationModel) -> ScheduledNotification:
    return ScheduledNotification(
        id=model.id,
        task_id=model.task_id,
        cycle_id=model.cycle_id,
        title=model.title,
        body=model.body,
        trigger_at=from_db_time(model.trigger_at),
        delivered=model.delivered,
        cancelled=model.cancelled,
    )


class SqlNotificationScheduler:
    """Stores reminders for an external delivery process to pick up."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def schedule_task_notification(
        self, task: TaskEntity, cycle: TaskCycleEntity
    ) -> Optional[str]:
        return await asyncio.to_thread(self.schedule, task, cycle)

    def schedule(self, task: TaskEntity, cycle: TaskCycleEntity) -> Optional[str]:
        trigger_at = cycle.due_date - reminder_delta(task.reminder_offset, task.reminder_unit)
        if trigger_at <= self._clock():
            logger.info("Reminder for task %s cycle %s is already past, not scheduled", task.id, cycle.id)
            return None

        notification_id = uuid.uuid4().hex
        with self._session_factory() as session:
            session.add(
                ScheduledNotificationModel(
                    id=notification_id,
                    task_id=task.id,
                    cycle_id=cycle.id,
                    title=task.title,
                    body=task.description,
                    trigger_at=to_db_time(trigger_at),
                )
            )
            session.commit()
        logger.info("Scheduled reminder %s for task %s at %s", notification_id, task.id, trigger_at)
        return notification_id

    def list_due_notifications(self, now: datetime | None = None) -> list[ScheduledNotification]:
        return self._list_pending(until=now or self._clock())

    def list_upcoming_notifications(self, days: int, now: datetime | None = None) -> list[ScheduledNotification]:
        """Reminders that fire after ``now`` and within the next ``days`` days."""
        now = now or self._clock()
        return self._list_pending(until=now + timedelta(days=days), after=now)

    def _list_pending(
        self, until: datetime, after: datetime | None = None
    ) -> list[ScheduledNotification]:
        conditions = [
            ScheduledNotificationModel.trigger_at <= to_db_time(until),
            ScheduledNotificationModel.delivered.is_(False),
            ScheduledNotificationModel.cancelled.is_(False),
        ]
        if after is not None:
            conditions.append(ScheduledNotificationModel.trigger_at > to_db_time(after))
        with self._session_factory() as session:
            stmt = (
                select(ScheduledNotificationModel)
                .where(*conditions)
                .order_by(ScheduledNotificationModel.trigger_at.asc())
            )
            return [_to_entity(model) for model in session.scalars(stmt)]

    def mark_delivered(self, notification_id: str) -> bool:
        with self._session_factory() as session:
            model = session.get(ScheduledNotificationModel, notification_id)
            if not model:
                return False
            model.delivered = True
            session.commit()
            return True

    async def cancel_cycle_notifications(self, cycle: TaskCycleEntity) -> int:
        if cycle.id is None:
            return 0
        return await asyncio.to_thread(self.cancel_for_cycle, cycle.id)

    def cancel_for_cycle(self, cycle_id: int) -> int:
        cancelled = self._cancel(ScheduledNotificationModel.cycle_id == cycle_id)
        if cancelled:
            logger.info("Cancelled %s reminder(s) of cycle %s", cancelled, cycle_id)
        return cancelled

    def cancel_for_task(self, task_id: int) -> int:
        return self._cancel(ScheduledNotificationModel.task_id == task_id)

    def _cancel(self, condition) -> int:
        with self._session_factory() as session:
            result = session.execute(
                update(ScheduledNotificationModel)
                .where(
                    condition,
                    ScheduledNotificationModel.delivered.is_(False),
                    ScheduledNotificationModel.cancelled.is_(False),
                )
                .values(cancelled=True)
            )
            session.commit()
            return result.rowcount or 0
