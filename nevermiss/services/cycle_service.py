from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from nevermiss.domain.entities import TaskCycleEntity, TaskEntity, TaskHistoryEntity
from nevermiss.domain.enums import HistoryAction, OverdueAction
from nevermiss.domain.errors import CollaboratorFailure, InvalidPatternError
from nevermiss.services.recurrence_calculator import RecurrenceCalculator, parse_instant

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CycleStorage(Protocol):
    async def save_task_cycle(self, cycle: TaskCycleEntity) -> TaskCycleEntity: ...

    async def get_task_cycles_by_task_id(self, task_id: int) -> list[TaskCycleEntity]: ...


class NotificationScheduler(Protocol):
    async def schedule_task_notification(
        self, task: TaskEntity, cycle: TaskCycleEntity
    ) -> Optional[str]: ...

    async def cancel_cycle_notifications(self, cycle: TaskCycleEntity) -> int: ...


class HistoryRecorder(Protocol):
    async def save_task_history(self, entry: TaskHistoryEntity) -> TaskHistoryEntity: ...


@dataclass(frozen=True)
class CycleCompletion:
    completed: TaskCycleEntity
    new_cycle: Optional[TaskCycleEntity] = None


@dataclass(frozen=True)
class OverdueReport:
    checked: int
    overdue: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleService:
    """Creates, completes and remediates task cycles.

    Storage and notification failures surface as ``CollaboratorFailure``;
    calculation errors propagate unchanged.
    """

    def __init__(
        self,
        storage: CycleStorage,
        notifications: NotificationScheduler,
        history: HistoryRecorder | None = None,
        calculator: RecurrenceCalculator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._storage = storage
        self._notifications = notifications
        self._history = history
        self._calculator = calculator or RecurrenceCalculator()
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return parse_instant(self._clock())

    async def get_next_cycle(
        self, task: TaskEntity, completion_date: datetime | str | None = None
    ) -> TaskCycleEntity:
        start = parse_instant(completion_date) if completion_date is not None else self.now()
        return await self._start_cycle(task, start)

    async def create_initial_cycle(
        self,
        task: TaskEntity,
        start_date: datetime | str | None = None,
        due_date: datetime | str | None = None,
    ) -> TaskCycleEntity:
        start = parse_instant(start_date) if start_date is not None else None
        due = parse_instant(due_date) if due_date is not None else None

        if due is not None and start is None:
            start = self._calculator.start_date_for(due, task.recurrence_pattern, task.date_type)
        if start is None:
            start = self.now()
        if due is None:
            due = self._calculator.due_date_for(start, task.recurrence_pattern, task.date_type)
        return await self._create_cycle(task, start, due)

    async def get_current_cycle(self, task_id: int) -> TaskCycleEntity | None:
        cycles = await self._call("load cycles", self._storage.get_task_cycles_by_task_id(task_id))
        open_cycles = [cycle for cycle in cycles if not cycle.is_completed]
        if not open_cycles:
            return None
        return max(open_cycles, key=lambda cycle: (cycle.created_at, cycle.id or 0))

    async def complete_cycle(self, task: TaskEntity, cycle: TaskCycleEntity) -> CycleCompletion:
        now = self.now()
        completed = await self._save(replace(cycle, is_completed=True, completed_date=now))
        await self._record(completed, HistoryAction.COMPLETED, now)
        await self._cancel_reminders(completed)
        logger.info("Completed cycle %s of task %s", completed.id, task.id)

        if not (task.is_active and task.auto_restart):
            return CycleCompletion(completed=completed)

        new_cycle = await self._start_cycle(task, now)
        return CycleCompletion(completed=completed, new_cycle=new_cycle)

    async def handle_overdue(
        self, task: TaskEntity, cycle: TaskCycleEntity, action: OverdueAction | str
    ) -> TaskCycleEntity:
        action = OverdueAction(action)
        now = self.now()

        if action == OverdueAction.SKIP:
            skipped = await self._save(replace(cycle, is_completed=True, completed_date=now))
            await self._record(skipped, HistoryAction.SKIPPED, now)
            await self._cancel_reminders(skipped)
            logger.info("Skipped cycle %s of task %s", skipped.id, task.id)
            return await self._start_cycle(task, now)

        flagged = await self._save(replace(cycle, is_overdue=True))
        await self._cancel_reminders(flagged)
        if action == OverdueAction.RESET:
            await self._record(flagged, HistoryAction.RESET, now)
            logger.info("Reset overdue cycle %s of task %s", flagged.id, task.id)
            return await self._start_cycle(task, now)

        # One period only, even if the new due date is already in the past.
        await self._record(flagged, HistoryAction.CONTINUED, now)
        logger.info("Continuing task %s from due date %s", task.id, cycle.due_date)
        return await self._start_cycle(task, cycle.due_date)

    async def mark_overdue(self, task: TaskEntity, cycle: TaskCycleEntity) -> TaskCycleEntity:
        flagged = await self._save(replace(cycle, is_overdue=True))
        await self._record(flagged, HistoryAction.OVERDUE, self.now())
        logger.info("Cycle %s of task %s is overdue", flagged.id, task.id)
        return flagged

    async def check_overdue_cycles(self, tasks: list[TaskEntity]) -> OverdueReport:
        now = self.now()
        checked = 0
        overdue = 0
        for task in tasks:
            if not task.is_active or task.id is None:
                continue
            checked += 1
            cycle = task.current_cycle or await self.get_current_cycle(task.id)
            if cycle is None or cycle.is_completed or cycle.is_overdue:
                continue
            if now > cycle.due_date:
                await self.mark_overdue(task, cycle)
                overdue += 1
        logger.info("Overdue sweep: %s active tasks checked, %s flagged", checked, overdue)
        return OverdueReport(checked=checked, overdue=overdue)

    async def _start_cycle(self, task: TaskEntity, start: datetime) -> TaskCycleEntity:
        due = self._calculator.due_date_for(start, task.recurrence_pattern, task.date_type)
        return await self._create_cycle(task, start, due)

    async def _create_cycle(
        self, task: TaskEntity, start: datetime, due: datetime
    ) -> TaskCycleEntity:
        if task.id is None:
            raise ValueError("task must be saved before creating cycles")
        if not start < due:
            raise InvalidPatternError(f"cycle start {start} must precede due date {due}")

        cycle = TaskCycleEntity(
            id=None,
            task_id=task.id,
            start_date=start,
            due_date=due,
            date_type=task.date_type,
            is_completed=False,
            is_overdue=False,
            completed_date=None,
            created_at=self.now(),
        )
        saved = await self._save(cycle)
        await self._call(
            "schedule notification",
            self._notifications.schedule_task_notification(task, saved),
        )
        await self._record(saved, HistoryAction.CREATED, saved.created_at)
        logger.info(
            "Created cycle %s for task %s: %s -> %s", saved.id, task.id, saved.start_date, saved.due_date
        )
        return saved

    async def _save(self, cycle: TaskCycleEntity) -> TaskCycleEntity:
        return await self._call("save cycle", self._storage.save_task_cycle(cycle))

    async def _cancel_reminders(self, cycle: TaskCycleEntity) -> None:
        await self._call(
            "cancel notifications", self._notifications.cancel_cycle_notifications(cycle)
        )

    async def _record(self, cycle: TaskCycleEntity, action: HistoryAction, at: datetime) -> None:
        if self._history is None:
            return
        entry = TaskHistoryEntity(
            id=None, task_id=cycle.task_id, cycle_id=cycle.id, action=action, timestamp=at
        )
        await self._call("record history", self._history.save_task_history(entry))

    @staticmethod
    async def _call(what: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except Exception as exc:
            logger.exception("Failed to %s", what)
            raise CollaboratorFailure(f"failed to {what}: {exc}", exc) from exc
