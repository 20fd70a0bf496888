from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from nevermiss.domain.entities import (
    DailyPattern,
    TaskCycleEntity,
    TaskEntity,
    TaskHistoryEntity,
)
from nevermiss.domain.enums import CycleStatus, DateType, HistoryAction
from nevermiss.domain.errors import CollaboratorFailure, InvalidPatternError
from nevermiss.services.cycle_service import CycleService

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeStorage:
    def __init__(self) -> None:
        self.cycles: list[TaskCycleEntity] = []
        self.saves: list[TaskCycleEntity] = []
        self._id = 1
        self.fail = False

    async def save_task_cycle(self, cycle: TaskCycleEntity) -> TaskCycleEntity:
        if self.fail:
            raise OSError("disk full")
        if cycle.id is None:
            cycle = replace(cycle, id=self._id)
            self._id += 1
            self.cycles.append(cycle)
        else:
            self.cycles = [cycle if c.id == cycle.id else c for c in self.cycles]
        self.saves.append(cycle)
        return cycle

    async def get_task_cycles_by_task_id(self, task_id: int) -> list[TaskCycleEntity]:
        return [c for c in self.cycles if c.task_id == task_id]


class FakeNotifier:
    def __init__(self) -> None:
        self.scheduled: list[tuple[int, int]] = []
        self.cancelled: list[int] = []
        self.fail = False

    async def schedule_task_notification(self, task: TaskEntity, cycle: TaskCycleEntity) -> Optional[str]:
        if self.fail:
            raise RuntimeError("scheduler offline")
        self.scheduled.append((task.id, cycle.id))
        return f"n-{cycle.id}"

    async def cancel_cycle_notifications(self, cycle: TaskCycleEntity) -> int:
        self.cancelled.append(cycle.id)
        return 1


class FakeHistory:
    def __init__(self) -> None:
        self.entries: list[TaskHistoryEntity] = []

    async def save_task_history(self, entry: TaskHistoryEntity) -> TaskHistoryEntity:
        self.entries.append(entry)
        return entry

    def actions(self) -> list[HistoryAction]:
        return [entry.action for entry in self.entries]


def _task(**overrides) -> TaskEntity:
    data = {
        "id": 1,
        "title": "Water plants",
        "recurrence_pattern": DailyPattern(value=3),
    }
    data.update(overrides)
    return TaskEntity(**data)


def _cycle(start: datetime, due: datetime, **overrides) -> TaskCycleEntity:
    data = {
        "id": None,
        "task_id": 1,
        "start_date": start,
        "due_date": due,
        "date_type": DateType.SOLAR,
        "is_completed": False,
        "is_overdue": False,
        "completed_date": None,
        "created_at": start,
    }
    data.update(overrides)
    return TaskCycleEntity(**data)


def _service(clock=lambda: NOW):
    storage = FakeStorage()
    notifier = FakeNotifier()
    history = FakeHistory()
    return CycleService(storage, notifier, history=history, clock=clock), storage, notifier, history


def _existing(storage: FakeStorage, cycle: TaskCycleEntity) -> TaskCycleEntity:
    return asyncio.run(storage.save_task_cycle(cycle))


def test_get_next_cycle_starts_now_and_schedules() -> None:
    service, storage, notifier, history = _service()

    cycle = asyncio.run(service.get_next_cycle(_task()))

    assert cycle.id == 1
    assert cycle.start_date == NOW
    assert cycle.due_date == NOW + timedelta(days=3)
    assert notifier.scheduled == [(1, 1)]
    assert history.actions() == [HistoryAction.CREATED]


def test_get_next_cycle_from_completion_date() -> None:
    service, _, _, _ = _service()

    cycle = asyncio.run(service.get_next_cycle(_task(), "2024-02-01T00:00:00Z"))

    assert cycle.start_date == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert cycle.due_date == datetime(2024, 2, 4, tzinfo=timezone.utc)


def test_complete_without_auto_restart_persists_one_mutation() -> None:
    service, storage, notifier, _ = _service()
    cycle = _existing(storage, _cycle(NOW - timedelta(days=2), NOW + timedelta(days=1)))
    storage.saves.clear()

    result = asyncio.run(service.complete_cycle(_task(auto_restart=False), cycle))

    assert result.new_cycle is None
    assert result.completed.is_completed
    assert result.completed.completed_date == NOW
    assert len(storage.saves) == 1
    assert notifier.scheduled == []


def test_complete_with_auto_restart_starts_from_now() -> None:
    service, storage, notifier, history = _service()
    cycle = _existing(storage, _cycle(NOW - timedelta(days=2), NOW + timedelta(days=1)))

    result = asyncio.run(service.complete_cycle(_task(), cycle))

    assert result.new_cycle is not None
    assert result.new_cycle.start_date == NOW
    assert result.new_cycle.due_date == NOW + timedelta(days=3)
    assert notifier.scheduled == [(1, result.new_cycle.id)]
    assert history.actions() == [HistoryAction.COMPLETED, HistoryAction.CREATED]
    assert cycle.is_completed is False


def test_complete_inactive_task_does_not_restart() -> None:
    service, storage, _, _ = _service()
    cycle = _existing(storage, _cycle(NOW - timedelta(days=2), NOW + timedelta(days=1)))

    result = asyncio.run(service.complete_cycle(_task(is_active=False), cycle))

    assert result.new_cycle is None


def test_complete_cancels_reminder_of_completed_cycle() -> None:
    service, storage, notifier, _ = _service()
    cycle = _existing(storage, _cycle(NOW - timedelta(days=2), NOW + timedelta(days=1)))

    result = asyncio.run(service.complete_cycle(_task(), cycle))

    assert notifier.cancelled == [cycle.id]
    assert result.new_cycle.id not in notifier.cancelled


@pytest.mark.parametrize("action", ["skip", "reset", "continue"])
def test_handle_overdue_cancels_reminder_before_restarting(action: str) -> None:
    service, storage, notifier, _ = _service()
    overdue = _existing(storage, _cycle(NOW - timedelta(days=10), NOW - timedelta(days=7)))

    new_cycle = asyncio.run(service.handle_overdue(_task(), overdue, action))

    assert notifier.cancelled == [overdue.id]
    assert notifier.scheduled == [(1, new_cycle.id)]


def test_skip_creates_pending_cycle_from_now() -> None:
    service, storage, _, history = _service()
    overdue = _existing(storage, _cycle(NOW - timedelta(days=400), NOW - timedelta(days=397)))

    new_cycle = asyncio.run(service.handle_overdue(_task(auto_restart=False), overdue, "skip"))

    assert new_cycle.start_date == NOW
    assert new_cycle.status(NOW) is CycleStatus.PENDING
    skipped = next(c for c in storage.cycles if c.id == overdue.id)
    assert skipped.is_completed and skipped.completed_date == NOW
    assert history.actions() == [HistoryAction.SKIPPED, HistoryAction.CREATED]


def test_reset_flags_overdue_and_restarts_from_now() -> None:
    service, storage, _, history = _service()
    overdue = _existing(storage, _cycle(NOW - timedelta(days=10), NOW - timedelta(days=7)))

    new_cycle = asyncio.run(service.handle_overdue(_task(), overdue, "reset"))

    assert new_cycle.start_date == NOW
    flagged = next(c for c in storage.cycles if c.id == overdue.id)
    assert flagged.is_overdue and not flagged.is_completed
    assert history.actions() == [HistoryAction.RESET, HistoryAction.CREATED]


def test_continue_takes_a_single_step_from_due_date() -> None:
    service, storage, _, history = _service()
    due = NOW - timedelta(days=10)
    overdue = _existing(storage, _cycle(due - timedelta(days=3), due))

    new_cycle = asyncio.run(service.handle_overdue(_task(), overdue, "continue"))

    assert new_cycle.start_date == due
    assert new_cycle.due_date == due + timedelta(days=3)
    assert new_cycle.status(NOW) is CycleStatus.OVERDUE
    assert history.actions() == [HistoryAction.CONTINUED, HistoryAction.CREATED]


def test_handle_overdue_rejects_unknown_action() -> None:
    service, storage, _, _ = _service()
    overdue = _existing(storage, _cycle(NOW - timedelta(days=10), NOW - timedelta(days=7)))

    with pytest.raises(ValueError):
        asyncio.run(service.handle_overdue(_task(), overdue, "ignore"))


def test_storage_failure_is_wrapped() -> None:
    service, storage, _, _ = _service()
    storage.fail = True

    with pytest.raises(CollaboratorFailure) as info:
        asyncio.run(service.get_next_cycle(_task()))

    assert isinstance(info.value.cause, OSError)
    assert info.value.__cause__ is info.value.cause


def test_notification_failure_is_wrapped() -> None:
    service, _, notifier, _ = _service()
    notifier.fail = True

    with pytest.raises(CollaboratorFailure) as info:
        asyncio.run(service.get_next_cycle(_task()))

    assert isinstance(info.value.cause, RuntimeError)


def test_history_is_optional() -> None:
    storage = FakeStorage()
    service = CycleService(storage, FakeNotifier(), clock=lambda: NOW)

    cycle = asyncio.run(service.get_next_cycle(_task()))

    assert storage.cycles == [cycle]


def test_create_initial_cycle_prefills_start_from_due() -> None:
    service, _, _, _ = _service()
    due = datetime(2024, 3, 10, 9, tzinfo=timezone.utc)

    cycle = asyncio.run(service.create_initial_cycle(_task(), due_date=due))

    assert cycle.start_date == datetime(2024, 3, 7, 9, tzinfo=timezone.utc)
    assert cycle.due_date == due


def test_create_initial_cycle_rejects_inverted_window() -> None:
    service, _, _, _ = _service()

    with pytest.raises(InvalidPatternError):
        asyncio.run(
            service.create_initial_cycle(
                _task(), start_date="2024-03-10T00:00:00Z", due_date="2024-03-01T00:00:00Z"
            )
        )


def test_get_current_cycle_is_latest_open_one() -> None:
    service, storage, _, _ = _service()
    _existing(storage, _cycle(NOW, NOW + timedelta(days=1), created_at=NOW))
    latest = _existing(storage, _cycle(NOW, NOW + timedelta(days=2), created_at=NOW + timedelta(hours=1)))
    _existing(
        storage,
        _cycle(NOW, NOW + timedelta(days=3), created_at=NOW + timedelta(hours=2), is_completed=True),
    )

    assert asyncio.run(service.get_current_cycle(1)) == latest
    assert asyncio.run(service.get_current_cycle(99)) is None


def test_check_overdue_cycles_flags_without_remediating() -> None:
    service, storage, notifier, history = _service()
    late = _existing(storage, _cycle(NOW - timedelta(days=5), NOW - timedelta(days=1)))
    _existing(storage, _cycle(NOW, NOW + timedelta(days=1), task_id=2))
    tasks = [_task(id=1), _task(id=2), _task(id=3, is_active=False)]

    report = asyncio.run(service.check_overdue_cycles(tasks))

    assert (report.checked, report.overdue) == (2, 1)
    flagged = next(c for c in storage.cycles if c.id == late.id)
    assert flagged.is_overdue
    assert notifier.scheduled == []
    assert notifier.cancelled == []
    assert history.actions() == [HistoryAction.OVERDUE]

    again = asyncio.run(service.check_overdue_cycles(tasks))
    assert again.overdue == 0
