from __future__ import annotations

import asyncio

from nevermiss.domain.entities import TaskCycleEntity, TaskHistoryEntity

from .repository import CycleRepository, HistoryRepository


class SqlCycleStorage:
    """Async storage collaborator over the synchronous repositories."""

    def __init__(
        self,
        cycles: CycleRepository | None = None,
        history: HistoryRepository | None = None,
    ) -> None:
        self._cycles = cycles or CycleRepository()
        self._history = history or HistoryRepository()

    async def save_task_cycle(self, cycle: TaskCycleEntity) -> TaskCycleEntity:
        return await asyncio.to_thread(self._cycles.save_cycle, cycle)

    async def get_task_cycles_by_task_id(self, task_id: int) -> list[TaskCycleEntity]:
        return await asyncio.to_thread(self._cycles.list_for_task, task_id)

    async def save_task_history(self, entry: TaskHistoryEntity) -> TaskHistoryEntity:
        return await asyncio.to_thread(self._history.add_entry, entry)
