# src/tasks/repository.py — v1
"""Task persistence interface, in-memory implementation and factory.

Repositories hand out copies: mutating a returned task never changes
stored state until ``update()`` is called with it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from gen3d.config.settings import Settings
from gen3d.core.errors import TaskNotFoundError
from gen3d.core.models import GenerationTask

logger = logging.getLogger(__name__)


class BaseTaskRepository(ABC):
    """Unified interface for task storage backends."""

    async def open(self) -> None:
        """Acquire backend resources. No-op by default."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    @abstractmethod
    async def save(self, task: GenerationTask) -> GenerationTask:
        """Insert a new task."""

    @abstractmethod
    async def update(self, task: GenerationTask) -> GenerationTask:
        """Overwrite an existing task.

        Raises:
            TaskNotFoundError: If the task was never saved.
        """

    @abstractmethod
    async def find_by_task_id(self, task_id: str) -> GenerationTask | None:
        """Fetch one task."""

    @abstractmethod
    async def find_by_user_id(self, user_id: str, limit: int | None = None) -> list[GenerationTask]:
        """Tasks of one user, newest first."""

    @abstractmethod
    async def find_by_input_hash(self, input_hash: str) -> list[GenerationTask]:
        """All tasks sharing a fingerprint, newest first."""

    @abstractmethod
    async def find_similar_completed_tasks(
        self, kind: str, limit: int = 50
    ) -> list[GenerationTask]:
        """COMPLETED tasks of ``kind``, most recently completed first."""

    @abstractmethod
    async def find_recent_completed(
        self, since: datetime, limit: int = 100
    ) -> list[GenerationTask]:
        """COMPLETED tasks finished at or after ``since``, newest first."""


def _newest_first(tasks: list[GenerationTask], attr: str = "create_time") -> list[GenerationTask]:
    return sorted(tasks, key=lambda t: getattr(t, attr) or t.create_time, reverse=True)


class InMemoryTaskRepository(BaseTaskRepository):
    """Dict-backed repository for tests and single-process use."""

    def __init__(self) -> None:
        self._tasks: dict[str, GenerationTask] = {}

    async def save(self, task: GenerationTask) -> GenerationTask:
        self._tasks[task.task_id] = task.model_copy(deep=True)
        return task

    async def update(self, task: GenerationTask) -> GenerationTask:
        if task.task_id not in self._tasks:
            raise TaskNotFoundError(task.task_id)
        self._tasks[task.task_id] = task.model_copy(deep=True)
        return task

    async def find_by_task_id(self, task_id: str) -> GenerationTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    async def find_by_user_id(self, user_id: str, limit: int | None = None) -> list[GenerationTask]:
        tasks = _newest_first([t for t in self._tasks.values() if t.user_id == user_id])
        if limit is not None:
            tasks = tasks[:limit]
        return [t.model_copy(deep=True) for t in tasks]

    async def find_by_input_hash(self, input_hash: str) -> list[GenerationTask]:
        tasks = _newest_first([t for t in self._tasks.values() if t.input_hash == input_hash])
        return [t.model_copy(deep=True) for t in tasks]

    async def find_similar_completed_tasks(
        self, kind: str, limit: int = 50
    ) -> list[GenerationTask]:
        tasks = [
            t for t in self._tasks.values() if t.status == "COMPLETED" and t.kind == kind
        ]
        return [t.model_copy(deep=True) for t in _newest_first(tasks, "complete_time")[:limit]]

    async def find_recent_completed(
        self, since: datetime, limit: int = 100
    ) -> list[GenerationTask]:
        tasks = [
            t
            for t in self._tasks.values()
            if t.status == "COMPLETED" and t.complete_time is not None and t.complete_time >= since
        ]
        return [t.model_copy(deep=True) for t in _newest_first(tasks, "complete_time")[:limit]]


def create_task_repository(settings: Settings | None = None) -> BaseTaskRepository:
    """Instantiate the configured task store.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
    """
    backend = "memory" if settings is None else settings.task_store_backend

    if backend == "memory":
        return InMemoryTaskRepository()

    if backend == "sqlite":
        from gen3d.tasks.sqlite_repository import SqliteTaskRepository
        return SqliteTaskRepository(db_path=settings.task_db_path)

    raise ValueError(f"Unsupported task store backend: {backend!r}")
