# src/tasks/state.py — v1
"""Task state machine.

    PENDING -> PROCESSING -> COMPLETED | FAILED
    PENDING -> CACHED
    PENDING -> FAILED

COMPLETED, FAILED and CACHED are terminal. Leaving them raises
InvalidTransitionError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from gen3d.core.errors import InvalidTransitionError
from gen3d.core.models import TERMINAL_STATUSES, GenerationTask, TaskStatus, utc_now

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "PENDING": frozenset({"PROCESSING", "CACHED", "FAILED"}),
    "PROCESSING": frozenset({"COMPLETED", "FAILED"}),
    "COMPLETED": frozenset(),
    "FAILED": frozenset(),
    "CACHED": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(
    task: GenerationTask,
    target: TaskStatus,
    now: datetime | None = None,
    **changes: Any,
) -> GenerationTask:
    """Move ``task`` to ``target`` in place and return it.

    Terminal transitions stamp ``complete_time`` and ``processing_time_ms``:
    exactly 0 for CACHED, at least 1 otherwise.

    Raises:
        InvalidTransitionError: If the move is not allowed.
    """
    if not can_transition(task.status, target):
        raise InvalidTransitionError(task.task_id, task.status, target)

    now = now or utc_now()
    for field, value in changes.items():
        setattr(task, field, value)

    task.status = target
    task.update_time = now
    if target in TERMINAL_STATUSES:
        task.complete_time = now
        if target == "CACHED":
            task.from_cache = True
            task.processing_time_ms = 0
        else:
            elapsed = int((now - task.create_time).total_seconds() * 1000)
            task.processing_time_ms = max(1, elapsed)
    return task
