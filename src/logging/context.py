# src/logging/context.py — v2
"""Contextual logging support: attach task_id, user_id, cache_key, stage to log records.

Context lives in contextvars, so each asyncio task processing a request
sees its own values.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

_task_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "task_id", default=None
)
_user_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "user_id", default=None
)
_cache_key: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cache_key", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    task_id: str | None = None
    user_id: str | None = None
    cache_key: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        task_id=_task_id.get(),
        user_id=_user_id.get(),
        cache_key=_cache_key.get(),
        stage=_stage.get(),
    )


def set_task_context(
    task_id: str, user_id: str | None = None, cache_key: str | None = None
) -> None:
    """Set task-level context (called once per processed request)."""
    _task_id.set(task_id)
    _user_id.set(user_id)
    _cache_key.set(cache_key)


def set_stage(stage: str | None) -> None:
    """Set the lifecycle stage (cache_lookup, provider, ...)."""
    _stage.set(stage)


@contextmanager
def task_context(
    task_id: str, user_id: str | None = None, cache_key: str | None = None
) -> Iterator[None]:
    """Scope task context to a block and restore the previous values after."""
    tokens = (
        _task_id.set(task_id),
        _user_id.set(user_id),
        _cache_key.set(cache_key),
        _stage.set(None),
    )
    try:
        yield
    finally:
        for var, token in zip((_task_id, _user_id, _cache_key, _stage), tokens):
            var.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _task_id.set(None)
    _user_id.set(None)
    _cache_key.set(None)
    _stage.set(None)
