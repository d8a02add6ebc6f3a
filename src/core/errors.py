# src/core/errors.py — v1
"""Error taxonomy shared by the cache, provider and task layers.

Validation and provider errors surface to callers through the task's
terminal state. Cache errors never leave the cache layer.
"""

from __future__ import annotations


class Gen3DError(Exception):
    """Base class for all gen3d errors."""


class GenerationValidationError(Gen3DError, ValueError):
    """Malformed request. Caller's fault, never retried."""


class ProviderValidationError(GenerationValidationError):
    """Request rejected by the gateway before any network call."""


class ProviderFailure(Gen3DError):
    """Transport failure, auth failure or provider-side rejection.

    Carries the raw provider message so it can be stored on the task.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}" if code else message)


class ProviderTimeout(ProviderFailure):
    """Provider call exceeded the caller-supplied deadline."""

    def __init__(self, message: str = "Provider deadline exceeded") -> None:
        super().__init__(message, code="Timeout")


class InvalidTransitionError(Gen3DError):
    """Illegal task state change (e.g. leaving a terminal state)."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(
            f"Task {task_id}: transition {current} -> {target} is not allowed"
        )


class TaskNotFoundError(Gen3DError, KeyError):
    """No task with the given id exists in the repository."""


class ConfigurationError(Gen3DError):
    """Raised when configuration is internally inconsistent."""
