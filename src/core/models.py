# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


# === ENUMERATIONS ===

GenerationKind = Literal["TEXT", "IMAGE"]

TaskStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED", "CACHED"]

ResultFormat = Literal["OBJ", "GLB", "STL", "USDZ", "FBX", "MP4"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED", "CACHED"})

CANCELLED_MESSAGE = "Task cancelled by user"


def utc_now() -> datetime:
    """Timezone-aware current time; every timestamp in gen3d uses this."""
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return uuid.uuid4().hex


# === RESULT MODELS ===


class ResultReference(BaseModel):
    """Where a generated asset lives once the provider has produced it."""

    asset_url: str | None = None
    local_path: str | None = None
    preview_url: str | None = None
    result_format: str = "OBJ"


# === TASK MODELS ===


class GenerationTask(BaseModel):
    """One user request for a 3D asset.

    Created PENDING, mutated only by the task lifecycle, never deleted.
    ``complete_time`` is set exactly when the status is terminal.
    """

    # --- Identity ---
    task_id: str = Field(default_factory=new_task_id)
    user_id: str

    # --- Input ---
    kind: GenerationKind
    input_content: str
    input_hash: str | None = None
    cache_key: str | None = None
    generation_params: str | None = None  # serialized JSON

    # --- Outcome ---
    status: TaskStatus = "PENDING"
    result: ResultReference | None = None
    external_job_id: str | None = None
    provider: str | None = None
    quality_score: float | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None
    from_cache: bool = False

    # --- Timestamps ---
    create_time: datetime = Field(default_factory=utc_now)
    update_time: datetime = Field(default_factory=utc_now)
    complete_time: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
