# src/api/models.py — v2
"""API-level models: GenerationParams, GenerationRequest, HealthReport."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from gen3d.core.models import GenerationKind, ResultFormat


class GenerationParams(BaseModel):
    """Caller-chosen options that change the produced asset.

    Only explicitly set fields take part in the cache key, so a request
    without params and one with all-None params share cache entries.
    """

    result_format: ResultFormat | None = None
    enable_pbr: bool | None = None
    quality: Literal["low", "medium", "high"] | None = None

    def as_params(self) -> dict[str, Any] | None:
        params = self.model_dump(exclude_none=True)
        return params or None


class GenerationRequest(BaseModel):
    """Input to GenerationService.generate()."""

    user_id: str = Field(min_length=1)
    kind: GenerationKind
    input_content: str
    params: GenerationParams | None = None
    timeout_s: float | None = Field(default=None, gt=0)


class HealthReport(BaseModel):
    """Return value of GenerationService.health()."""

    status: Literal["ok", "degraded"]
    version: str
    provider: str
    provider_configured: bool
    cache_enabled: bool
    cache_backend: str
    cache_entries: int = 0
    cache_reachable: bool = True
    task_store_backend: str
    inflight_requests: int = 0
