# tests/conftest.py — v2
"""Shared test fixtures for all unit tests.

Provides a scripted fake provider, in-memory stores, and a helper that
wires a TaskLifecycle together. No network: all provider I/O is faked.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gen3d.cache.memory_store import MemoryCacheStore
from gen3d.cache.models import CacheEntry
from gen3d.cache.result_cache import ResultCache
from gen3d.core.errors import ProviderFailure
from gen3d.core.models import GenerationTask, ResultReference
from gen3d.provider.base_provider import BaseGenerationProvider
from gen3d.provider.gateway import ProviderGateway
from gen3d.provider.models import GatewayRequest, JobStatus, ResultFile, SubmitResult
from gen3d.tasks.lifecycle import TaskLifecycle
from gen3d.tasks.repository import InMemoryTaskRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeProvider(BaseGenerationProvider):
    """Provider double with scripted poll answers and call counters."""

    def __init__(
        self,
        statuses: list[str] | None = None,
        submit_error: Exception | None = None,
        submit_delay: float = 0.0,
    ) -> None:
        self.statuses = list(statuses or ["DONE"])
        self.submit_error = submit_error
        self.submit_delay = submit_delay
        self.submit_calls = 0
        self.query_calls = 0
        self.requests: list[GatewayRequest] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "fake"

    async def submit_job(self, request: GatewayRequest) -> SubmitResult:
        self.submit_calls += 1
        self.requests.append(request)
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_error is not None:
            raise self.submit_error
        return SubmitResult(external_job_id=f"job-{self.submit_calls}")

    async def query_job(self, external_job_id: str) -> JobStatus:
        status = self.statuses[min(self.query_calls, len(self.statuses) - 1)]
        self.query_calls += 1
        if status == "DONE":
            return JobStatus(
                job_id=external_job_id,
                status="DONE",
                result_files=[
                    ResultFile(
                        type="OBJ",
                        url=f"https://cdn.example.com/{external_job_id}.obj",
                        preview_image_url=f"https://cdn.example.com/{external_job_id}.png",
                    )
                ],
            )
        if status == "FAIL":
            return JobStatus(
                job_id=external_job_id,
                status="FAIL",
                error_code="InternalError",
                error_message="mesh generation failed",
            )
        return JobStatus(job_id=external_job_id, status=status)

    async def aclose(self) -> None:
        self.closed = True


async def no_sleep(_seconds: float) -> None:
    return None


def make_gateway(provider: BaseGenerationProvider, **kwargs) -> ProviderGateway:
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("max_polls", 5)
    return ProviderGateway(provider, **kwargs)


def make_entry(key: str = "3d_model_cache:abc", **overrides) -> CacheEntry:
    defaults = dict(
        cache_key=key,
        fingerprint="abc",
        input_content="A cube",
        kind="TEXT",
        result=ResultReference(asset_url="https://cdn.example.com/cube.obj"),
    )
    defaults.update(overrides)
    return CacheEntry(**defaults)


def make_task(**overrides) -> GenerationTask:
    defaults = dict(user_id="user-1", kind="TEXT", input_content="A cube")
    defaults.update(overrides)
    return GenerationTask(**defaults)


# === FIXTURES ===


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def memory_store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def result_cache(memory_store) -> ResultCache:
    return ResultCache(memory_store, ttl_hours=1, hot_hit_threshold=3, max_entries=10)


@pytest.fixture
def repository() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture
def build_lifecycle(repository, result_cache):
    """Factory: lifecycle around a given provider with shared repo and cache."""

    def _build(provider: BaseGenerationProvider | None = None, **kwargs) -> TaskLifecycle:
        gateway = make_gateway(provider or FakeProvider())
        return TaskLifecycle(repository, result_cache, gateway, **kwargs)

    return _build


@pytest.fixture
def past() -> datetime:
    return NOW - timedelta(days=30)
