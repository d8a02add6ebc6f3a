# src/api/facade.py — v2
"""Public API facade: single entry point for 3D generation.

Usage:
    from gen3d.api.facade import GenerationService
    async with GenerationService() as service:
        task = await service.generate_text("user-1", "A cube")

    # or, one-shot:
    from gen3d.api.facade import generate
    task = await generate(request)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from gen3d.api.models import GenerationParams, GenerationRequest, HealthReport
from gen3d.cache.cache_factory import create_cache_store
from gen3d.cache.models import CacheStatistics
from gen3d.cache.result_cache import ResultCache
from gen3d.config.settings import Settings
from gen3d.core.models import GenerationTask, utc_now
from gen3d.evaluation.scorer import HeuristicQualityScorer
from gen3d.provider.gateway import ProviderGateway
from gen3d.provider.provider_factory import create_provider
from gen3d.tasks.lifecycle import TaskLifecycle
from gen3d.tasks.repository import create_task_repository
from gen3d.version import __version__

if TYPE_CHECKING:
    from gen3d.cache.base_cache_store import BaseCacheStore
    from gen3d.evaluation.scorer import BaseQualityScorer
    from gen3d.provider.base_provider import BaseGenerationProvider
    from gen3d.tasks.repository import BaseTaskRepository

logger = logging.getLogger(__name__)


class GenerationService:
    """Owns the store, repository, gateway and lifecycle for one process.

    Every collaborator can be injected; anything left out is built from
    settings when the service is opened.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cache_store: BaseCacheStore | None = None,
        repository: BaseTaskRepository | None = None,
        provider: BaseGenerationProvider | None = None,
        scorer: BaseQualityScorer | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._store = cache_store
        self._repo = repository
        self._provider = provider
        self._scorer = scorer
        self._cache: ResultCache | None = None
        self._gateway: ProviderGateway | None = None
        self._lifecycle: TaskLifecycle | None = None

    async def __aenter__(self) -> GenerationService:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def open(self) -> None:
        if self._lifecycle is not None:
            return
        s = self.settings
        self._store = self._store or create_cache_store(s)
        self._repo = self._repo or create_task_repository(s)
        self._provider = self._provider or create_provider(s.provider_name, s)
        await self._store.open()
        await self._repo.open()

        self._cache = ResultCache.from_settings(self._store, s)
        self._gateway = ProviderGateway.from_settings(self._provider, s)
        self._lifecycle = TaskLifecycle.from_settings(
            s,
            self._repo,
            self._cache,
            self._gateway,
            scorer=self._scorer or HeuristicQualityScorer(),
        )
        logger.info(
            "Generation service ready (cache=%s, tasks=%s, provider=%s)",
            s.cache_backend, s.task_store_backend, s.provider_name,
        )

    async def close(self) -> None:
        if self._lifecycle is None:
            return
        await self._lifecycle.drain()
        await self._gateway.aclose()
        await self._store.close()
        await self._repo.close()
        self._lifecycle = None
        logger.info("Generation service closed")

    @property
    def lifecycle(self) -> TaskLifecycle:
        if self._lifecycle is None:
            raise RuntimeError("GenerationService is not open")
        return self._lifecycle

    @property
    def cache(self) -> ResultCache:
        if self._cache is None or self._lifecycle is None:
            raise RuntimeError("GenerationService is not open")
        return self._cache

    # === GENERATION ===

    async def generate(self, request: GenerationRequest) -> GenerationTask:
        """Run one request to a terminal state.

        Validation and provider problems do not raise; they come back as a
        FAILED task carrying ``error_message``.
        """
        params = request.params.as_params() if request.params else None
        return await self.lifecycle.submit(
            request.user_id,
            request.kind,
            request.input_content,
            params,
            timeout=request.timeout_s,
        )

    async def generate_text(
        self,
        user_id: str,
        prompt: str,
        params: GenerationParams | None = None,
        timeout_s: float | None = None,
    ) -> GenerationTask:
        return await self.generate(
            GenerationRequest(
                user_id=user_id, kind="TEXT", input_content=prompt,
                params=params, timeout_s=timeout_s,
            )
        )

    async def generate_image(
        self,
        user_id: str,
        image: str,
        params: GenerationParams | None = None,
        timeout_s: float | None = None,
    ) -> GenerationTask:
        """``image`` is either an http(s) URL or base64 data."""
        return await self.generate(
            GenerationRequest(
                user_id=user_id, kind="IMAGE", input_content=image,
                params=params, timeout_s=timeout_s,
            )
        )

    async def get_task(self, task_id: str) -> GenerationTask | None:
        return await self.lifecycle.get_task(task_id)

    async def list_user_tasks(self, user_id: str, limit: int | None = None) -> list[GenerationTask]:
        return await self.lifecycle.list_user_tasks(user_id, limit=limit)

    async def cancel(self, task_id: str) -> bool:
        return await self.lifecycle.cancel(task_id)

    # === CACHE MAINTENANCE ===

    async def cache_statistics(self) -> CacheStatistics:
        return await self.cache.statistics()

    async def sweep_cache(self) -> int:
        return await self.cache.sweep_expired()

    async def evict_cache(self, count: int | None = None) -> int:
        """Evict ``count`` entries, or enforce the capacity limit when None."""
        if count is None:
            return await self.cache.enforce_capacity()
        return await self.cache.evict(count)

    async def warm_up_cache(self, hours: float = 24, limit: int = 100) -> int:
        """Re-cache tasks completed in the last ``hours``."""
        since = utc_now() - timedelta(hours=hours)
        tasks = await self._repo.find_recent_completed(since, limit=limit)
        return await self.cache.warm_up(tasks)

    async def health(self) -> HealthReport:
        s = self.settings
        reachable = True
        entries = 0
        try:
            entries = await self.cache.store.count()
        except Exception as e:
            logger.warning("Cache store unreachable: %s", e)
            reachable = False
        ok = reachable and s.provider_configured
        return HealthReport(
            status="ok" if ok else "degraded",
            version=__version__,
            provider=s.provider_name,
            provider_configured=s.provider_configured,
            cache_enabled=s.cache_enabled,
            cache_backend=s.cache_backend,
            cache_entries=entries,
            cache_reachable=reachable,
            task_store_backend=s.task_store_backend,
            inflight_requests=len(self.lifecycle.inflight_keys),
        )


async def generate(
    request: GenerationRequest,
    settings: Settings | None = None,
) -> GenerationTask:
    """One-shot generation with a short-lived service."""
    async with GenerationService(settings=settings) as service:
        return await service.generate(request)
