# src/tasks/lifecycle.py — v2
"""TaskLifecycle: one request from PENDING to a terminal state.

Lookup order on every request:
  1. exact cache hit                       -> CACHED
  2. completed task with same fingerprint  -> cache repopulated, CACHED
  3. similar cache entry, then similar completed task -> CACHED
  4. provider call, coalesced per cache key -> COMPLETED | FAILED

At most one provider submission runs per cache key. Later identical
requests attach to the running one as followers and share its outcome
without calling the provider or writing the cache. Cancellation only
changes task state; a provider call already running is left to finish and
its result still lands in the cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from gen3d.cache import keyer
from gen3d.cache.models import CacheEntry
from gen3d.cache.result_cache import ResultCache, entry_from_task, tier_of_task
from gen3d.core import similarity
from gen3d.core.errors import Gen3DError, GenerationValidationError
from gen3d.core.models import (
    CANCELLED_MESSAGE,
    GenerationTask,
    ResultReference,
    TaskStatus,
)
from gen3d.evaluation.scorer import BaseQualityScorer
from gen3d.logging.context import set_stage, task_context
from gen3d.provider.gateway import ProviderGateway
from gen3d.provider.models import GatewayRequest
from gen3d.tasks.repository import BaseTaskRepository
from gen3d.tasks.state import transition

logger = logging.getLogger(__name__)

_SUPPORTED_KINDS = ("TEXT", "IMAGE")
# Only prompts are compared by similarity; image inputs match exactly or not at all.
_FUZZY_KINDS = ("TEXT",)


@dataclass(frozen=True)
class _SharedOutcome:
    """What a leader hands to the followers of its cache key."""

    result: ResultReference
    external_job_id: str | None
    provider: str | None


class TaskLifecycle:
    """Orchestrates cache lookup, provider dispatch and completion."""

    def __init__(
        self,
        repository: BaseTaskRepository,
        cache: ResultCache,
        gateway: ProviderGateway,
        scorer: BaseQualityScorer | None = None,
        cache_enabled: bool = True,
        similarity_enabled: bool = True,
        similarity_threshold: float = 0.85,
        similarity_max_candidates: int = 50,
        max_similarity_length: int = 1024,
        default_result_format: str = "OBJ",
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._gateway = gateway
        self._scorer = scorer
        self._cache_enabled = cache_enabled
        self._similarity_enabled = similarity_enabled
        self._threshold = similarity_threshold
        self._max_candidates = similarity_max_candidates
        self._max_similarity_length = max_similarity_length
        self._default_format = default_result_format

        self._inflight: dict[str, asyncio.Future[_SharedOutcome]] = {}
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings,
        repository: BaseTaskRepository,
        cache: ResultCache,
        gateway: ProviderGateway,
        scorer: BaseQualityScorer | None = None,
    ) -> TaskLifecycle:
        return cls(
            repository,
            cache,
            gateway,
            scorer=scorer,
            cache_enabled=settings.cache_enabled,
            similarity_enabled=settings.similarity_enabled,
            similarity_threshold=settings.similarity_threshold,
            similarity_max_candidates=settings.similarity_max_candidates,
            max_similarity_length=settings.provider_max_prompt_length,
            default_result_format=settings.provider_default_result_format,
        )

    @property
    def inflight_keys(self) -> list[str]:
        return list(self._inflight)

    # === PUBLIC OPERATIONS ===

    async def create_task(
        self,
        user_id: str,
        kind: str,
        input_content: str,
        params: Mapping[str, Any] | None = None,
    ) -> GenerationTask:
        """Persist a new PENDING task.

        Raises:
            GenerationValidationError: Unknown kind or unserializable params.
        """
        kind = (kind or "").upper()
        if kind not in _SUPPORTED_KINDS:
            raise GenerationValidationError(f"unsupported generation kind {kind!r}")
        try:
            serialized = json.dumps(dict(params), sort_keys=True) if params else None
        except (TypeError, ValueError) as e:
            raise GenerationValidationError(f"generation params are not serializable: {e}") from e

        task = GenerationTask(
            user_id=user_id,
            kind=kind,
            input_content=input_content,
            generation_params=serialized,
        )
        await self._repo.save(task)
        logger.info("Task %s created for user %s (%s)", task.task_id, user_id, kind)
        return task

    async def submit(
        self,
        user_id: str,
        kind: str,
        input_content: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> GenerationTask:
        task = await self.create_task(user_id, kind, input_content, params)
        return await self.process(task, timeout=timeout)

    async def process(self, task: GenerationTask, timeout: float | None = None) -> GenerationTask:
        """Drive ``task`` to a terminal state and return it."""
        stored = await self._repo.find_by_task_id(task.task_id)
        if task.is_terminal or (stored is not None and stored.is_terminal):
            return stored or task

        params = self._params_of(task)
        task.input_hash = keyer.fingerprint(task.input_content, task.kind)
        task.cache_key = keyer.cache_key(task.input_content, task.kind, params)
        tier = keyer.quality_tier(params)

        with task_context(task.task_id, task.user_id, task.cache_key):
            request = self._build_request(task, params)
            try:
                self._gateway.validate(request)
            except GenerationValidationError as e:
                logger.info("Task %s rejected: %s", task.task_id, e)
                return await self._advance(task, "FAILED", error_message=str(e))

            if self._cache_enabled:
                try:
                    entry = await self._lookup(task, tier)
                except Exception as e:
                    logger.warning("Cache lookup failed, treating as miss: %s", e)
                    entry = None
                if entry is not None:
                    return await self._complete_from_cache(task, entry)

            set_stage("provider")
            return await self._dispatch(task, request, tier, timeout)

    async def cancel(self, task_id: str) -> bool:
        """Fail a PENDING or PROCESSING task. False if unknown or already terminal."""
        async with self._lock_for(task_id):
            task = await self._repo.find_by_task_id(task_id)
            cancelled = task is not None and not task.is_terminal
            if cancelled:
                transition(task, "FAILED", error_message=CANCELLED_MESSAGE)
                await self._repo.update(task)
        self._drop_lock(task_id)
        if cancelled:
            logger.info("Task %s cancelled", task_id)
        return cancelled

    async def get_task(self, task_id: str) -> GenerationTask | None:
        return await self._repo.find_by_task_id(task_id)

    async def list_user_tasks(self, user_id: str, limit: int | None = None) -> list[GenerationTask]:
        return await self._repo.find_by_user_id(user_id, limit=limit)

    async def drain(self) -> None:
        """Wait for background quality scoring to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # === LOOKUP ===

    async def _lookup(self, task: GenerationTask, tier: str | None) -> CacheEntry | None:
        key = task.cache_key
        set_stage("cache_lookup")
        entry = await self._cache.find_exact(key)
        if entry is not None:
            logger.info("Exact cache hit")
            return entry

        if task.input_hash:
            set_stage("repository_fallback")
            for done in await self._repo.find_by_input_hash(task.input_hash):
                if done.status == "COMPLETED" and done.result is not None and done.cache_key == key:
                    logger.info("Repopulating cache from task %s", done.task_id)
                    return await self._repopulate(done, tier)

        if (
            not self._similarity_enabled
            or task.kind not in _FUZZY_KINDS
            or len(task.input_content) > self._max_similarity_length
        ):
            return None

        set_stage("similarity")
        matches = await self._cache.find_similar(
            task.input_content, self._threshold, kind=task.kind, quality_tier=tier
        )
        if matches:
            logger.info("Similar cache hit (%.3f)", matches[0].similarity)
            return matches[0].entry

        candidates = [
            (t.input_content, t, t.complete_time, 0)
            for t in await self._repo.find_similar_completed_tasks(task.kind, self._max_candidates)
            if t.result is not None
            and t.cache_key
            and tier_of_task(t) == tier
            and len(t.input_content) <= self._max_similarity_length
        ]
        try:
            ranked = await asyncio.to_thread(
                similarity.rank, task.input_content, candidates, self._threshold
            )
        except Exception as e:
            logger.warning("Similar task lookup failed, treating as miss: %s", e)
            return None
        if ranked:
            best = ranked[0]
            logger.info("Similar task hit %s (%.3f)", best.item.task_id, best.score)
            return await self._repopulate(best.item, tier)
        return None

    async def _repopulate(self, done: GenerationTask, tier: str | None) -> CacheEntry:
        entry = entry_from_task(done, tier)
        stored = await self._cache.put(entry)
        return stored or entry

    async def _complete_from_cache(self, task: GenerationTask, entry: CacheEntry) -> GenerationTask:
        entry = await self._cache.record_hit(entry)
        return await self._advance(
            task,
            "CACHED",
            result=entry.result,
            quality_score=entry.quality_score,
            cache_key=entry.cache_key,
        )

    # === DISPATCH ===

    async def _dispatch(
        self,
        task: GenerationTask,
        request: GatewayRequest,
        tier: str | None,
        timeout: float | None,
    ) -> GenerationTask:
        key = task.cache_key
        leader_future = self._inflight.get(key)
        if leader_future is not None:
            if self._cache_enabled:
                self._cache.record_miss(key)
            return await self._follow(task, leader_future)

        future: asyncio.Future[_SharedOutcome] = asyncio.get_running_loop().create_future()
        if not keyer.is_fallback_key(key):
            self._inflight[key] = future
        try:
            return await self._lead(task, request, tier, timeout, future)
        except BaseException as e:
            if not future.done():
                error = e if isinstance(e, Exception) else Gen3DError("generation aborted")
                future.set_exception(error)
                future.exception()
            raise
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    async def _lead(
        self,
        task: GenerationTask,
        request: GatewayRequest,
        tier: str | None,
        timeout: float | None,
        future: asyncio.Future[_SharedOutcome],
    ) -> GenerationTask:
        key = task.cache_key
        if self._cache_enabled:
            entry = await self._cache.find_exact(key)
            if entry is not None:
                logger.info("Cache filled while queued, skipping provider")
                future.set_result(_SharedOutcome(entry.result, None, None))
                return await self._complete_from_cache(task, entry)
            self._cache.record_miss(key)

        task = await self._advance(task, "PROCESSING")
        if task.is_terminal:
            future.set_exception(Gen3DError(task.error_message or CANCELLED_MESSAGE))
            future.exception()
            return task

        try:
            status = await self._gateway.execute(request, timeout=timeout)
        except Gen3DError as e:
            logger.warning("Provider call failed: %s", e)
            future.set_exception(e)
            future.exception()
            return await self._advance(task, "FAILED", error_message=str(e))
        except Exception as e:
            logger.exception("Unexpected error during provider call")
            future.set_exception(e)
            future.exception()
            return await self._advance(task, "FAILED", error_message=f"Unexpected error: {e}")

        outcome = _SharedOutcome(
            result=status.to_result_reference(request.result_format),
            external_job_id=status.job_id,
            provider=self._gateway.provider_name,
        )
        if self._cache_enabled:
            await self._cache.put(
                CacheEntry(
                    cache_key=key,
                    fingerprint=task.input_hash,
                    input_content=task.input_content,
                    kind=task.kind,
                    quality_tier=tier,
                    result=outcome.result,
                    source_task_id=task.task_id,
                )
            )
        future.set_result(outcome)

        task = await self._advance(
            task,
            "COMPLETED",
            result=outcome.result,
            external_job_id=outcome.external_job_id,
            provider=outcome.provider,
        )
        if task.status == "COMPLETED":
            self._schedule_scoring(task)
        return task

    async def _follow(
        self, task: GenerationTask, leader: asyncio.Future[_SharedOutcome]
    ) -> GenerationTask:
        logger.info("Identical request in flight, waiting for it")
        task = await self._advance(task, "PROCESSING")
        if task.is_terminal:
            return task
        try:
            outcome = await asyncio.shield(leader)
        except Exception as e:
            return await self._advance(task, "FAILED", error_message=str(e))
        return await self._advance(
            task,
            "COMPLETED",
            result=outcome.result,
            external_job_id=outcome.external_job_id,
            provider=outcome.provider,
        )

    # === HELPERS ===

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._task_locks.get(task_id)
        if lock is None:
            lock = self._task_locks[task_id] = asyncio.Lock()
        return lock

    def _drop_lock(self, task_id: str) -> None:
        lock = self._task_locks.get(task_id)
        if lock is not None and not lock.locked():
            del self._task_locks[task_id]

    async def _advance(self, task: GenerationTask, target: TaskStatus, **changes: Any) -> GenerationTask:
        """Apply a transition unless the stored task is already terminal.

        A task cancelled while this request was running stays FAILED; the
        stored copy is returned instead.
        """
        async with self._lock_for(task.task_id):
            stored = await self._repo.find_by_task_id(task.task_id)
            if stored is not None and stored.is_terminal:
                logger.info("Task %s is already %s, keeping it", task.task_id, stored.status)
                task = stored
            else:
                transition(task, target, **changes)
                await self._repo.update(task)
                if not task.is_terminal:
                    return task
        self._drop_lock(task.task_id)
        if task is not stored:
            logger.info(
                "Task %s %s in %s ms", task.task_id, task.status, task.processing_time_ms
            )
        return task

    def _params_of(self, task: GenerationTask) -> dict[str, Any] | None:
        if not task.generation_params:
            return None
        try:
            params = json.loads(task.generation_params)
        except ValueError:
            logger.warning("Task %s has unreadable generation params", task.task_id)
            return None
        return params if isinstance(params, dict) else None

    def _build_request(self, task: GenerationTask, params: Mapping[str, Any] | None) -> GatewayRequest:
        params = params or {}
        result_format = params.get("result_format") or self._default_format
        common: dict[str, Any] = {
            "result_format": str(result_format).upper(),
            "enable_pbr": params.get("enable_pbr"),
        }
        if task.kind == "TEXT":
            return GatewayRequest(prompt=task.input_content, **common)

        content = task.input_content.strip()
        if content.startswith(("http://", "https://")):
            return GatewayRequest(image_url=content, **common)
        if content.startswith("data:") and "," in content:
            content = content.split(",", 1)[1]
        return GatewayRequest(image_base64=content or None, **common)

    def _schedule_scoring(self, task: GenerationTask) -> None:
        if self._scorer is None or task.result is None:
            return
        job = asyncio.create_task(
            self._score(task.task_id, task.cache_key, task.result, task.processing_time_ms)
        )
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    async def _score(
        self,
        task_id: str,
        cache_key: str | None,
        result: ResultReference,
        processing_time_ms: int | None,
    ) -> None:
        try:
            assessment = await self._scorer.assess(result, processing_time_ms)
            score = assessment.overall_score
            stored = await self._repo.find_by_task_id(task_id)
            if stored is not None:
                stored.quality_score = score
                await self._repo.update(stored)
            if cache_key and self._cache_enabled:
                await self._cache.set_quality(cache_key, score)
            logger.debug("Task %s quality %.1f", task_id, score)
        except Exception as e:
            logger.warning("Quality scoring failed for task %s: %s", task_id, e)
