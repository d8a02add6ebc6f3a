# tests/unit/tasks/test_lifecycle.py — v2
"""Tests for tasks/lifecycle.py — cache hits, coalescing, cancellation."""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest

from conftest import FakeProvider, make_entry, make_task
from gen3d.cache.keyer import cache_key, fingerprint
from gen3d.core import similarity
from gen3d.core.errors import GenerationValidationError, ProviderFailure
from gen3d.core.models import CANCELLED_MESSAGE, ResultReference
from gen3d.evaluation.scorer import HeuristicQualityScorer


async def _wait_for(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_first_request_calls_provider(self, build_lifecycle, result_cache):
        provider = FakeProvider(statuses=["RUN", "DONE"])
        lc = build_lifecycle(provider)
        task = await lc.submit("user-1", "TEXT", "A cube")

        assert task.status == "COMPLETED"
        assert task.cache_key == cache_key("A cube", "TEXT")
        assert task.input_hash == fingerprint("A cube", "TEXT")
        assert task.result.asset_url == "https://cdn.example.com/job-1.obj"
        assert task.external_job_id == "job-1"
        assert task.provider == "fake"
        assert task.processing_time_ms >= 1
        assert task.from_cache is False
        assert provider.submit_calls == 1
        assert provider.requests[0].prompt == "A cube"
        assert provider.requests[0].result_format == "OBJ"
        assert await result_cache.find_exact(task.cache_key) is not None

    @pytest.mark.asyncio
    async def test_repeat_request_is_cached(self, build_lifecycle, result_cache):
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        first = await lc.submit("user-1", "TEXT", "A cube")
        second = await lc.submit("user-2", "TEXT", "A cube")

        assert second.status == "CACHED"
        assert second.from_cache is True
        assert second.processing_time_ms == 0
        assert second.result == first.result
        assert provider.submit_calls == 1

        stats = await result_cache.statistics()
        assert stats.hits == 1
        assert stats.misses == 1
        entry = await result_cache.find_exact(first.cache_key)
        assert entry.hit_count == 1

    @pytest.mark.asyncio
    async def test_task_persisted(self, build_lifecycle, repository):
        lc = build_lifecycle()
        task = await lc.submit("user-1", "TEXT", "A cube")
        stored = await repository.find_by_task_id(task.task_id)
        assert stored.status == "COMPLETED"
        assert stored.complete_time is not None
        assert [t.task_id for t in await lc.list_user_tasks("user-1")] == [task.task_id]
        assert (await lc.get_task(task.task_id)).task_id == task.task_id

    @pytest.mark.asyncio
    async def test_params_are_part_of_key(self, build_lifecycle):
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        glb = await lc.submit("user-1", "TEXT", "A cube", {"result_format": "GLB"})
        plain = await lc.submit("user-1", "TEXT", "A cube")

        assert glb.cache_key != plain.cache_key
        assert plain.status == "COMPLETED"
        assert provider.submit_calls == 2
        assert provider.requests[0].result_format == "GLB"

    @pytest.mark.asyncio
    async def test_cache_disabled(self, build_lifecycle, result_cache):
        provider = FakeProvider()
        lc = build_lifecycle(provider, cache_enabled=False)
        await lc.submit("user-1", "TEXT", "A cube")
        second = await lc.submit("user-1", "TEXT", "A cube")
        assert second.status == "COMPLETED"
        assert provider.submit_calls == 2
        assert (await result_cache.statistics()).total_entries == 0


class TestImageInput:
    @pytest.mark.asyncio
    async def test_url_input(self, build_lifecycle):
        provider = FakeProvider()
        await build_lifecycle(provider).submit("user-1", "IMAGE", "https://img.example.com/chair.png")
        assert provider.requests[0].image_url == "https://img.example.com/chair.png"
        assert provider.requests[0].prompt is None

    @pytest.mark.asyncio
    async def test_data_uri_input(self, build_lifecycle):
        provider = FakeProvider()
        await build_lifecycle(provider).submit("user-1", "IMAGE", "data:image/png;base64,aGVsbG8=")
        assert provider.requests[0].image_base64 == "aGVsbG8="

    @pytest.mark.asyncio
    async def test_large_payloads_skip_similarity(self, build_lifecycle, monkeypatch):
        ranked = []
        monkeypatch.setattr(similarity, "rank", lambda *args: ranked.append(args) or [])
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        first = base64.b64encode(bytes(range(256)) * 600).decode()
        second = base64.b64encode(bytes(reversed(range(256))) * 600).decode()

        a = await lc.submit("user-1", "IMAGE", first)
        b = await lc.submit("user-1", "IMAGE", second)

        assert len(second) > 200_000
        assert [a.status, b.status] == ["COMPLETED", "COMPLETED"]
        assert provider.submit_calls == 2
        assert ranked == []

    @pytest.mark.asyncio
    async def test_repeated_image_is_exact_hit(self, build_lifecycle):
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        payload = base64.b64encode(bytes(range(256)) * 600).decode()
        await lc.submit("user-1", "IMAGE", payload)
        again = await lc.submit("user-2", "IMAGE", payload)
        assert again.status == "CACHED"
        assert provider.submit_calls == 1


class TestValidation:
    @pytest.mark.asyncio
    async def test_empty_prompt_fails_without_provider(self, build_lifecycle):
        provider = FakeProvider()
        task = await build_lifecycle(provider).submit("user-1", "TEXT", "   ")
        assert task.status == "FAILED"
        assert "must not be empty" in task.error_message
        assert provider.submit_calls == 0

    @pytest.mark.asyncio
    async def test_prompt_too_long(self, build_lifecycle):
        task = await build_lifecycle().submit("user-1", "TEXT", "x" * 2000)
        assert task.status == "FAILED"
        assert "exceeds" in task.error_message

    @pytest.mark.asyncio
    async def test_unknown_kind(self, build_lifecycle):
        with pytest.raises(GenerationValidationError, match="kind"):
            await build_lifecycle().create_task("user-1", "VIDEO", "A cube")

    @pytest.mark.asyncio
    async def test_unserializable_params(self, build_lifecycle):
        with pytest.raises(GenerationValidationError):
            await build_lifecycle().create_task("user-1", "TEXT", "A cube", {"x": object()})

    @pytest.mark.asyncio
    async def test_kind_is_normalized(self, build_lifecycle):
        task = await build_lifecycle().create_task("user-1", "text", "A cube")
        assert task.kind == "TEXT"
        assert task.status == "PENDING"


class TestProviderErrors:
    @pytest.mark.asyncio
    async def test_job_failure(self, build_lifecycle, result_cache):
        task = await build_lifecycle(FakeProvider(statuses=["FAIL"])).submit("user-1", "TEXT", "A cube")
        assert task.status == "FAILED"
        assert "mesh generation failed" in task.error_message
        assert task.complete_time is not None
        assert await result_cache.find_exact(task.cache_key) is None

    @pytest.mark.asyncio
    async def test_unexpected_error(self, build_lifecycle):
        provider = FakeProvider(submit_error=RuntimeError("kaboom"))
        task = await build_lifecycle(provider).submit("user-1", "TEXT", "A cube")
        assert task.status == "FAILED"
        assert task.error_message == "Unexpected error: kaboom"

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, build_lifecycle):
        lc = build_lifecycle(FakeProvider(submit_error=ProviderFailure("quota", code="LimitExceeded")))
        await lc.submit("user-1", "TEXT", "A cube")
        assert lc.inflight_keys == []


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_identical_requests_share_one_call(self, build_lifecycle):
        provider = FakeProvider(submit_delay=0.05)
        lc = build_lifecycle(provider)
        first, second = await asyncio.gather(
            lc.submit("user-1", "TEXT", "A cube"),
            lc.submit("user-2", "TEXT", "A cube"),
        )
        assert provider.submit_calls == 1
        assert first.status == "COMPLETED"
        assert second.status == "COMPLETED"
        assert first.result == second.result
        assert second.external_job_id == "job-1"
        assert lc.inflight_keys == []

    @pytest.mark.asyncio
    async def test_followers_share_failure(self, build_lifecycle):
        provider = FakeProvider(
            submit_delay=0.05, submit_error=ProviderFailure("quota", code="LimitExceeded")
        )
        lc = build_lifecycle(provider)
        results = await asyncio.gather(
            lc.submit("user-1", "TEXT", "A cube"),
            lc.submit("user-2", "TEXT", "A cube"),
        )
        assert provider.submit_calls == 1
        assert [t.status for t in results] == ["FAILED", "FAILED"]
        assert all("quota" in t.error_message for t in results)

    @pytest.mark.asyncio
    async def test_different_inputs_run_in_parallel(self, build_lifecycle):
        provider = FakeProvider(submit_delay=0.01)
        lc = build_lifecycle(provider, similarity_enabled=False)
        await asyncio.gather(
            lc.submit("user-1", "TEXT", "A cube"),
            lc.submit("user-1", "TEXT", "A sphere"),
        )
        assert provider.submit_calls == 2


class TestFallbackLookup:
    @pytest.mark.asyncio
    async def test_completed_task_repopulates_cache(self, build_lifecycle, repository, result_cache):
        key = cache_key("A cube", "TEXT")
        done = make_task(
            status="COMPLETED",
            input_hash=fingerprint("A cube", "TEXT"),
            cache_key=key,
            result=ResultReference(asset_url="https://cdn.example.com/old.obj"),
        )
        await repository.save(done)
        provider = FakeProvider()

        task = await build_lifecycle(provider).submit("user-2", "TEXT", "A cube")

        assert task.status == "CACHED"
        assert task.result.asset_url == "https://cdn.example.com/old.obj"
        assert provider.submit_calls == 0
        assert (await result_cache.find_exact(key)).source_task_id == done.task_id

    @pytest.mark.asyncio
    async def test_similar_cache_entry(self, build_lifecycle, result_cache):
        near_key = cache_key("A red cube", "TEXT")
        await result_cache.put(make_entry(near_key, input_content="A red cube"))
        provider = FakeProvider()

        task = await build_lifecycle(provider).submit("user-1", "TEXT", "A red cube!")

        assert task.status == "CACHED"
        assert task.cache_key == near_key
        assert provider.submit_calls == 0

    @pytest.mark.asyncio
    async def test_similar_completed_task(self, build_lifecycle, repository, result_cache):
        near_key = cache_key("A red cube", "TEXT")
        await repository.save(
            make_task(
                status="COMPLETED",
                input_content="A red cube",
                input_hash=fingerprint("A red cube", "TEXT"),
                cache_key=near_key,
                result=ResultReference(asset_url="https://cdn.example.com/red.obj"),
            )
        )
        task = await build_lifecycle(FakeProvider()).submit("user-1", "TEXT", "A red cube!")

        assert task.status == "CACHED"
        assert task.result.asset_url == "https://cdn.example.com/red.obj"
        assert await result_cache.find_exact(near_key) is not None

    @pytest.mark.asyncio
    async def test_similarity_disabled(self, build_lifecycle, result_cache):
        await result_cache.put(make_entry(cache_key("A red cube", "TEXT"), input_content="A red cube"))
        provider = FakeProvider()
        task = await build_lifecycle(provider, similarity_enabled=False).submit(
            "user-1", "TEXT", "A red cube!"
        )
        assert task.status == "COMPLETED"
        assert provider.submit_calls == 1

    @pytest.mark.asyncio
    async def test_dissimilar_input_misses(self, build_lifecycle, result_cache):
        await result_cache.put(make_entry(cache_key("A red cube", "TEXT"), input_content="A red cube"))
        provider = FakeProvider()
        await build_lifecycle(provider).submit("user-1", "TEXT", "A wooden chair")
        assert provider.submit_calls == 1

    @pytest.mark.asyncio
    async def test_ranking_error_is_miss(self, build_lifecycle, result_cache, monkeypatch):
        def _boom(*_args):
            raise MemoryError("table too large")

        await result_cache.put(make_entry(cache_key("A red cube", "TEXT"), input_content="A red cube"))
        monkeypatch.setattr(similarity, "rank", _boom)
        provider = FakeProvider()

        task = await build_lifecycle(provider).submit("user-1", "TEXT", "A red cube!")

        assert task.status == "COMPLETED"
        assert provider.submit_calls == 1

    @pytest.mark.asyncio
    async def test_repository_error_is_miss(self, build_lifecycle, repository, monkeypatch):
        monkeypatch.setattr(
            repository, "find_by_input_hash", AsyncMock(side_effect=ConnectionError("db down"))
        )
        provider = FakeProvider()

        task = await build_lifecycle(provider).submit("user-1", "TEXT", "A cube")

        assert task.status == "COMPLETED"
        assert provider.submit_calls == 1


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending(self, build_lifecycle):
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        task = await lc.create_task("user-1", "TEXT", "A cube")

        assert await lc.cancel(task.task_id) is True
        result = await lc.process(task)

        assert result.status == "FAILED"
        assert result.error_message == CANCELLED_MESSAGE
        assert provider.submit_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_terminal(self, build_lifecycle):
        lc = build_lifecycle()
        assert await lc.cancel("nope") is False
        done = await lc.submit("user-1", "TEXT", "A cube")
        assert await lc.cancel(done.task_id) is False

    @pytest.mark.asyncio
    async def test_late_result_still_cached(self, build_lifecycle, result_cache, repository):
        provider = FakeProvider(submit_delay=0.05)
        lc = build_lifecycle(provider)
        task = await lc.create_task("user-1", "TEXT", "A cube")
        running = asyncio.create_task(lc.process(task))
        await _wait_for(lambda: provider.submit_calls == 1)

        assert (await repository.find_by_task_id(task.task_id)).status == "PROCESSING"
        assert await lc.cancel(task.task_id) is True
        result = await running

        assert result.status == "FAILED"
        assert result.error_message == CANCELLED_MESSAGE
        assert (await repository.find_by_task_id(task.task_id)).status == "FAILED"
        assert await result_cache.find_exact(cache_key("A cube", "TEXT")) is not None

    @pytest.mark.asyncio
    async def test_process_terminal_task_is_noop(self, build_lifecycle):
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        done = await lc.submit("user-1", "TEXT", "A cube")
        again = await lc.process(done)
        assert again.status == "COMPLETED"
        assert provider.submit_calls == 1

    @pytest.mark.asyncio
    async def test_no_per_task_state_left_behind(self, build_lifecycle):
        provider = FakeProvider(submit_delay=0.05)
        lc = build_lifecycle(provider)
        assert await lc.cancel("nope") is False

        pending = await lc.create_task("user-1", "TEXT", "A sphere")
        await lc.cancel(pending.task_id)
        await lc.process(pending)

        task = await lc.create_task("user-1", "TEXT", "A cube")
        running = asyncio.create_task(lc.process(task))
        await _wait_for(lambda: provider.submit_calls == 1)
        await lc.cancel(task.task_id)
        await running

        assert lc._task_locks == {}


class TestCacheStatistics:
    @pytest.mark.asyncio
    async def test_queued_leader_hit_counts_once(self, build_lifecycle, result_cache, monkeypatch):
        key = cache_key("A cube", "TEXT")
        await result_cache.put(make_entry(key))
        provider = FakeProvider()
        lc = build_lifecycle(provider)
        monkeypatch.setattr(lc, "_lookup", AsyncMock(return_value=None))

        task = await lc.submit("user-1", "TEXT", "A cube")

        assert task.status == "CACHED"
        assert provider.submit_calls == 0
        stats = await result_cache.statistics()
        assert (stats.hits, stats.misses) == (1, 0)

    @pytest.mark.asyncio
    async def test_follower_counts_one_miss(self, build_lifecycle, result_cache):
        lc = build_lifecycle(FakeProvider(submit_delay=0.1))
        await asyncio.gather(
            lc.submit("user-1", "TEXT", "A cube"),
            lc.submit("user-2", "TEXT", "A cube"),
        )
        stats = await result_cache.statistics()
        assert (stats.hits, stats.misses) == (0, 2)


class TestScoring:
    @pytest.mark.asyncio
    async def test_quality_written_back(self, build_lifecycle, repository, result_cache):
        lc = build_lifecycle(FakeProvider(), scorer=HeuristicQualityScorer())
        task = await lc.submit("user-1", "TEXT", "A cube")
        await lc.drain()

        # 0.3 * 85 + 0.4 * 78 + 0.3 * 100
        stored = await repository.find_by_task_id(task.task_id)
        assert stored.quality_score == pytest.approx(86.7)
        entry = await result_cache.find_exact(task.cache_key)
        assert entry.quality_score == pytest.approx(86.7)

        cached = await lc.submit("user-2", "TEXT", "A cube")
        assert cached.quality_score == pytest.approx(86.7)

    @pytest.mark.asyncio
    async def test_scoring_failure_is_logged(self, build_lifecycle, repository):
        class BrokenScorer(HeuristicQualityScorer):
            async def assess(self, result, processing_time_ms=None):
                raise RuntimeError("scorer down")

        lc = build_lifecycle(FakeProvider(), scorer=BrokenScorer())
        task = await lc.submit("user-1", "TEXT", "A cube")
        await lc.drain()
        stored = await repository.find_by_task_id(task.task_id)
        assert stored.status == "COMPLETED"
        assert stored.quality_score is None
