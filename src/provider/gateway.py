# src/provider/gateway.py — v1
"""ProviderGateway: the only component that talks to the network.

Validates requests, submits jobs, polls them to completion under a
caller-supplied deadline and maps every failure into ProviderFailure or
ProviderTimeout. Nothing is retried here; callers decide.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from gen3d.core.errors import ProviderFailure, ProviderTimeout, ProviderValidationError
from gen3d.provider.base_provider import BaseGenerationProvider
from gen3d.provider.models import (
    SUPPORTED_RESULT_FORMATS,
    GatewayRequest,
    JobStatus,
    SubmitResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderGateway:
    """Validation, submission and polling over one provider adapter."""

    def __init__(
        self,
        provider: BaseGenerationProvider,
        max_prompt_length: int = 1024,
        poll_interval_s: float = 5.0,
        max_polls: int = 60,
        default_timeout_s: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._max_prompt_length = max_prompt_length
        self._poll_interval = poll_interval_s
        self._max_polls = max_polls
        self._default_timeout = default_timeout_s
        self._sleep = sleep

    @classmethod
    def from_settings(cls, provider: BaseGenerationProvider, settings) -> ProviderGateway:
        return cls(
            provider,
            max_prompt_length=settings.provider_max_prompt_length,
            poll_interval_s=settings.provider_poll_interval_s,
            max_polls=settings.provider_retry_count,
            default_timeout_s=settings.provider_timeout_s,
        )

    @property
    def provider_name(self) -> str:
        return self._provider.provider_name

    def validate(self, request: GatewayRequest) -> None:
        """Reject malformed requests before any network call.

        Raises:
            ProviderValidationError: On any violated rule.
        """
        has_prompt = request.prompt is not None
        has_image = bool(request.image_base64) or bool(request.image_url)

        if has_prompt and has_image:
            raise ProviderValidationError("prompt and image input are mutually exclusive")
        if not has_prompt and not has_image:
            raise ProviderValidationError("either a prompt or an image is required")
        if request.image_base64 and request.image_url:
            raise ProviderValidationError("image_base64 and image_url are mutually exclusive")
        if has_prompt:
            if not request.prompt.strip():
                raise ProviderValidationError("prompt must not be empty")
            if len(request.prompt) > self._max_prompt_length:
                raise ProviderValidationError(
                    f"prompt exceeds {self._max_prompt_length} characters "
                    f"({len(request.prompt)})"
                )
        if (
            request.result_format is not None
            and request.result_format.upper() not in SUPPORTED_RESULT_FORMATS
        ):
            raise ProviderValidationError(
                f"unsupported result format {request.result_format!r}; "
                f"expected one of {', '.join(sorted(SUPPORTED_RESULT_FORMATS))}"
            )

    async def _guarded(self, call: Awaitable[T], timeout: float | None) -> T:
        """Await ``call`` under ``timeout`` and map failures."""
        try:
            if timeout is None:
                return await call
            return await asyncio.wait_for(call, timeout)
        except ProviderFailure:
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProviderTimeout(f"Provider call timed out: {str(e) or 'deadline exceeded'}") from e
        except httpx.HTTPStatusError as e:
            raise ProviderFailure(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                code=f"HTTP{e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise ProviderFailure(f"Transport error: {e}", code="TransportError") from e

    async def submit(self, request: GatewayRequest, timeout: float | None = None) -> SubmitResult:
        self.validate(request)
        result = await self._guarded(self._provider.submit_job(request), timeout)
        logger.info("Submitted job %s to %s", result.external_job_id, self.provider_name)
        return result

    async def poll(self, external_job_id: str, timeout: float | None = None) -> JobStatus:
        return await self._guarded(self._provider.query_job(external_job_id), timeout)

    async def wait_for_completion(
        self, external_job_id: str, timeout: float | None = None
    ) -> JobStatus:
        """Poll until DONE.

        Raises:
            ProviderFailure: The job reported FAIL.
            ProviderTimeout: ``max_polls`` exhausted or ``timeout`` exceeded.
        """
        return await self._guarded(self._poll_loop(external_job_id), timeout)

    async def _poll_loop(self, external_job_id: str) -> JobStatus:
        for attempt in range(1, self._max_polls + 1):
            status = await self.poll(external_job_id)
            logger.debug(
                "Job %s poll %d/%d: %s", external_job_id, attempt, self._max_polls, status.status
            )
            if status.is_done:
                return status
            if status.is_failed:
                raise ProviderFailure(
                    status.error_message or "generation job failed",
                    code=status.error_code or "JobFailed",
                )
            if attempt < self._max_polls:
                await self._sleep(self._poll_interval)
        raise ProviderTimeout(
            f"Job {external_job_id} not finished after {self._max_polls} polls"
        )

    async def execute(self, request: GatewayRequest, timeout: float | None = None) -> JobStatus:
        """Submit and wait under one deadline (default ``default_timeout_s``)."""
        self.validate(request)
        deadline = self._default_timeout if timeout is None else timeout

        async def _run() -> JobStatus:
            submitted = await self.submit(request)
            return await self._poll_loop(submitted.external_job_id)

        return await self._guarded(_run(), deadline)

    async def aclose(self) -> None:
        await self._provider.aclose()
