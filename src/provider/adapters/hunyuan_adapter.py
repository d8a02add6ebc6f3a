# src/provider/adapters/hunyuan_adapter.py — v1
"""Tencent Hunyuan 3D adapter implementing BaseGenerationProvider.

Signed JSON POSTs to ``https://<endpoint>/`` using httpx. Actions:
SubmitHunyuanTo3DJob and QueryHunyuanTo3DJob. Every response is wrapped
in ``{"Response": {...}}``; an ``Error`` object inside it means the call
was rejected.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from gen3d.core.errors import ProviderFailure
from gen3d.provider.base_provider import BaseGenerationProvider
from gen3d.provider.models import GatewayRequest, JobStatus, ResultFile, SubmitResult
from gen3d.provider.signer import TC3_SCHEME, RequestSigner, serialize_payload

logger = logging.getLogger(__name__)

SUBMIT_ACTION = "SubmitHunyuanTo3DJob"
QUERY_ACTION = "QueryHunyuanTo3DJob"


class HunyuanProvider(BaseGenerationProvider):
    """Hunyuan To3D job API client."""

    def __init__(
        self,
        secret_id: str = "",
        secret_key: str = "",
        endpoint: str = "ai3d.tencentcloudapi.com",
        service: str = "ai3d",
        version: str = "2025-05-13",
        region: str | None = "ap-guangzhou",
        request_timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        **kwargs: Any,
    ) -> None:
        self._endpoint = endpoint
        self._has_key = bool(secret_key)
        self._signer = RequestSigner(
            secret_id=secret_id,
            secret_key=secret_key,
            service=service,
            host=endpoint,
            version=version,
            region=region,
            scheme=TC3_SCHEME,
        )
        self._timeout = httpx.Timeout(
            connect=5.0, read=request_timeout_s, write=10.0, pool=5.0
        )
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None

    @property
    def provider_name(self) -> str:
        return "hunyuan"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def _call(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._signer.secret_id or not self._has_key:
            raise ProviderFailure("Provider credentials are not configured", code="AuthFailure")
        body = serialize_payload(payload)
        headers = self._signer.build_headers(action, body, int(self._clock()))

        response = await self._get_client().post(
            f"https://{self._endpoint}/", content=body.encode("utf-8"), headers=headers
        )
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderFailure(f"Malformed provider response: {e}", code="BadResponse") from e

        inner = data.get("Response") if isinstance(data, dict) else None
        if not isinstance(inner, dict):
            raise ProviderFailure("Provider response has no 'Response' envelope", code="BadResponse")

        error = inner.get("Error")
        if error:
            raise ProviderFailure(
                error.get("Message", "unknown provider error"), code=error.get("Code")
            )
        return inner

    async def submit_job(self, request: GatewayRequest) -> SubmitResult:
        payload: dict[str, Any] = {}
        if request.prompt:
            payload["Prompt"] = request.prompt
        if request.image_base64:
            payload["ImageBase64"] = request.image_base64
        if request.image_url:
            payload["ImageUrl"] = request.image_url
        if request.result_format:
            payload["ResultFormat"] = request.result_format
        if request.enable_pbr is not None:
            payload["EnablePBR"] = request.enable_pbr

        inner = await self._call(SUBMIT_ACTION, payload)
        job_id = inner.get("JobId")
        if not job_id:
            raise ProviderFailure("Submit response carries no JobId", code="BadResponse")
        logger.info("Hunyuan job submitted: %s", job_id)
        return SubmitResult(external_job_id=job_id, request_id=inner.get("RequestId"))

    async def query_job(self, external_job_id: str) -> JobStatus:
        inner = await self._call(QUERY_ACTION, {"JobId": external_job_id})
        status = inner.get("Status", "")
        if status not in ("WAIT", "RUN", "DONE", "FAIL"):
            raise ProviderFailure(f"Unknown job status {status!r}", code="BadResponse")

        files = [
            ResultFile(
                type=f.get("Type"),
                url=f.get("Url"),
                preview_image_url=f.get("PreviewImageUrl"),
            )
            for f in inner.get("ResultFile3Ds") or []
        ]
        return JobStatus(
            job_id=external_job_id,
            status=status,
            result_files=files,
            error_code=inner.get("ErrorCode") or None,
            error_message=inner.get("ErrorMessage") or None,
            raw_response=inner,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
