# src/provider/models.py — v1
"""Provider-facing types: GatewayRequest, SubmitResult, JobStatus."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from gen3d.core.models import ResultReference

ProviderJobStatus = Literal["WAIT", "RUN", "DONE", "FAIL"]

SUPPORTED_RESULT_FORMATS: frozenset[str] = frozenset(
    {"OBJ", "GLB", "STL", "USDZ", "FBX", "MP4"}
)


class GatewayRequest(BaseModel):
    """One generation job as submitted to the provider.

    Exactly one of ``prompt`` or an image (base64 xor URL) must be set;
    the gateway enforces this before any network call.
    """

    prompt: str | None = None
    image_base64: str | None = None
    image_url: str | None = None
    result_format: str | None = None
    enable_pbr: bool | None = None


class ResultFile(BaseModel):
    """One produced file, as listed by the provider."""

    type: str | None = None
    url: str | None = None
    preview_image_url: str | None = None


class SubmitResult(BaseModel):
    external_job_id: str
    provider_status: ProviderJobStatus = "WAIT"
    request_id: str | None = None


class JobStatus(BaseModel):
    """Normalized answer to a job status query."""

    job_id: str
    status: ProviderJobStatus
    result_files: list[ResultFile] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    raw_response: Any = None

    @property
    def is_done(self) -> bool:
        return self.status == "DONE"

    @property
    def is_failed(self) -> bool:
        return self.status == "FAIL"

    def to_result_reference(self, preferred_format: str | None = None) -> ResultReference:
        """Pick the file matching ``preferred_format``, else the first one."""
        chosen: ResultFile | None = None
        if preferred_format:
            chosen = next(
                (f for f in self.result_files if (f.type or "").upper() == preferred_format.upper()),
                None,
            )
        if chosen is None and self.result_files:
            chosen = self.result_files[0]
        if chosen is None:
            return ResultReference(result_format=preferred_format or "OBJ")
        return ResultReference(
            asset_url=chosen.url,
            preview_url=chosen.preview_image_url,
            result_format=(chosen.type or preferred_format or "OBJ").upper(),
        )
