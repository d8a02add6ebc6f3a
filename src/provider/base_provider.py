# src/provider/base_provider.py — v1
"""Abstract 3D generation provider interface.

Adapters translate GatewayRequest into the provider's wire format. They
raise ProviderFailure for anything the provider rejects and let
httpx transport errors propagate to the gateway, which maps them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from gen3d.provider.models import GatewayRequest, JobStatus, SubmitResult


class BaseGenerationProvider(ABC):
    """Unified interface for 3D generation providers."""

    @abstractmethod
    async def submit_job(self, request: GatewayRequest) -> SubmitResult:
        """Submit a generation job."""

    @abstractmethod
    async def query_job(self, external_job_id: str) -> JobStatus:
        """Fetch the current status of a submitted job."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (hunyuan, ...)."""

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
