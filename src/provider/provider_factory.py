# src/provider/provider_factory.py — v1
"""Factory: instantiate a generation provider from its name.

Adding a provider means implementing BaseGenerationProvider and
registering its class path here or via register_provider().
"""

from __future__ import annotations

import importlib
import logging

from gen3d.config.settings import Settings
from gen3d.provider.base_provider import BaseGenerationProvider

logger = logging.getLogger(__name__)

# Registry of provider name → adapter class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "hunyuan": "gen3d.provider.adapters.hunyuan_adapter.HunyuanProvider",
}


class UnsupportedProviderError(ValueError):
    """Raised when a provider is not registered."""


def create_provider(
    provider: str,
    settings: Settings | None = None,
    **kwargs: object,
) -> BaseGenerationProvider:
    """Instantiate the correct adapter from provider name.

    Args:
        provider: Provider identifier (hunyuan).
        settings: Application settings (credentials, endpoint).
        **kwargs: Provider-specific arguments; they override settings.

    Returns:
        Configured BaseGenerationProvider instance.

    Raises:
        UnsupportedProviderError: If provider is not registered.
    """
    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    adapter_cls = _import_class(_PROVIDER_REGISTRY[provider])

    init_kwargs = dict(kwargs)
    if settings is not None:
        init_kwargs.setdefault("secret_id", settings.provider_secret_id)
        init_kwargs.setdefault("secret_key", settings.provider_secret_key)
        init_kwargs.setdefault("endpoint", settings.provider_endpoint)
        init_kwargs.setdefault("service", settings.provider_service)
        init_kwargs.setdefault("version", settings.provider_version)
        init_kwargs.setdefault("region", settings.provider_region)
        init_kwargs.setdefault("request_timeout_s", settings.provider_request_timeout_s)

    logger.debug("Creating generation provider: %s", provider)
    return adapter_cls(**init_kwargs)


def register_provider(name: str, class_path: str) -> None:
    """Register a custom provider adapter.

    Args:
        name: Provider identifier.
        class_path: Fully qualified class path implementing BaseGenerationProvider.
    """
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered generation provider: %s → %s", name, class_path)


def available_providers() -> list[str]:
    return sorted(_PROVIDER_REGISTRY)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
