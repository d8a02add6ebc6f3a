# src/cache/keyer.py — v1
"""Deterministic fingerprints and cache keys for generation requests.

fingerprint = md5("<stripped input>:<KIND>")
key         = "3d_model_cache:" + md5("<stripped input>:<KIND>[:<tier>]")

The tier suffix only appears when quality parameters are supplied, so keys
for plain requests stay compatible with entries written without a tier.
The keyer never raises: unusable input yields a key that matches nothing.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from typing import Any, Mapping

logger = logging.getLogger(__name__)

CACHE_PREFIX = "3d_model_cache:"
ERROR_PREFIX = CACHE_PREFIX + "error:"


def quality_tier(quality_params: Mapping[str, Any] | None) -> str | None:
    """Canonical ``k=v`` rendering of quality parameters.

    Keys are sorted and ``None`` values dropped. Returns None when nothing
    is left, so an empty mapping behaves like no mapping at all.
    """
    if not quality_params:
        return None
    parts = [
        f"{k}={quality_params[k]}"
        for k in sorted(quality_params)
        if quality_params[k] is not None
    ]
    return ",".join(parts) or None


def _digest(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # noqa: S324


def fallback_key() -> str:
    """Unique key that can never collide with a real entry."""
    return f"{ERROR_PREFIX}{time.time_ns()}:{uuid.uuid4().hex}"


def fingerprint(input_content: str, kind: str) -> str | None:
    """md5 of the normalized input and kind, or None for unusable input."""
    try:
        normalized = input_content.strip()
        if not normalized:
            return None
        return _digest(f"{normalized}:{kind.upper()}")
    except (AttributeError, TypeError, UnicodeEncodeError) as e:
        logger.warning("Cannot fingerprint input: %s", e)
        return None


def cache_key(
    input_content: str,
    kind: str,
    quality_params: Mapping[str, Any] | None = None,
) -> str:
    """Namespaced cache key for a request.

    Args:
        input_content: Prompt text or image reference.
        kind: "TEXT" or "IMAGE".
        quality_params: Optional parameters that change the produced asset.

    Returns:
        ``3d_model_cache:<md5>``, or a never-matching fallback key.
    """
    try:
        normalized = input_content.strip()
        if not normalized:
            logger.warning("Empty input, using fallback cache key")
            return fallback_key()
        material = f"{normalized}:{kind.upper()}"
        tier = quality_tier(quality_params)
        if tier is not None:
            material = f"{material}:{tier}"
        return CACHE_PREFIX + _digest(material)
    except (AttributeError, TypeError, UnicodeEncodeError) as e:
        logger.warning("Cannot build cache key, using fallback: %s", e)
        return fallback_key()


def is_fallback_key(key: str) -> bool:
    return key.startswith(ERROR_PREFIX)
