# src/provider/signer.py — v1
"""HMAC-SHA256 request signing for the provider API.

Canonical request -> string to sign -> derived key chain -> signature.
All hashing is over UTF-8 bytes; the caller supplies the timestamp so
signatures are reproducible.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

CONTENT_TYPE = "application/json; charset=utf-8"


@dataclass(frozen=True)
class SigningScheme:
    """Naming constants that vary between provider dialects."""

    algorithm: str
    secret_prefix: str
    request_terminator: str
    header_prefix: str

    @property
    def action_header(self) -> str:
        return f"{self.header_prefix}Action"


GENERIC_SCHEME = SigningScheme("HMAC-SHA256", "", "request", "X-Provider-")
TC3_SCHEME = SigningScheme("TC3-HMAC-SHA256", "TC3", "tc3_request", "X-TC-")


def _sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def utc_date(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def serialize_payload(payload: dict[str, Any] | str) -> str:
    """Compact JSON body; the exact bytes sent must be the bytes signed."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class RequestSigner:
    """Signs provider requests for one credential pair."""

    def __init__(
        self,
        secret_id: str,
        secret_key: str,
        service: str,
        host: str,
        version: str,
        region: str | None = None,
        scheme: SigningScheme = GENERIC_SCHEME,
    ) -> None:
        self.secret_id = secret_id
        self._secret_key = secret_key
        self.service = service
        self.host = host
        self.version = version
        self.region = region
        self.scheme = scheme

    def _signed_headers(self, action: str) -> dict[str, str]:
        return {
            "content-type": CONTENT_TYPE,
            "host": self.host,
            self.scheme.action_header.lower(): action.lower(),
        }

    def canonical_request(self, action: str, body: str) -> tuple[str, str]:
        """Returns ``(canonical_request, signed_header_names)``."""
        headers = self._signed_headers(action)
        names = sorted(headers)
        canonical_headers = "".join(f"{n}:{headers[n]}\n".lower() for n in names)
        signed_names = ";".join(names)
        canonical = "\n".join(
            [
                "POST",
                "/",
                "",
                canonical_headers,
                signed_names,
                _sha256_hex(body),
            ]
        )
        return canonical, signed_names

    def string_to_sign(self, canonical_request: str, timestamp: int) -> str:
        scope = f"{utc_date(timestamp)}/{self.service}/{self.scheme.request_terminator}"
        return "\n".join(
            [self.scheme.algorithm, str(timestamp), scope, _sha256_hex(canonical_request)]
        )

    def signature(self, string_to_sign: str, timestamp: int) -> str:
        k_date = _hmac(
            (self.scheme.secret_prefix + self._secret_key).encode("utf-8"), utc_date(timestamp)
        )
        k_service = _hmac(k_date, self.service)
        k_signing = _hmac(k_service, self.scheme.request_terminator)
        return hmac.new(
            k_signing, string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def authorization(self, action: str, body: str, timestamp: int) -> str:
        """Value of the ``Authorization`` header."""
        canonical, signed_names = self.canonical_request(action, body)
        sig = self.signature(self.string_to_sign(canonical, timestamp), timestamp)
        credential = (
            f"{self.secret_id}/{utc_date(timestamp)}/{self.service}/"
            f"{self.scheme.request_terminator}"
        )
        return (
            f"{self.scheme.algorithm} Credential={credential}, "
            f"SignedHeaders={signed_names}, Signature={sig}"
        )

    def build_headers(
        self, action: str, payload: dict[str, Any] | str, timestamp: int
    ) -> dict[str, str]:
        """Complete header set for a signed POST of ``payload``."""
        body = serialize_payload(payload)
        prefix = self.scheme.header_prefix
        headers = {
            "Authorization": self.authorization(action, body, timestamp),
            "Content-Type": CONTENT_TYPE,
            "Host": self.host,
            f"{prefix}Action": action,
            f"{prefix}Timestamp": str(timestamp),
            f"{prefix}Version": self.version,
        }
        if self.region:
            headers[f"{prefix}Region"] = self.region
        return headers
