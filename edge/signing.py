"""
HMAC-signed payloads for the edge session cookie.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from hashlib import sha256
from typing import Any, Dict

from app.core.errors import AuthenticationError, ConfigurationError

_SIGNATURE_LENGTH = 32


class SignedPayloadEncoder:
    """Encode and decode small JSON payloads to guard against tampering."""

    def __init__(self, secret_key: str | None) -> None:
        if not secret_key:
            raise ConfigurationError("Edge session signing key is not configured.")
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        encoded = base64.urlsafe_b64encode(signature + serialized.encode("utf-8"))
        # Unpadded so the value never needs quoting inside a cookie.
        return encoded.decode("utf-8").rstrip("=")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            padded = token + "=" * (-len(token) % 4)
            decoded = base64.urlsafe_b64decode(padded.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("Malformed signed payload.", code="forbidden") from exc
        signature, serialized = decoded[:_SIGNATURE_LENGTH], decoded[_SIGNATURE_LENGTH:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise AuthenticationError("Invalid payload signature.", code="forbidden")
        return json.loads(serialized)


__all__ = ["SignedPayloadEncoder"]
