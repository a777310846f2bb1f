"""Webhook authenticity checks.

The board platform signs each delivery with HMAC-SHA256 over the raw request
body, base64-encoded, in the ``authorization`` header. Verification compares
in constant time. With no secret configured every delivery is accepted and
flagged as skipped; that mode is a security gap outside development.

The subscription handshake ({"challenge": ...}) is unsigned and is answered
by echoing the value.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "authorization"


class VerificationResult(BaseModel):
    valid: bool
    skipped: bool = False
    error: str | None = None


class WebhookAuthenticator:
    """Verifies webhook signatures against a shared secret.

    Args:
        secret: Shared signing secret; empty disables verification.
    """

    def __init__(self, secret: str | None) -> None:
        self._secret = secret or ""

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    def sign(self, raw_body: bytes) -> str:
        """Signature the platform would send for this body."""
        digest = hmac.new(self._secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify(self, raw_body: bytes, signature: str | None) -> VerificationResult:
        if not self._secret:
            logger.warning("webhook.verification_skipped", reason="no webhook secret configured")
            return VerificationResult(valid=True, skipped=True)

        if not signature:
            return VerificationResult(valid=False, error="missing signature")

        expected = self.sign(raw_body).encode("ascii")
        supplied = signature.strip().encode("utf-8")
        if len(expected) != len(supplied):
            return VerificationResult(valid=False, error="invalid signature")
        if not hmac.compare_digest(expected, supplied):
            return VerificationResult(valid=False, error="invalid signature")
        return VerificationResult(valid=True)


def extract_signature(headers: Mapping[str, str]) -> str | None:
    """Signature header value, matched case-insensitively."""
    for name, value in headers.items():
        if name.lower() == SIGNATURE_HEADER:
            return value
    return None


def challenge_response(body: Any) -> dict[str, Any] | None:
    """Echo payload for a handshake body, None for anything else."""
    if isinstance(body, dict) and "challenge" in body:
        return {"challenge": body["challenge"]}
    return None
