"""Webhook signature verification.

Signature scheme: lowercase hex of
``HMAC-SHA256(secret, timestamp + "." + raw_body)``, sent in ``X-Signature``
with the timestamp in ``X-Timestamp``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

from src.webhook.models import VerificationResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"

ALLOW = VerificationResult(allowed=True)


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    signed = timestamp.encode() + b"." + raw_body
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def sign(
    raw_body: bytes | str, secret: str, timestamp: int | str | None = None,
) -> tuple[str, str]:
    """Return ``(signature, timestamp)`` for a body, defaulting to now."""
    if timestamp is None:
        timestamp = int(time.time())
    if isinstance(raw_body, str):
        raw_body = raw_body.encode()
    ts = str(timestamp)
    return compute_signature(secret, ts, raw_body), ts


class SignatureVerifier:
    """Checks inbound webhook signatures against a shared secret.

    With no secret configured the outcome depends on ``production``: allow
    everything (with a warning) outside production, deny everything in it.
    ``max_age_seconds`` enables an optional timestamp freshness check.
    """

    def __init__(
        self,
        secret: str | None,
        production: bool = False,
        max_age_seconds: int | None = None,
    ) -> None:
        self._secret = secret or None
        self._production = production
        self._max_age_seconds = max_age_seconds

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def verify(
        self,
        signature: str | None,
        timestamp: str | None,
        raw_body: bytes,
    ) -> VerificationResult:
        if self._secret is None:
            if self._production:
                logger.error("Webhook secret not configured; rejecting webhook")
                return VerificationResult(False, "secret-not-configured")
            logger.warning(
                "Webhook secret not configured; skipping signature verification",
            )
            return VerificationResult(True, "verification-disabled")

        if not signature:
            return VerificationResult(False, "missing-signature")
        if not timestamp:
            return VerificationResult(False, "missing-timestamp")

        expected = compute_signature(self._secret, timestamp, raw_body).encode()
        provided = signature.encode()
        # compare_digest is only reached for equal-length buffers
        if len(provided) != len(expected):
            return VerificationResult(False, "invalid-signature")
        if not hmac.compare_digest(provided, expected):
            return VerificationResult(False, "invalid-signature")

        if self._max_age_seconds is not None and not self._is_fresh(timestamp):
            return VerificationResult(False, "stale-timestamp")
        return ALLOW

    def _is_fresh(self, timestamp: str) -> bool:
        try:
            sent_at = int(timestamp)
        except ValueError:
            return False
        return abs(int(time.time()) - sent_at) <= self._max_age_seconds  # type: ignore[operator]
