"""Transient data models for the inbound webhook pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EnvelopeKind(str, Enum):
    STANDARD = "standard"
    EVENT = "event"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a webhook signature check."""

    allowed: bool
    reason: str | None = None  # e.g. "missing-signature", "invalid-signature"


@dataclass
class NormalizedWebhook:
    """A webhook reduced to what the relay needs, regardless of envelope shape."""

    kind: EnvelopeKind
    channel_id: str | None
    payload: Any  # raw selected payload (data or aiResponse.data)
    content: Any  # extracted response text, or the structured object as-is
    forwarding_address: str | None = None
    usage: dict[str, Any] | None = None


@dataclass
class ForwardResult:
    delivered: bool
    status_code: int | None = None
    error: str | None = None
