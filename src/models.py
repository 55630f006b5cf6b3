"""Shared Pydantic data models for the webhook relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_PROMPT = "Unknown prompt"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class _CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts either camelCase or snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Enums ---


class AuditEventType(str, Enum):
    CHAT_DISPATCH = "chat_dispatch"
    DISPATCH_FAILURE = "dispatch_failure"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_PROCESSED = "webhook_processed"
    WEBHOOK_UNMATCHED = "webhook_unmatched"
    CALLBACK_FORWARDED = "callback_forwarded"
    CALLBACK_FAILED = "callback_failed"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Correlation Models ---


class PendingRequest(_CamelModel):
    model_config = ConfigDict(frozen=True)

    channel_id: str
    prompt: str
    conversation_id: str
    message_id: str
    submitted_at: str = Field(default_factory=_now_iso)


# --- Conversation Models ---


class ResponseRecord(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    prompt: str
    response: Any
    created_at: str = Field(default_factory=_now_iso)
    channel_id: str | None = None
    conversation_id: str
    usage: dict[str, Any] | None = None


class Conversation(_CamelModel):
    id: str
    messages: list[ResponseRecord] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now_iso)


# --- HTTP Models ---


class ChatRequest(_CamelModel):
    message: Any = None  # type checked by DispatchClient.dispatch
    conversation_id: str | None = None
    workflow: str | None = None
    events: list[str] | None = None


class DispatchResult(_CamelModel):
    """Connection descriptors returned by the provider for one async request."""

    channel_id: str
    ws_token: Any = None
    websocket_url: Any = None
    websocket_channel: Any = None
    project_id: Any = None


class WebhookAck(_CamelModel):
    success: bool = True
    message: str = "Webhook processed"
    record_id: str


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    action: str
    result: str  # "success" | "failure" | "degraded"
    risk_level: RiskLevel
    channel_id: str | None = None
    conversation_id: str | None = None
    details: dict[str, object] | None = None
