"""Webhook normalizer — reduces both provider webhook shapes to one record.

Two envelope shapes arrive on the same endpoint:

* standard: ``{channelId, status, data, meta, callbackUrl?}``
* event-driven: ``{type: "task.ai_generated", event, channelId,
  aiResponse: {data, meta?}, callbackUrl, callbackRequired, meta?}``

Keys are accepted in camelCase or snake_case.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.errors import ValidationError
from src.webhook.models import EnvelopeKind, NormalizedWebhook

logger = logging.getLogger(__name__)

EVENT_TYPE_AI_GENERATED = "task.ai_generated"
# Provider header first, generic fallback second
CALLBACK_HEADERS = ("X-ModelRiver-Callback-Url", "X-Callback-Url")

_CALLBACK_CHANNEL_RE = re.compile(r"/callback/([^/?]+)")


class _Envelope(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )


class StandardEnvelope(_Envelope):
    channel_id: str | None = None
    status: str | None = None
    data: Any = None
    meta: Any = None
    callback_url: Any = None


class AIResponse(_Envelope):
    data: Any = None
    meta: Any = None


class EventEnvelope(_Envelope):
    type: str
    event: str | None = None
    channel_id: str | None = None
    ai_response: AIResponse
    callback_url: Any = None
    callback_required: bool | None = None
    meta: Any = None
    data: Any = None


WebhookEnvelope = StandardEnvelope | EventEnvelope


def _is_event_driven(body: dict[str, Any]) -> bool:
    if body.get("type") != EVENT_TYPE_AI_GENERATED:
        return False
    ai_response = body.get("aiResponse", body.get("ai_response"))
    return isinstance(ai_response, dict) and ai_response.get("data") is not None


def parse_envelope(body: object) -> WebhookEnvelope:
    """Tag a decoded webhook body as standard or event-driven."""
    if not isinstance(body, dict):
        raise ValidationError("invalid-envelope")
    model: type[_Envelope] = EventEnvelope if _is_event_driven(body) else StandardEnvelope
    try:
        return model.model_validate(body)  # type: ignore[return-value]
    except PydanticValidationError as exc:
        raise ValidationError("invalid-envelope") from exc


def callback_header(headers: Mapping[str, str]) -> str | None:
    """Return the first non-empty callback URL header in ``CALLBACK_HEADERS``."""
    for name in CALLBACK_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def _dig(value: Any, *path: str | int) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
            value = value[key]
        else:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
    return value


def is_structured(payload: Any) -> bool:
    """A dict without ``choices`` or ``response`` is schema-shaped output."""
    return (
        isinstance(payload, dict)
        and "choices" not in payload
        and "response" not in payload
    )


def extract_content(payload: Any) -> Any:
    if is_structured(payload):
        return payload
    return (
        _dig(payload, "choices", 0, "message", "content")
        or _dig(payload, "response", "choices", 0, "message", "content")
        or json.dumps(payload)
    )


def _usage(envelope: WebhookEnvelope) -> dict[str, Any] | None:
    candidates: list[Any] = [
        _dig(envelope.meta, "usage"),
        _dig(envelope.data, "usage"),
    ]
    if isinstance(envelope, EventEnvelope):
        candidates.append(_dig(envelope.ai_response.meta, "usage"))
    for usage in candidates:
        if isinstance(usage, dict):
            return usage
    return None


def _forwarding_address(
    envelope: WebhookEnvelope, header_value: str | None,
) -> str | None:
    address = envelope.callback_url or header_value
    if not address:
        return None
    if not isinstance(address, str) or not address.startswith(("http://", "https://")):
        logger.error("Ignoring invalid callback URL: %r", address)
        return None

    match = _CALLBACK_CHANNEL_RE.search(address)
    if match and envelope.channel_id and match.group(1) != envelope.channel_id:
        logger.warning(
            "Channel id mismatch: callback URL has %s, webhook has %s",
            match.group(1), envelope.channel_id,
        )
    return address


def normalize(
    envelope: WebhookEnvelope, callback_header: str | None = None,
) -> NormalizedWebhook:
    """Select the payload, extract its content and the forwarding address.

    ``callback_header`` is the callback URL request header (see
    :func:`callback_header`); a
    ``callbackUrl`` field in the body takes precedence over it.
    """
    if isinstance(envelope, EventEnvelope):
        kind = EnvelopeKind.EVENT
        payload = envelope.ai_response.data
    else:
        kind = EnvelopeKind.STANDARD
        payload = envelope.data

    return NormalizedWebhook(
        kind=kind,
        channel_id=envelope.channel_id,
        payload=payload,
        content=extract_content(payload),
        forwarding_address=_forwarding_address(envelope, callback_header),
        usage=_usage(envelope),
    )
