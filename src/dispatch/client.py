"""Dispatch client — sends a chat message to the provider's async API.

The provider answers immediately with a channel id and websocket
descriptors; the AI response arrives later on our webhook. Before the
descriptors are handed back, the request context is parked in the
correlation store under that channel id.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from src.errors import ConfigurationError, UpstreamError, ValidationError
from src.models import AuditEvent, AuditEventType, DispatchResult, PendingRequest, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.correlation.store import CorrelationStore

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook/provider"
DEFAULT_EVENTS = ("webhook_received",)
_DISPATCH_TIMEOUT_SECONDS = 30.0


class DispatchClient:
    """Builds and sends outbound async requests to the provider."""

    def __init__(
        self,
        store: CorrelationStore,
        api_key: str | None,
        provider_url: str,
        public_base_url: str,
        default_workflow: str = "chatbot_workflow",
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._api_key = api_key
        self._provider_url = provider_url
        self._public_base_url = public_base_url
        self._default_workflow = default_workflow
        self._audit = audit_logger

    @property
    def webhook_url(self) -> str:
        return f"{self._public_base_url.rstrip('/')}{WEBHOOK_PATH}"

    def build_payload(
        self,
        message: str,
        conversation_id: str,
        message_id: str,
        workflow: str | None = None,
        events: list[str] | None = None,
    ) -> dict[str, Any]:
        return {
            "workflow": workflow or self._default_workflow,
            "messages": [{"role": "user", "content": message}],
            "delivery_method": "websocket",
            "webhook_url": self.webhook_url,
            "events": list(events) if events else list(DEFAULT_EVENTS),
            "metadata": {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "original_prompt": message,
                "timestamp": int(time.time() * 1000),
            },
        }

    async def dispatch(
        self,
        message: str | None,
        conversation_id: str | None = None,
        workflow: str | None = None,
        events: list[str] | None = None,
    ) -> DispatchResult:
        """Send ``message`` to the provider and register the pending request.

        Raises ValidationError, ConfigurationError or UpstreamError. Nothing
        is stored unless the provider returned a channel id.
        """
        if not isinstance(message, str) or not message:
            raise ValidationError("message-required")
        if not self._api_key:
            raise ConfigurationError(
                "PROVIDER_API_KEY not configured. Set it in environment variables.",
            )

        conversation_id = conversation_id or str(uuid.uuid4())
        message_id = str(uuid.uuid4())
        payload = self.build_payload(
            message, conversation_id, message_id, workflow, events,
        )
        logger.info(
            "Dispatching message %s (conversation %s) to %s",
            message_id, conversation_id, self._provider_url,
        )

        body = await self._post(payload)

        channel_id = body.get("channel_id") or body.get("channelId")
        if not channel_id:
            raise self._fail(UpstreamError(
                "Provider response did not include a channel_id",
                provider_details=body,
            ))

        descriptors = {
            k: v for k, v in body.items() if k not in ("channel_id", "channelId")
        }
        # Descriptors pass through as sent; only the store key is normalized
        result = DispatchResult.model_validate(
            {**descriptors, "channel_id": str(channel_id)},
        )
        self._store.put(result.channel_id, PendingRequest(
            channel_id=result.channel_id,
            prompt=message,
            conversation_id=conversation_id,
            message_id=message_id,
        ))
        logger.info("Provider accepted message %s on channel %s", message_id, channel_id)

        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.CHAT_DISPATCH,
                action="dispatch",
                result="success",
                risk_level=RiskLevel.INFO,
                channel_id=result.channel_id,
                conversation_id=conversation_id,
                details={"message_id": message_id, "workflow": payload["workflow"]},
            ))
        return result

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._provider_url.rstrip('/')}/v1/ai/async"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    url, json=payload, headers=headers,
                    timeout=_DISPATCH_TIMEOUT_SECONDS,
                )
        except httpx.RequestError as exc:
            raise self._fail(UpstreamError(
                f"Provider unreachable: {exc.__class__.__name__}",
            )) from exc

        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError):
            body = None

        if not 200 <= resp.status_code < 300:
            provider_message = (
                body.get("message") if isinstance(body, dict) else None
            ) or f"Provider returned HTTP {resp.status_code}"
            raise self._fail(UpstreamError(
                provider_message,
                status_code=resp.status_code,
                provider_details=body,
            ))
        if not isinstance(body, dict):
            raise self._fail(UpstreamError(
                "Provider returned a non-JSON response",
                status_code=resp.status_code,
            ))
        return body

    def _fail(self, error: UpstreamError) -> UpstreamError:
        logger.error(
            "Dispatch failed (status=%s): %s",
            error.upstream_status, error.provider_message,
        )
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.DISPATCH_FAILURE,
                action="dispatch",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                details={
                    "upstream_status": error.upstream_status,
                    "message": error.provider_message,
                },
            ))
        return error
