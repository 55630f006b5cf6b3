"""Callback forwarder — re-publishes an enriched response to the callback URL.

The downstream endpoint requires ``data`` to be a JSON object, so whatever
shape the AI payload had is coerced into one carrying our own message and
conversation ids. 4xx answers are terminal and accepted; only 5xx, timeouts
and network errors (including unparseable addresses) count as failed
deliveries. Failures are reported in the returned :class:`ForwardResult`,
never raised.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from src.errors import CallbackShapeError, ForwardingError
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.webhook.models import ForwardResult

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

_FORWARD_TIMEOUT_SECONDS = 30.0


def coerce_data(payload: Any, message_id: str, conversation_id: str) -> dict[str, Any]:
    """Wrap any payload shape into an object carrying ``id`` and ``conversationId``."""
    ids = {"id": message_id, "conversationId": conversation_id}
    if isinstance(payload, dict):
        return {**payload, **ids}
    if isinstance(payload, list):
        return {"items": payload, **ids}
    if payload is not None:
        return {"content": payload, **ids}
    return {**ids, "message": "Response processed"}


def build_callback_payload(
    payload: Any,
    message_id: str,
    conversation_id: str,
    channel_id: str | None,
    usage: dict[str, Any] | None = None,
) -> dict[str, Any]:
    callback = {
        "data": coerce_data(payload, message_id, conversation_id),
        "taskId": message_id,
        "metadata": {
            "conversationId": conversation_id,
            "channelId": channel_id,
            "processedAt": datetime.now(UTC).isoformat(),
            "usage": usage or {},
        },
    }
    validate_callback_payload(callback)
    return callback


def validate_callback_payload(callback: dict[str, Any]) -> None:
    data = callback.get("data")
    if not isinstance(data, dict):
        raise CallbackShapeError(data)


class CallbackForwarder:
    """Posts enriched response records to a forwarding address."""

    def __init__(
        self,
        api_key: str | None,
        timeout: float = _FORWARD_TIMEOUT_SECONDS,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._audit = audit_logger

    async def forward(
        self,
        address: str,
        payload: Any,
        message_id: str,
        conversation_id: str,
        channel_id: str | None = None,
        usage: dict[str, Any] | None = None,
    ) -> ForwardResult:
        """POST the enriched payload to ``address``.

        Raises CallbackShapeError before any network call if the payload
        cannot be shaped into an object.
        """
        callback = build_callback_payload(
            payload, message_id, conversation_id, channel_id, usage,
        )
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        logger.info("Forwarding record %s to %s", message_id, address)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    address, json=callback, headers=headers, timeout=self._timeout,
                )
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            return self._failed(
                ForwardingError(f"{exc.__class__.__name__}: {exc}"),
                address, channel_id, conversation_id,
            )

        if resp.status_code >= 500:
            return self._failed(
                ForwardingError(f"Callback endpoint returned HTTP {resp.status_code}"),
                address, channel_id, conversation_id,
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            logger.warning(
                "Callback to %s rejected with HTTP %d; not retrying",
                address, resp.status_code,
            )
        else:
            logger.info("Callback to %s delivered (HTTP %d)", address, resp.status_code)
        self._log(
            address, channel_id, conversation_id, "success",
            status_code=resp.status_code,
        )
        return ForwardResult(delivered=True, status_code=resp.status_code)

    def _failed(
        self,
        error: ForwardingError,
        address: str,
        channel_id: str | None,
        conversation_id: str,
        status_code: int | None = None,
    ) -> ForwardResult:
        logger.error("Callback to %s failed: %s", address, error)
        self._log(
            address, channel_id, conversation_id, "failure",
            status_code=status_code, error=str(error),
        )
        return ForwardResult(delivered=False, status_code=status_code, error=str(error))

    def _log(
        self,
        address: str,
        channel_id: str | None,
        conversation_id: str,
        result: str,
        **details: object,
    ) -> None:
        if not self._audit:
            return
        failed = result == "failure"
        self._audit.log(AuditEvent(
            event_type=(
                AuditEventType.CALLBACK_FAILED if failed
                else AuditEventType.CALLBACK_FORWARDED
            ),
            action="forward_callback",
            result=result,
            risk_level=RiskLevel.MEDIUM if failed else RiskLevel.INFO,
            channel_id=channel_id,
            conversation_id=conversation_id,
            details={"callback_url": address, **details},
        ))
