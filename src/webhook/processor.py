"""Inbound webhook pipeline.

Pipeline stages:
1. Signature verification (gates everything below, forwarding included)
2. Decode and normalize the envelope
3. Consume the pending request for the channel id (at most once)
4. Build the response record and append it to the conversation log
5. Forward the enriched record to the callback URL, if one was supplied
6. Audit log
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING

from src.errors import AuthError, CallbackShapeError, ConfigurationError, ValidationError
from src.models import (
    UNKNOWN_PROMPT,
    AuditEvent,
    AuditEventType,
    ResponseRecord,
    RiskLevel,
    WebhookAck,
)
from src.webhook.normalizer import normalize, parse_envelope
from src.webhook.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.conversations.log import ConversationLog
    from src.correlation.store import CorrelationStore
    from src.webhook.forwarder import CallbackForwarder
    from src.webhook.models import NormalizedWebhook
    from src.webhook.signature import SignatureVerifier

logger = logging.getLogger(__name__)

_DENY_MESSAGES = {
    "missing-signature": f"Missing {SIGNATURE_HEADER} header",
    "missing-timestamp": f"Missing {TIMESTAMP_HEADER} header",
    "invalid-signature": "Invalid signature",
    "stale-timestamp": "Stale timestamp",
}


class WebhookProcessor:
    """Turns a verified provider webhook into a stored response record."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        store: CorrelationStore,
        conversations: ConversationLog,
        forwarder: CallbackForwarder,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._verifier = verifier
        self._store = store
        self._conversations = conversations
        self._forwarder = forwarder
        self._audit = audit_logger

    def authenticate(
        self, signature: str | None, timestamp: str | None, raw_body: bytes,
    ) -> None:
        """Raise AuthError or ConfigurationError unless the webhook is trusted."""
        result = self._verifier.verify(signature, timestamp, raw_body)
        if result.allowed:
            return
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_REJECTED,
                action="verify_signature",
                result="failure",
                risk_level=RiskLevel.HIGH,
                details={"reason": result.reason},
            ))
        if result.reason == "secret-not-configured":
            raise ConfigurationError("Webhook secret not configured")
        logger.warning("Rejected webhook: %s", result.reason)
        raise AuthError(
            result.reason or "invalid-signature",
            _DENY_MESSAGES.get(result.reason or "", "Invalid signature"),
        )

    async def process(
        self,
        raw_body: bytes,
        signature: str | None = None,
        timestamp: str | None = None,
        callback_header: str | None = None,
    ) -> WebhookAck:
        # Stage 1: Signature verification
        self.authenticate(signature, timestamp, raw_body)

        # Stage 2: Decode and normalize
        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError("Invalid JSON payload") from exc
        webhook = normalize(parse_envelope(body), callback_header)
        logger.info(
            "Webhook received: channel=%s kind=%s callback=%s",
            webhook.channel_id, webhook.kind.value,
            webhook.forwarding_address or "none",
        )

        # Stage 3 + 4: Correlate and record
        record = self._record(webhook)

        # Stage 5: Forward
        if webhook.forwarding_address:
            await self._forward(webhook, record)

        # Stage 6: Audit
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_PROCESSED,
                action="webhook",
                result="success",
                risk_level=RiskLevel.INFO,
                channel_id=webhook.channel_id,
                conversation_id=record.conversation_id,
                details={
                    "record_id": record.id,
                    "kind": webhook.kind.value,
                    "forwarded": webhook.forwarding_address is not None,
                },
            ))
        return WebhookAck(record_id=record.id)

    def _record(self, webhook: NormalizedWebhook) -> ResponseRecord:
        pending = self._store.take_if_present(webhook.channel_id)
        if pending is None:
            logger.warning(
                "No pending request for channel %s; using fresh identifiers",
                webhook.channel_id,
            )
            if self._audit:
                self._audit.log(AuditEvent(
                    event_type=AuditEventType.WEBHOOK_UNMATCHED,
                    action="correlate",
                    result="degraded",
                    risk_level=RiskLevel.LOW,
                    channel_id=webhook.channel_id,
                ))
            message_id = str(uuid.uuid4())
            conversation_id = str(uuid.uuid4())
            prompt = UNKNOWN_PROMPT
        else:
            message_id = pending.message_id
            conversation_id = pending.conversation_id
            prompt = pending.prompt

        record = ResponseRecord(
            id=message_id,
            prompt=prompt,
            response=webhook.content,
            channel_id=webhook.channel_id,
            conversation_id=conversation_id,
            usage=webhook.usage,
        )
        self._conversations.append(conversation_id, record)
        logger.info("Stored record %s in conversation %s", record.id, conversation_id)
        return record

    async def _forward(self, webhook: NormalizedWebhook, record: ResponseRecord) -> None:
        try:
            await self._forwarder.forward(
                webhook.forwarding_address,  # type: ignore[arg-type]
                webhook.payload,
                message_id=record.id,
                conversation_id=record.conversation_id,
                channel_id=webhook.channel_id,
                usage=webhook.usage,
            )
        except CallbackShapeError as exc:
            logger.error("Skipping callback for record %s: %s", record.id, exc)
