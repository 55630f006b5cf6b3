"""Shared test fixtures for the webhook relay."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.config import RelaySettings
from src.models import PendingRequest, ResponseRecord

WEBHOOK_SECRET = "test_webhook_secret_12345"
API_KEY = "mr_test_mock_api_key_12345"


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_settings(**kwargs: Any) -> RelaySettings:
    """Factory for RelaySettings with a secret and API key configured."""
    defaults: dict[str, Any] = {
        "api_key": API_KEY,
        "provider_url": "https://provider.test",
        "public_base_url": "https://relay.test",
        "webhook_secret": WEBHOOK_SECRET,
    }
    defaults.update(kwargs)
    return RelaySettings(**defaults)


def make_pending(**kwargs: Any) -> PendingRequest:
    defaults: dict[str, Any] = {
        "channel_id": "chan-1",
        "prompt": "Hello test",
        "conversation_id": "conv-1",
        "message_id": "msg-1",
    }
    defaults.update(kwargs)
    return PendingRequest(**defaults)


def make_record(**kwargs: Any) -> ResponseRecord:
    defaults: dict[str, Any] = {
        "id": "msg-1",
        "prompt": "Hello test",
        "response": "Hi",
        "channel_id": "chan-1",
        "conversation_id": "conv-1",
    }
    defaults.update(kwargs)
    return ResponseRecord(**defaults)


def make_http_response(status_code: int = 200, json_body: Any = None) -> MagicMock:
    """Fake httpx.Response; ``json()`` raises when no body is given."""
    resp = MagicMock()
    resp.status_code = status_code
    if json_body is None:
        resp.json.side_effect = ValueError("No JSON body")
    else:
        resp.json.return_value = json_body
    return resp


def make_http_client(*responses: Any) -> AsyncMock:
    """Fake ``httpx.AsyncClient`` usable as an async context manager.

    Each positional argument is returned (or raised, if an exception) by
    successive ``post`` calls.
    """
    client = AsyncMock()
    client.post.side_effect = list(responses)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client
