"""Integration tests for the relay HTTP endpoints."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from src.conversations.log import ConversationLog
from src.correlation.store import CorrelationStore
from src.proxy.app import create_app
from src.webhook.signature import sign
from tests.conftest import (
    WEBHOOK_SECRET,
    make_http_client,
    make_http_response,
    make_pending,
    make_settings,
)

PROVIDER_BODY = {
    "channel_id": "mock-channel-123",
    "ws_token": "mock-ws-token",
    "websocket_url": "wss://api.provider.test/socket",
    "websocket_channel": "ai_response:project:channel",
    "project_id": "mock-project",
}


def _client(app: Any) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _signed_headers(raw: bytes, secret: str = WEBHOOK_SECRET) -> dict[str, str]:
    signature, ts = sign(raw, secret)
    return {
        "Content-Type": "application/json",
        "X-Signature": signature,
        "X-Timestamp": ts,
    }


def _webhook_body(channel_id: str = "chan-1", **kwargs: Any) -> bytes:
    body: dict[str, Any] = {
        "channel_id": channel_id,
        "status": "success",
        "data": {"choices": [{"message": {"content": "Hi"}}]},
    }
    body.update(kwargs)
    return json.dumps(body).encode()


def _app_with_pending(**settings: Any) -> tuple[Any, CorrelationStore, ConversationLog]:
    store = CorrelationStore()
    store.put("chan-1", make_pending())
    conversations = ConversationLog()
    app = create_app(make_settings(**settings), store=store, conversations=conversations)
    return app, store, conversations


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_config(self) -> None:
        app, _, _ = _app_with_pending()
        async with _client(app) as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["pendingRequests"] == 1
        assert data["config"]["apiKeyConfigured"] is True
        assert data["config"]["webhookSecretConfigured"] is True


class TestChatEndpoint:
    @pytest.mark.asyncio
    async def test_missing_message_is_400(self) -> None:
        app = create_app(make_settings())
        async with _client(app) as client:
            resp = await client.post("/chat", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Message is required"}

    @pytest.mark.asyncio
    async def test_empty_message_is_400(self) -> None:
        app = create_app(make_settings())
        async with _client(app) as client:
            resp = await client.post("/chat", json={"message": ""})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [123, {}, ["hi"], True])
    async def test_non_string_message_is_400(self, message: Any) -> None:
        app = create_app(make_settings())
        async with _client(app) as client:
            resp = await client.post("/chat", json={"message": message})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Message is required"}

    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self) -> None:
        app = create_app(make_settings())
        async with _client(app) as client:
            resp = await client.post("/chat", json={"message": "hi", "events": "x"})
        assert resp.status_code == 400
        assert "error" in resp.json()

    @pytest.mark.asyncio
    async def test_non_string_descriptors_passed_through(self) -> None:
        store = CorrelationStore()
        app = create_app(make_settings(), store=store)
        body = {**PROVIDER_BODY, "project_id": 42}
        http = make_http_client(make_http_response(200, body))
        async with _client(app) as client:
            with patch("src.dispatch.client.httpx.AsyncClient", return_value=http):
                resp = await client.post("/chat", json={"message": "Hello"})
        assert resp.status_code == 200
        assert resp.json()["projectId"] == 42
        assert store.size() == 1

    @pytest.mark.asyncio
    async def test_missing_api_key_is_500(self) -> None:
        app = create_app(make_settings(api_key=None))
        async with _client(app) as client:
            resp = await client.post("/chat", json={"message": "Hello"})
        assert resp.status_code == 500
        assert "PROVIDER_API_KEY" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_provider_error_relayed(self) -> None:
        app = create_app(make_settings())
        http = make_http_client(make_http_response(401, {"message": "Invalid API key"}))
        async with _client(app) as client:
            with patch("src.dispatch.client.httpx.AsyncClient", return_value=http):
                resp = await client.post("/chat", json={"message": "Hello"})
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Invalid API key",
            "details": {"message": "Invalid API key"},
        }

    @pytest.mark.asyncio
    async def test_success_returns_camel_case_descriptors(self) -> None:
        store = CorrelationStore()
        app = create_app(make_settings(), store=store)
        http = make_http_client(make_http_response(200, PROVIDER_BODY))
        async with _client(app) as client:
            with patch("src.dispatch.client.httpx.AsyncClient", return_value=http):
                resp = await client.post(
                    "/chat", json={"message": "Hello test", "conversationId": "conv-9"},
                )

        assert resp.status_code == 200
        data = resp.json()
        assert data["channelId"] == "mock-channel-123"
        assert data["wsToken"] == "mock-ws-token"
        assert data["websocketUrl"] == "wss://api.provider.test/socket"
        assert data["websocketChannel"] == "ai_response:project:channel"
        assert data["projectId"] == "mock-project"
        assert "mock-channel-123" in store

        args, kwargs = http.post.call_args
        assert args[0] == "https://provider.test/v1/ai/async"
        assert kwargs["json"]["webhook_url"] == "https://relay.test/webhook/provider"
        assert kwargs["json"]["metadata"]["conversation_id"] == "conv-9"


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_stale_timestamp_is_401(self) -> None:
        app, store, _ = _app_with_pending(webhook_max_age_seconds=300)
        raw = _webhook_body()
        signature, ts = sign(raw, WEBHOOK_SECRET, int(time.time()) - 3600)
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw,
                headers={"X-Signature": signature, "X-Timestamp": ts},
            )
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized", "message": "Stale timestamp"}
        assert "chan-1" in store

    @pytest.mark.asyncio
    async def test_fresh_timestamp_accepted_with_window(self) -> None:
        app, _, _ = _app_with_pending(webhook_max_age_seconds=300)
        raw = _webhook_body()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_signature_is_401(self) -> None:
        app, store, _ = _app_with_pending()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=_webhook_body(),
                headers={"X-Timestamp": "1700000000"},
            )
        assert resp.status_code == 401
        assert resp.json() == {
            "error": "Unauthorized", "message": "Missing X-Signature header",
        }
        assert "chan-1" in store

    @pytest.mark.asyncio
    async def test_missing_timestamp_is_401(self) -> None:
        app, _, _ = _app_with_pending()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=_webhook_body(),
                headers={"X-Signature": "abc"},
            )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Missing X-Timestamp header"

    @pytest.mark.asyncio
    async def test_wrong_secret_is_401(self) -> None:
        app, store, conversations = _app_with_pending()
        raw = _webhook_body()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw,
                headers=_signed_headers(raw, secret="not-the-secret"),
            )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid signature"
        assert "chan-1" in store
        assert len(conversations) == 0

    @pytest.mark.asyncio
    async def test_body_modified_after_signing_is_401(self) -> None:
        app, _, _ = _app_with_pending()
        raw = _webhook_body()
        headers = _signed_headers(raw)
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw.replace(b"Hi", b"Yo"), headers=headers,
            )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_production_without_secret_is_500(self) -> None:
        app, _, _ = _app_with_pending(webhook_secret=None, production=True)
        raw = _webhook_body()
        async with _client(app) as client:
            resp = await client.post("/webhook/provider", content=raw)
        assert resp.status_code == 500

    @pytest.mark.asyncio
    async def test_no_secret_outside_production_accepted(self) -> None:
        app, _, conversations = _app_with_pending(webhook_secret=None)
        async with _client(app) as client:
            resp = await client.post("/webhook/provider", content=_webhook_body())
        assert resp.status_code == 200
        assert len(conversations) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self) -> None:
        app, _, _ = _app_with_pending()
        raw = b"{not json"
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_body_is_413(self) -> None:
        app, _, _ = _app_with_pending()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=b"x" * (10 * 1024 * 1024 + 1),
            )
        assert resp.status_code == 413

    @pytest.mark.asyncio
    async def test_text_response_recorded(self) -> None:
        app, store, _ = _app_with_pending()
        raw = _webhook_body()
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
            assert resp.status_code == 200
            assert resp.json() == {
                "success": True, "message": "Webhook processed", "recordId": "msg-1",
            }

            conv = await client.get("/conversations/conv-1")

        assert store.size() == 0
        assert conv.status_code == 200
        messages = conv.json()["messages"]
        assert len(messages) == 1
        assert messages[0]["prompt"] == "Hello test"
        assert messages[0]["response"] == "Hi"
        assert messages[0]["channelId"] == "chan-1"

    @pytest.mark.asyncio
    async def test_structured_response_recorded_verbatim(self) -> None:
        app, _, _ = _app_with_pending()
        raw = _webhook_body(data={"reply": "ok", "sentiment": "neutral"})
        async with _client(app) as client:
            await client.post("/webhook/provider", content=raw, headers=_signed_headers(raw))
            conv = await client.get("/conversations/conv-1")
        assert conv.json()["messages"][0]["response"] == {
            "reply": "ok", "sentiment": "neutral",
        }

    @pytest.mark.asyncio
    async def test_unknown_channel_still_acknowledged(self) -> None:
        app, store, conversations = _app_with_pending()
        raw = _webhook_body(channel_id="ghost")
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert "chan-1" in store
        assert len(conversations) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_record_prompt_once(self) -> None:
        app, _, conversations = _app_with_pending()
        raw = _webhook_body()
        async with _client(app) as client:
            responses = await asyncio.gather(*[
                client.post("/webhook/provider", content=raw, headers=_signed_headers(raw))
                for _ in range(2)
            ])
        assert [r.status_code for r in responses] == [200, 200]
        record_ids = sorted(r.json()["recordId"] == "msg-1" for r in responses)
        assert record_ids == [False, True]
        assert len(conversations.get("conv-1").messages) == 1

    @pytest.mark.asyncio
    async def test_event_callback_forwarded(self) -> None:
        app, _, _ = _app_with_pending()
        raw = json.dumps({
            "type": "task.ai_generated",
            "channel_id": "chan-1",
            "ai_response": {"data": {"reply": "ok"}},
            "callback_url": "https://provider.test/callback/chan-1",
        }).encode()
        http = make_http_client(make_http_response(200, {"ok": True}))

        async with _client(app) as client:
            with patch("src.webhook.forwarder.httpx.AsyncClient", return_value=http):
                resp = await client.post(
                    "/webhook/provider", content=raw, headers=_signed_headers(raw),
                )

        assert resp.status_code == 200
        args, kwargs = http.post.call_args
        assert args[0] == "https://provider.test/callback/chan-1"
        callback = kwargs["json"]
        assert callback["taskId"] == "msg-1"
        assert callback["data"] == {"reply": "ok", "id": "msg-1", "conversationId": "conv-1"}
        assert callback["metadata"]["channelId"] == "chan-1"

    @pytest.mark.asyncio
    async def test_provider_callback_header_forwarded(self) -> None:
        app, _, _ = _app_with_pending()
        raw = _webhook_body()
        headers = {
            **_signed_headers(raw),
            "X-ModelRiver-Callback-Url": "https://provider.test/callback/chan-1",
        }
        http = make_http_client(make_http_response(200))

        async with _client(app) as client:
            with patch("src.webhook.forwarder.httpx.AsyncClient", return_value=http):
                resp = await client.post("/webhook/provider", content=raw, headers=headers)

        assert resp.status_code == 200
        args, kwargs = http.post.call_args
        assert args[0] == "https://provider.test/callback/chan-1"
        assert kwargs["json"]["taskId"] == "msg-1"

    @pytest.mark.asyncio
    async def test_unparseable_callback_address_still_200(self) -> None:
        app, store, conversations = _app_with_pending()
        raw = _webhook_body(callback_url="http://[::1/cb")
        async with _client(app) as client:
            resp = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
            conv = await client.get("/conversations/conv-1")

        assert resp.status_code == 200
        assert resp.json()["recordId"] == "msg-1"
        assert "chan-1" not in store
        assert conv.json()["messages"][0]["prompt"] == "Hello test"

    @pytest.mark.asyncio
    async def test_failed_forward_still_200(self) -> None:
        app, _, _ = _app_with_pending()
        raw = _webhook_body(callback_url="https://provider.test/callback/chan-1")
        http = make_http_client(make_http_response(502))

        async with _client(app) as client:
            with patch("src.webhook.forwarder.httpx.AsyncClient", return_value=http):
                resp = await client.post(
                    "/webhook/provider", content=raw, headers=_signed_headers(raw),
                )
        assert resp.status_code == 200


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_chat_then_webhook_then_history(self) -> None:
        app = create_app(make_settings())
        http = make_http_client(make_http_response(200, PROVIDER_BODY))

        async with _client(app) as client:
            with patch("src.dispatch.client.httpx.AsyncClient", return_value=http):
                chat = await client.post("/chat", json={"message": "Hello test"})
            assert chat.status_code == 200
            conversation_id = http.post.call_args[1]["json"]["metadata"]["conversation_id"]

            raw = _webhook_body(channel_id=chat.json()["channelId"])
            hook = await client.post(
                "/webhook/provider", content=raw, headers=_signed_headers(raw),
            )
            assert hook.status_code == 200

            history = await client.get(f"/conversations/{conversation_id}")

        assert history.status_code == 200
        data = history.json()
        assert data["id"] == conversation_id
        assert [(m["prompt"], m["response"]) for m in data["messages"]] == [
            ("Hello test", "Hi"),
        ]


class TestConversationEndpoint:
    @pytest.mark.asyncio
    async def test_unknown_conversation_is_404(self) -> None:
        app = create_app(make_settings())
        async with _client(app) as client:
            resp = await client.get("/conversations/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Conversation not found"}
