"""FastAPI application exposing the chat relay endpoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.config import RelaySettings
from src.conversations.log import ConversationLog
from src.correlation.store import CorrelationStore
from src.dispatch.client import WEBHOOK_PATH, DispatchClient
from src.errors import (
    AuthError,
    ConfigurationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from src.models import ChatRequest
from src.proxy.request_log import RequestLogMiddleware
from src.webhook.forwarder import CallbackForwarder
from src.webhook.normalizer import callback_header
from src.webhook.processor import WebhookProcessor
from src.webhook.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, SignatureVerifier

logger = logging.getLogger(__name__)

_MAX_WEBHOOK_BODY_SIZE = 10 * 1024 * 1024  # 10MB


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = RelaySettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    audit_logger = AuditLogger(settings.audit_log_path) if settings.audit_log_path else None
    if settings.api_key:
        logger.info("PROVIDER_API_KEY is configured")
    else:
        logger.warning("PROVIDER_API_KEY not set; /chat will return 500")
    return create_app(settings, audit_logger=audit_logger)


def create_app(
    settings: RelaySettings,
    store: CorrelationStore | None = None,
    conversations: ConversationLog | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the relay app. Each app owns its own store and conversation log."""
    store = store if store is not None else CorrelationStore(settings.pending_ttl_seconds)
    conversations = conversations if conversations is not None else ConversationLog()

    dispatcher = DispatchClient(
        store=store,
        api_key=settings.api_key,
        provider_url=settings.provider_url,
        public_base_url=settings.public_base_url,
        default_workflow=settings.default_workflow,
        audit_logger=audit_logger,
    )
    processor = WebhookProcessor(
        verifier=SignatureVerifier(
            settings.webhook_secret,
            production=settings.production,
            max_age_seconds=settings.webhook_max_age_seconds,
        ),
        store=store,
        conversations=conversations,
        forwarder=CallbackForwarder(settings.api_key, audit_logger=audit_logger),
        audit_logger=audit_logger,
    )

    app = FastAPI(docs_url=None, redoc_url=None)
    app.state.store = store
    app.state.conversations = conversations

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "pendingRequests": store.size(),
            "config": {
                "providerApiUrl": settings.provider_url,
                "publicBaseUrl": settings.public_base_url,
                "apiKeyConfigured": bool(settings.api_key),
                "webhookSecretConfigured": bool(settings.webhook_secret),
                "production": settings.production,
            },
        }

    @app.post("/chat")
    async def chat(body: ChatRequest) -> JSONResponse:
        try:
            result = await dispatcher.dispatch(
                body.message,
                conversation_id=body.conversation_id,
                workflow=body.workflow,
                events=body.events,
            )
        except ValidationError:
            return JSONResponse({"error": "Message is required"}, status_code=400)
        except ConfigurationError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        except UpstreamError as e:
            return JSONResponse(
                {"error": e.provider_message, "details": e.provider_details},
                status_code=500,
            )
        return JSONResponse(result.model_dump(by_alias=True))

    @app.post(WEBHOOK_PATH)
    async def provider_webhook(request: Request) -> JSONResponse:
        raw_body = await request.body()
        if len(raw_body) > _MAX_WEBHOOK_BODY_SIZE:
            return JSONResponse({"error": "Request body too large"}, status_code=413)

        try:
            ack = await processor.process(
                raw_body,
                signature=request.headers.get(SIGNATURE_HEADER),
                timestamp=request.headers.get(TIMESTAMP_HEADER),
                callback_header=callback_header(request.headers),
            )
        except AuthError as e:
            return JSONResponse(
                {"error": "Unauthorized", "message": str(e)}, status_code=401,
            )
        except ValidationError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except ConfigurationError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        except Exception as e:
            logger.exception("Error processing webhook")
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(ack.model_dump(by_alias=True))

    @app.get("/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str) -> JSONResponse:
        try:
            conversation = conversations.get(conversation_id)
        except NotFoundError:
            return JSONResponse({"error": "Conversation not found"}, status_code=404)
        return JSONResponse(conversation.model_dump(mode="json", by_alias=True))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLogMiddleware)

    return app
