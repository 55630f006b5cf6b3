"""ASGI middleware that logs each HTTP request with its status and latency."""

from __future__ import annotations

import logging
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

# Paths logged at DEBUG instead of INFO
QUIET_PATHS = {"/health"}


class RequestLogMiddleware:
    """Logs ``METHOD path -> status (ms)`` for every HTTP request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            path = scope.get("path", "")
            level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
            logger.log(
                level, "%s %s -> %d (%.1f ms)",
                scope.get("method", "-"), path, status_code,
                (time.perf_counter() - start) * 1000,
            )
