"""Request id propagation for HTTP requests and WebSocket connections.

Written as a plain ASGI middleware rather than ``BaseHTTPMiddleware`` so the
id also covers ``/ws`` connections; every log line emitted while a socket is
open then carries the id of the upgrade request.
"""

import uuid
from contextvars import ContextVar

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER = "X-Request-ID"

# Read by the log filter and by error envelopes
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        req_id = Headers(scope=scope).get(HEADER) or uuid.uuid4().hex
        token = request_id_ctx.set(req_id)

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER] = req_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            request_id_ctx.reset(token)
