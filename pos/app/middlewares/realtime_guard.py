"""Utilities to guard WebSocket connections.

This module centralises per-IP connection limits and the heartbeat used by
the ``/ws`` endpoint. Limits come from :func:`config.get_settings`
(``max_conn_per_ip`` and ``heartbeat_timeout_sec``) and may be overridden
per call.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import HTTPException
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from config import get_settings

logger = logging.getLogger("pos.realtime")

connections: dict[str, int] = defaultdict(int)


def register(ip: str, limit: int | None = None) -> None:
    """Increment connection count for ``ip`` or raise ``HTTPException``."""
    limit = limit if limit is not None else get_settings().max_conn_per_ip
    if connections[ip] >= limit:
        raise HTTPException(status_code=429, detail="RETRY")
    connections[ip] += 1


def unregister(ip: str) -> None:
    """Decrement connection count for ``ip``."""
    if connections[ip] > 0:
        connections[ip] -= 1
    if connections[ip] == 0:
        connections.pop(ip, None)


def heartbeat_task(websocket: WebSocket, interval: float | None = None) -> asyncio.Task:
    """Return a task sending periodic heartbeats to ``websocket``.

    The task stops when the connection drops. Consumers need not await the
    returned task but should cancel it on cleanup.
    """
    interval = interval or get_settings().heartbeat_timeout_sec

    async def _hb() -> None:  # pragma: no cover - network timing
        while websocket.client_state == WebSocketState.CONNECTED:
            await asyncio.sleep(interval)
            try:
                await websocket.send_json({"type": "heartbeat"})
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.debug("heartbeat stopped; socket closed")
                return

    return asyncio.create_task(_hb())
