"""Real-time WebSocket endpoint.

Clients send ``{"type": "subscribe", "payload": {"events": [...]}}``,
``unsubscribe`` or ``ping``; everything else flows server to client through
:class:`pos.app.realtime.Broadcaster`.
"""

from __future__ import annotations

import json
import logging

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from .deps.context import get_broadcaster
from .middlewares import realtime_guard
from .realtime import Broadcaster, make_envelope
from .utils.responses import ok

router = APIRouter()
logger = logging.getLogger("pos.realtime")


def _events(payload) -> list[str]:
    events = payload.get("events") if isinstance(payload, dict) else None
    if isinstance(events, str):
        return [events]
    if isinstance(events, list):
        return [e for e in events if isinstance(e, str)]
    return []


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    settings = websocket.app.state.settings
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    ip = websocket.client.host if websocket.client else "?"
    try:
        realtime_guard.register(ip, settings.max_conn_per_ip)
    except HTTPException:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()
    client = await broadcaster.connect(websocket, ip)
    hb_task = realtime_guard.heartbeat_task(websocket, settings.heartbeat_timeout_sec)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            try:
                if raw is None:
                    raise ValueError("binary frames are not accepted")
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError("message must be an object")
            except ValueError:
                await broadcaster.send(
                    client, make_envelope("error", {"message": "Invalid message format"})
                )
                continue

            kind = message.get("type")
            payload = message.get("payload") or {}
            if kind == "subscribe":
                events = broadcaster.subscribe(client, _events(payload))
                await broadcaster.send(
                    client, make_envelope("subscription:confirmed", {"events": events})
                )
            elif kind == "unsubscribe":
                events = broadcaster.unsubscribe(client, _events(payload))
                await broadcaster.send(
                    client, make_envelope("unsubscription:confirmed", {"events": events})
                )
            elif kind == "ping":
                await broadcaster.send(client, make_envelope("pong", {}))
            else:
                logger.info("ws client %d sent unknown message type %r", client.id, kind)
    except WebSocketDisconnect:
        pass
    finally:
        hb_task.cancel()
        broadcaster.disconnect(client)
        realtime_guard.unregister(ip)


@router.get("/api/ws/stats")
async def ws_stats(broadcaster: Broadcaster = Depends(get_broadcaster)) -> dict:
    return ok(broadcaster.stats())
