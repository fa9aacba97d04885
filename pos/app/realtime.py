"""WebSocket fan-out of domain events.

The :class:`Broadcaster` subscribes to every event on the bus and pushes a
``{type, payload, timestamp}`` envelope to each connected client whose
subscription set contains the event type or ``*``. Delivery is best effort:
a client whose socket is gone is dropped, nothing is queued for later, and
reconnecting clients pull full state from the ``/api/sync/*`` endpoints.
"""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocket, WebSocketState

from .events import INVENTORY_UPDATED, ORDER_COMPLETED, EventBus
from .routes_metrics import ws_clients, ws_messages_total, ws_send_failures_total

WILDCARD = "*"

DASHBOARD_UPDATE = "dashboard:update"
DASHBOARD_SALES_UPDATE = "dashboard:sales_update"
INVENTORY_UPDATE = "inventory:update"

logger = logging.getLogger("pos.realtime")

MetricsProvider = Callable[[], Awaitable[dict]]
Relay = Callable[[dict], Awaitable[None]]

_ids = itertools.count(1)


def make_envelope(event_type: str, payload: Any) -> dict:
    return {
        "type": event_type,
        "payload": jsonable_encoder(payload),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@dataclass(eq=False)
class Client:
    websocket: WebSocket
    ip: str
    id: int = field(default_factory=lambda: next(_ids))
    subscriptions: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def wants(self, event_type: str) -> bool:
        return WILDCARD in self.subscriptions or event_type in self.subscriptions

    @property
    def is_open(self) -> bool:
        ws = self.websocket
        return (
            ws.client_state == WebSocketState.CONNECTED
            and ws.application_state == WebSocketState.CONNECTED
        )


class Broadcaster:
    """Relay bus events to subscribed WebSocket clients."""

    def __init__(
        self,
        bus: EventBus,
        metrics_provider: Optional[MetricsProvider] = None,
        relay: Optional[Relay] = None,
    ) -> None:
        self._clients: Dict[int, Client] = {}
        self._metrics_provider = metrics_provider
        self._relay = relay
        self._unsubscribe = bus.subscribe_all(self.handle_event)

    @property
    def clients(self) -> list[Client]:
        return list(self._clients.values())

    async def connect(self, websocket: WebSocket, ip: str) -> Client:
        """Register an accepted socket and greet it."""

        client = Client(websocket=websocket, ip=ip)
        self._clients[client.id] = client
        ws_clients.set(len(self._clients))
        logger.info("ws client %d connected ip=%s", client.id, ip)
        await self.send(
            client,
            make_envelope(
                "connected",
                {"message": "Connected to POS real-time server", "client_id": client.id},
            ),
        )
        return client

    def disconnect(self, client: Client) -> None:
        if self._clients.pop(client.id, None) is not None:
            ws_clients.set(len(self._clients))
            logger.info("ws client %d disconnected", client.id)

    def subscribe(self, client: Client, events: Iterable[str]) -> list[str]:
        client.subscriptions.update(e for e in events if e)
        return sorted(client.subscriptions)

    def unsubscribe(self, client: Client, events: Iterable[str]) -> list[str]:
        client.subscriptions.difference_update(events)
        return sorted(client.subscriptions)

    async def send(self, client: Client, envelope: dict) -> bool:
        """Send to one client; a closed or failing socket drops the client."""

        if not client.is_open:
            self.disconnect(client)
            return False
        try:
            await client.websocket.send_json(envelope)
        except Exception as exc:
            ws_send_failures_total.inc()
            logger.info("ws send to client %d failed: %s", client.id, exc)
            self.disconnect(client)
            return False
        ws_messages_total.inc()
        return True

    async def broadcast(self, event_type: str, payload: Any) -> int:
        """Deliver one envelope to every interested client; return the count."""

        envelope = make_envelope(event_type, payload)
        delivered = 0
        for client in self.clients:
            if client.wants(event_type) and await self.send(client, envelope):
                delivered += 1
        if self._relay is not None:
            await self._relay(envelope)
        return delivered

    async def handle_event(self, name: str, payload: dict) -> None:
        await self.broadcast(name, payload)
        if name == ORDER_COMPLETED:
            await self._order_completed(payload)
        elif name == INVENTORY_UPDATED:
            await self.broadcast(INVENTORY_UPDATE, {"type": "stock_adjusted", **payload})

    async def _order_completed(self, order: dict) -> None:
        if self._metrics_provider is not None:
            metrics = await self._metrics_provider()
            await self.broadcast(
                DASHBOARD_UPDATE,
                {"type": "order_completed", "data": order, "metrics": metrics},
            )
            await self.broadcast(
                DASHBOARD_SALES_UPDATE, {**metrics.get("sales", {}), "last_order": order}
            )
        items = order.get("items") or []
        if items:
            await self.broadcast(
                INVENTORY_UPDATE,
                {
                    "type": "items_sold",
                    "items": [
                        {"product_id": i["product_id"], "quantity_sold": i["quantity"]}
                        for i in items
                    ],
                },
            )

    def stats(self) -> dict:
        by_event: Counter[str] = Counter()
        for client in self._clients.values():
            by_event.update(client.subscriptions)
        return {
            "total_connections": len(self._clients),
            "subscriptions": dict(by_event),
            "clients": [
                {
                    "id": c.id,
                    "ip": c.ip,
                    "subscriptions": sorted(c.subscriptions),
                    "connected_at": c.connected_at.isoformat(),
                }
                for c in self._clients.values()
            ],
        }

    async def close(self) -> None:
        """Detach from the bus and close every socket."""

        self._unsubscribe()
        for client in self.clients:
            if client.is_open:
                try:
                    await client.websocket.close(code=1001)
                except RuntimeError:
                    logger.debug("ws client %d already closing", client.id)
            self.disconnect(client)
