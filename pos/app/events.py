# events.py

"""In-process publish/subscribe hub for domain events.

The bus is constructed once per application (see :func:`pos.app.main.create_app`)
and handed to every service that publishes or subscribes. Handlers run in
registration order on the publisher's task; one failing handler is logged and
does not stop the rest.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

from .routes_metrics import event_handler_errors_total

ORDER_CREATED = "order:created"
ORDER_UPDATED = "order:updated"
ORDER_COMPLETED = "order:completed"
ORDER_CANCELLED = "order:cancelled"
INVENTORY_UPDATED = "inventory:updated"
INVENTORY_LOW_STOCK = "inventory:low_stock"
TABLE_STATUS_CHANGED = "table:status_changed"
RESERVATION_CREATED = "reservation:created"
RESERVATION_UPDATED = "reservation:updated"
PRODUCT_CREATED = "product:created"
STOCK_BULK_ADJUSTED = "stock:bulk_adjusted"
USER_LOGIN = "user:login"
USER_LOGOUT = "user:logout"

DOMAIN_EVENTS = (
    ORDER_CREATED,
    ORDER_UPDATED,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
    INVENTORY_UPDATED,
    INVENTORY_LOW_STOCK,
    TABLE_STATUS_CHANGED,
    RESERVATION_CREATED,
    RESERVATION_UPDATED,
    PRODUCT_CREATED,
    STOCK_BULK_ADJUSTED,
    USER_LOGIN,
    USER_LOGOUT,
)

Payload = Dict[str, Any]
Handler = Callable[[Payload], Union[Awaitable[None], None]]
WildcardHandler = Callable[[str, Payload], Union[Awaitable[None], None]]

logger = logging.getLogger("pos.events")


class EventBus:
    """Dispatch events synchronously to registered handlers."""

    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = defaultdict(list)
        self._wildcard: List[WildcardHandler] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``name`` events and return an unsubscriber."""

        self._subs[name].append(handler)

        def _unsubscribe() -> None:
            if handler in self._subs.get(name, []):
                self._subs[name].remove(handler)

        return _unsubscribe

    def subscribe_all(self, handler: WildcardHandler) -> Callable[[], None]:
        """Register ``handler`` for every event; it receives ``(name, payload)``."""

        self._wildcard.append(handler)

        def _unsubscribe() -> None:
            if handler in self._wildcard:
                self._wildcard.remove(handler)

        return _unsubscribe

    async def publish(self, name: str, payload: Payload) -> None:
        """Invoke handlers for ``name``, then wildcard handlers, in order."""

        if self._closed:
            logger.warning("publish after close dropped", extra={"event": name})
            return
        for handler in list(self._subs.get(name, [])):
            await self._invoke(name, handler, payload)
        for handler in list(self._wildcard):
            await self._invoke(name, handler, name, payload)

    async def _invoke(self, name: str, handler: Callable, *args: Any) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            event_handler_errors_total.labels(event=name).inc()
            logger.exception(
                "event handler %s failed",
                getattr(handler, "__qualname__", repr(handler)),
                extra={"event": name},
            )

    def close(self) -> None:
        """Drop all handlers; later publishes are ignored."""

        self._closed = True
        self._subs.clear()
        self._wildcard.clear()
