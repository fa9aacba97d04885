"""Dependency helpers resolving services and the calling actor."""

from __future__ import annotations

from fastapi import Header, Request

from ..services import Actor


def get_actor(request: Request, x_user_id: str | None = Header(default=None)) -> Actor:
    """Return the actor for audit records from ``X-User-ID`` and the client IP.

    Authentication happens upstream; the header is trusted as given.
    """
    ip = request.client.host if request.client else None
    return Actor(user_id=x_user_id, ip_address=ip)


def _state(name: str):
    def _dep(request: Request):
        return getattr(request.app.state, name)

    _dep.__name__ = f"get_{name}"
    return _dep


get_orders = _state("orders")
get_inventory = _state("inventory")
get_catalog = _state("catalog")
get_tables = _state("tables")
get_sync = _state("sync")
get_audit = _state("audit")
get_integrity = _state("integrity")
get_backups = _state("backups")
get_broadcaster = _state("broadcaster")
