"""Sentry reporting for unhandled errors.

Enabled only when ``ERROR_DSN`` is set. Customer names and phone numbers from
orders and reservations are scrubbed from request data before an event
leaves the process.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import sentry_sdk

logger = logging.getLogger("obs")

SCRUB_KEYS = {"customer_name", "customerName", "customer_phone", "customerPhone"}


def _scrub(event: dict, hint: dict) -> dict:
    data: Any = event.get("request", {}).get("data")
    if isinstance(data, dict):
        for key in SCRUB_KEYS & data.keys():
            data[key] = "[Filtered]"
    return event


def init_sentry(dsn: Optional[str] = None, env: Optional[str] = None) -> bool:
    """Initialise Sentry; return ``False`` when no DSN is configured."""
    dsn = dsn or os.getenv("ERROR_DSN")
    if not dsn:
        logger.info("ERROR_DSN not set; error sink disabled")
        return False
    sentry_sdk.init(dsn=dsn, environment=env, before_send=_scrub, send_default_pii=False)
    return True


def capture_exception(exc: Exception) -> None:
    """Send ``exc`` to Sentry tagged with the request id, or log it."""
    from ..middlewares.request_id import request_id_ctx

    if not sentry_sdk.get_client().is_active():
        logger.error("unhandled exception", exc_info=exc)
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("request_id", request_id_ctx.get(None))
        sentry_sdk.capture_exception(exc)
