"""Access log for the HTTP API.

One record per request, with route, status, latency and the ``X-User-ID``
actor as structured fields. Successful requests are sampled with
``LOG_SAMPLE_2XX``; anything else is always logged. Request bodies are not
logged: every mutation already lands in the audit log.
"""

import logging
import os
import random
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..obs import capture_exception
from ..utils.responses import err

PII_KEYS = {"customername", "customer_name", "customerphone", "customer_phone", "email"}
QUIET_PATHS = {"/health", "/metrics"}
LOG_SAMPLE_2XX = float(os.getenv("LOG_SAMPLE_2XX", "0.1"))

logger = logging.getLogger("pos.http")


def _redact(params: dict) -> dict:
    return {k: ("***" if k.lower() in PII_KEYS else v) for k, v in params.items()}


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            error_id = uuid.uuid4().hex
            logger.exception(
                "unhandled error error_id=%s", error_id, extra={"route": path, "status": 500}
            )
            capture_exception(exc)
            payload = err(500, "Internal Server Error")
            payload["error_id"] = error_id
            response = JSONResponse(payload, status_code=500)

        status = response.status_code
        if path in QUIET_PATHS or (status < 300 and random.random() >= LOG_SAMPLE_2XX):
            return response

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s -> %d",
            request.method,
            path,
            status,
            extra={
                "route": path,
                "status": status,
                "latency_ms": int((time.perf_counter() - start) * 1000),
                "user": request.headers.get("X-User-ID"),
                "ip": request.client.host if request.client else None,
                "query": _redact(dict(request.query_params)) or None,
            },
        )
        return response
