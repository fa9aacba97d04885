from typing import Any, Dict


def ok(data: Any) -> Dict[str, Any]:
    """Return a success envelope."""
    return {"ok": True, "data": data}


def err(
    code: int | str,
    message: str,
    details: Dict[str, Any] | None = None,
    hint: str | None = None,
) -> Dict[str, Any]:
    """Return an error envelope.

    ``error`` carries the human readable message so clients can display it
    directly; ``code`` and ``details`` are for programmatic handling.
    """
    from ..middlewares.request_id import request_id_ctx

    body: Dict[str, Any] = {
        "ok": False,
        "request_id": request_id_ctx.get(None),
        "error": message,
        "code": code,
    }
    if hint:
        body["hint"] = hint
    if details:
        body["details"] = details
    return body
