"""Correlation ID helpers shared by the request middleware and endpoints."""
from __future__ import annotations
import uuid
from typing import Any, Mapping

REQUEST_ID_HEADER = "X-Request-ID"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    """Reuse the caller's X-Request-ID or mint one."""
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def request_id_from(request: Any) -> str:
    """Request ID assigned by the middleware, falling back to the raw header."""
    state_id = getattr(getattr(request, "state", None), "request_id", None)
    if state_id:
        return state_id
    return request.headers.get(REQUEST_ID_HEADER, None) or "unknown"

__all__ = ["ensure_request_id", "request_id_from", "REQUEST_ID_HEADER"]
