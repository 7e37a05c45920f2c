"""
Audit trail for privileged control-plane actions.

Attaching a data source or binding a service moves credentials into a tenant
namespace, so each such action is recorded on the ``iaf.audit`` logger as one
``key=value`` line. The same logger receives a per-request line from the HTTP
middleware. Only identifiers are ever recorded, never credential values.
"""
from __future__ import annotations

import time
import uuid
from typing import Any

from fastapi import Request

from .logging_utils import audit_logger

REQUEST_ID_HEADER = "X-Request-ID"


def _format(fields: dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)


def audit(event: str, **fields: Any) -> None:
    """Emit one audit record."""
    audit_logger().info(_format({"event": event, **fields}))


async def audit_requests(request: Request, call_next):
    """HTTP middleware logging every API request with a request id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    start = time.monotonic()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    audit(
        "api_request",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=int((time.monotonic() - start) * 1000),
        remote_addr=request.client.host if request.client else None,
    )
    return response
