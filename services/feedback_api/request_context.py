"""Request ID propagation via ContextVar + logging filter.

Usage:
    - ``request_id_middleware`` (installed by ``app.create_app``) sets the
      request_id for each request, reusing an inbound ``x-request-id``.
    - The logging filter attaches request_id to every log record.
    - Response header ``x-request-id`` is added automatically.
"""
from __future__ import annotations

import logging
import re
import uuid
from contextvars import ContextVar

REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="")

_INBOUND_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


def accept_request_id(value: object) -> str:
    text = str(value or "").strip()
    if _INBOUND_ID_RE.match(text):
        return text
    return new_request_id()


class RequestIdFilter(logging.Filter):
    """Inject ``request_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = REQUEST_ID.get("")  # type: ignore[attr-defined]
        return True


async def request_id_middleware(request, call_next):
    rid = accept_request_id(request.headers.get("x-request-id"))
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["x-request-id"] = rid
    return response
