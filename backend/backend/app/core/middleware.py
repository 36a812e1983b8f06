from __future__ import annotations

import contextvars
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("mes.http")

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return _request_id.get()


def _incoming_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    if rid:
        return rid
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id (X-Request-Id) and log every request with its duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = _incoming_request_id(request)
        token = _request_id.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.exception("%s %s raised after %dms rid=%s", request.method, request.url.path, duration_ms, request_id)
            raise
        finally:
            _request_id.reset(token)

        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers["X-Request-Id"] = request_id
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "%s %s -> %d in %dms rid=%s", request.method, request.url.path, response.status_code, duration_ms, request_id)
        return response
