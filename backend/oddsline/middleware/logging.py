"""
backend/oddsline/middleware/logging.py

Purpose:
    Logging bootstrap and the per-request structured access log. Each HTTP
    request gets a short request id (the caller's ``X-Request-ID`` when sent)
    that is stamped on every log record emitted while handling it.

Dependencies:
    - starlette
"""

import contextvars
import hashlib
import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("oddsline.http")

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_MAX_REQUEST_ID = 32
# Scraped every few seconds; successful hits are logged at DEBUG only.
_QUIET_PATHS = frozenset({"/metrics", "/health"})


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def _client_ip_hash(request: Request) -> str | None:
    if not request.client:
        return None
    return hashlib.sha256((request.client.host or "").encode()).hexdigest()[:12]


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id", "").strip()[:_MAX_REQUEST_ID] or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            _request_id.reset(token)

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            "client_ip_hash": _client_ip_hash(request),
        }
        if response.status_code >= 400:
            level = logging.WARNING
        elif request.url.path in _QUIET_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(level, json.dumps(log_data))

        response.headers["X-Request-ID"] = request_id
        return response


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
    # httpx logs every request URL at INFO, query string included (API key).
    logging.getLogger("httpx").setLevel(logging.WARNING)
