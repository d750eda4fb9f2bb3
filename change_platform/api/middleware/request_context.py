from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from change_platform.api.responses import error_body
from change_platform.core.observability.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_TOTAL,
    normalize_path,
)

log = logging.getLogger("change.request")

MAX_REQUEST_ID_LEN = 128

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

AUTH_LIMITED_PATHS = ("/api/v1/auth/login", "/api/v1/auth/register")


def _inbound_request_id(request: Request) -> str:
    rid = (request.headers.get("x-request-id") or "").strip()
    if rid and len(rid) <= MAX_REQUEST_ID_LEN:
        return rid
    return str(uuid.uuid4())


def _client_ip(request: Request, trust_proxy: bool = False) -> str:
    # X-Forwarded-For is client-controlled unless a proxy we run rewrites it
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _request_log_line(request: Request, status_code: int, duration_ms: int) -> Dict[str, object]:
    # identity fields are filled in by the auth dependencies; tokens never are
    state = request.state
    user = getattr(state, "user", None) or {}
    return {
        "event": "request",
        "request_id": getattr(state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "tenant": getattr(state, "tenant", None) or getattr(state, "tenant_id", None),
        "sub": user.get("sub"),
        "role": user.get("role"),
    }


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assigns the request id, records HTTP metrics and writes one
    structured log line per /api/ request.

    Sets request.state.request_id and request.state.started_at, and
    echoes the id back in the X-Request-Id response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = _inbound_request_id(request)
        request.state.request_id = rid
        request.state.started_at = time.time()

        started = time.perf_counter()
        resp = await call_next(request)
        elapsed = time.perf_counter() - started
        resp.headers["X-Request-Id"] = rid

        path = normalize_path(request.url.path)
        method = request.method.upper()
        HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status=str(resp.status_code)).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(elapsed)

        if request.url.path.startswith("/api/"):
            log.info("%s", _request_log_line(request, resp.status_code, int(elapsed * 1000)))
        return resp


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds SECURITY_HEADERS to every response unless a handler set them."""

    def __init__(self, app, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        resp = await call_next(request)
        if self.enabled:
            for name, value in SECURITY_HEADERS.items():
                resp.headers.setdefault(name, value)
        return resp


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory fixed-window limiter keyed by client IP, /api/ routes only.

    Login and register share a tighter budget of a fifth of `rpm`
    (never below 5). The client IP is the socket peer; the first
    X-Forwarded-For hop is used only with `trust_proxy`. State is per
    process and holds the current minute only.
    """

    def __init__(self, app, enabled: bool = False, rpm: int = 100, trust_proxy: bool = False):
        super().__init__(app)
        self.enabled = enabled
        self.rpm = max(10, int(rpm))
        self.trust_proxy = trust_proxy
        self._minute = -1
        # (bucket, ip) -> count within self._minute
        self._counts: Dict[Tuple[str, str], int] = {}

    def _budget(self, path: str) -> Tuple[str, int]:
        if path.startswith(AUTH_LIMITED_PATHS):
            return "auth", max(5, self.rpm // 5)
        return "api", self.rpm

    def _hit(self, key: Tuple[str, str], now: float) -> int:
        minute = int(now // 60)
        if minute != self._minute:
            self._counts.clear()
            self._minute = minute
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.enabled or not path.startswith("/api/"):
            return await call_next(request)

        bucket, limit = self._budget(path)
        now = time.time()
        if self._hit((bucket, _client_ip(request, self.trust_proxy)), now) <= limit:
            return await call_next(request)

        rid: Optional[str] = request.headers.get("x-request-id")
        return JSONResponse(
            status_code=429,
            content=error_body("RATE_LIMITED", "Too many requests, please try again later", rid),
            headers={"Retry-After": str(60 - int(now) % 60)},
        )
