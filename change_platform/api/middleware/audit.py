import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from change_platform.core.audit.iam_audit import client_ip
from change_platform.core.config import get_settings
from change_platform.core.observability.audit import http_audit_event


def _extract_actor(request: Request) -> str | None:
    # populated by the auth dependency
    actor = getattr(request.state, "actor", None)
    if actor:
        return str(actor)

    # token presence only; the token itself is never written
    if request.headers.get("Authorization"):
        return "bearer"
    return None


def _extract_tenant(request: Request) -> str | None:
    for attr in ("tenant", "tenant_id"):
        tenant = getattr(request.state, attr, None)
        if tenant:
            return str(tenant)

    # /api/v1/.../tenants/{tenant}/...
    parts = request.url.path.split("/")
    if "tenants" in parts:
        idx = parts.index("tenants")
        if len(parts) > idx + 1 and parts[idx + 1]:
            return parts[idx + 1]
    return None


class AuditMiddleware(BaseHTTPMiddleware):
    """Appends every API request to the HTTP audit trail file."""

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith("/api/"):
            return await call_next(request)

        response: Response | None = None
        status: int | None = None
        start = time.time()
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            http_audit_event(
                event_type="http_request",
                request_id=getattr(request.state, "request_id", None),
                actor=_extract_actor(request),
                tenant=_extract_tenant(request),
                method=request.method,
                path=request.url.path,
                status_code=status,
                client_ip=client_ip(request),
                duration_ms=int((time.time() - start) * 1000),
                audit_path=get_settings().audit_path,
            )
