from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from change_platform.api.endpoints import (
    access_requests,
    admin,
    advisor_assignments,
    audit_logs,
    auth,
    business,
    groups,
    health,
    metrics_export,
    roles,
    rules,
    tenant_settings,
    tenants,
    users,
)
from change_platform.api.middleware.audit import AuditMiddleware
from change_platform.api.middleware.error_shaping import SafeErrorMiddleware, install_error_handlers
from change_platform.api.middleware.request_context import (
    RateLimitMiddleware,
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
)
from change_platform.core.config import configure_logging, get_settings

configure_logging()
settings = get_settings()

app = FastAPI(
    title="CHANGE Platform API",
    version="1.0.0",
)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Starlette reverses add_middleware order: the LAST call is the OUTERMOST wrapper.
# Runtime order (outermost -> innermost):
#   SafeErrorMiddleware -> CORSMiddleware -> SecurityHeaders -> RateLimit
#   -> RequestContext -> Audit -> handler
# Authentication and permission checks are route dependencies.
# ------------------------------------------------------------

# Audit (innermost, sees actor + tenant set by the route dependencies)
app.add_middleware(AuditMiddleware)

# Request context (request_id + metrics + request log)
app.add_middleware(RequestContextMiddleware)

# Rate limiting (off by default)
app.add_middleware(
    RateLimitMiddleware,
    enabled=settings.rate_limit_enabled,
    rpm=settings.rate_limit_rpm,
    trust_proxy=settings.trust_proxy,
)

# Security headers (on in prod by default)
app.add_middleware(SecurityHeadersMiddleware, enabled=settings.security_headers_enabled)

# CORS second-to-last so OPTIONS preflight never reaches the inner stack
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# SafeErrorMiddleware LAST = outermost (catches all exceptions from inner middleware)
app.add_middleware(SafeErrorMiddleware)

install_error_handlers(app)


app.include_router(health.router)
app.include_router(metrics_export.router)
app.include_router(auth.router)
app.include_router(tenants.router)

# /api/v1/admin
app.include_router(admin.router)
app.include_router(roles.router)
app.include_router(groups.router)
app.include_router(users.router)
app.include_router(advisor_assignments.router)
app.include_router(advisor_assignments.lookups)
app.include_router(access_requests.router)
app.include_router(tenant_settings.router)
app.include_router(audit_logs.router)
app.include_router(rules.router)

# /api/v1/app
app.include_router(business.router)
