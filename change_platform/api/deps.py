"""
FastAPI dependencies for authentication, permission checks and the tenant
boundary.

Route wiring:
  dependencies=[Depends(require_permission(IamPermission.USER_READ))]
  ctx: IamContext = Depends(require_tenant_access)
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

from fastapi import Depends, Request

from change_platform.core.auth.tokens import TokenPayload, verify_access_token
from change_platform.core.config import get_settings
from change_platform.core.errors import ForbiddenError, TenantAccessError, UnauthorizedError
from change_platform.core.iam.permissions import PrimaryRole
from change_platform.core.iam.resolver import IamContext, is_cross_tenant, load_iam_context
from change_platform.core.iam.tenant_access import assert_tenant_access, get_active_tenant
from change_platform.core.observability.metrics import AUTHZ_DECISIONS_TOTAL
from change_platform.core.store import DocumentStore, get_document_store

log = logging.getLogger("change.authz")


def get_store() -> DocumentStore:
    return get_document_store(get_settings().data_dir)


def _extract_bearer(request: Request) -> str:
    auth_header = request.headers.get("authorization")
    if not auth_header:
        raise UnauthorizedError("Authentication required")
    if not auth_header.startswith("Bearer "):
        raise UnauthorizedError("Invalid authorization header")
    token = auth_header[len("Bearer "):].strip()
    if not token:
        raise UnauthorizedError("Authentication required")
    return token


def get_token_payload(request: Request) -> TokenPayload:
    payload = verify_access_token(_extract_bearer(request))
    # consumed by request logging and the HTTP audit trail
    request.state.user = {"sub": payload.user_id, "role": payload.role}
    request.state.actor = payload.user_id
    return payload


def get_iam_context(
    request: Request,
    payload: TokenPayload = Depends(get_token_payload),
    store: DocumentStore = Depends(get_store),
) -> IamContext:
    ctx = load_iam_context(store, payload.user_id)
    request.state.iam = ctx
    request.state.tenant_id = ctx.tenant_id
    return ctx


def _deny(check: str, request: Request, ctx: IamContext, message: str) -> None:
    AUTHZ_DECISIONS_TOTAL.labels(decision="deny", check=check).inc()
    log.info(
        "authz deny user=%s primary_role=%s check=%s method=%s path=%s",
        ctx.user_id,
        ctx.primary_role,
        check,
        request.method,
        request.url.path,
    )
    raise ForbiddenError(message)


def _allow(check: str) -> None:
    AUTHZ_DECISIONS_TOTAL.labels(decision="allow", check=check).inc()


def require_permission(permission: str) -> Callable:
    def dependency(request: Request, ctx: IamContext = Depends(get_iam_context)) -> IamContext:
        if not ctx.has_permission(permission):
            _deny("permission", request, ctx, f"Permission denied: {permission}")
        _allow("permission")
        return ctx

    return dependency


def require_any_permission(permissions: Iterable[str]) -> Callable:
    perms: List[str] = list(permissions)

    def dependency(request: Request, ctx: IamContext = Depends(get_iam_context)) -> IamContext:
        if not ctx.has_any_permission(perms):
            _deny("any_permission", request, ctx, f"Permission denied. Required one of: {', '.join(perms)}")
        _allow("any_permission")
        return ctx

    return dependency


def require_all_permissions(permissions: Iterable[str]) -> Callable:
    perms: List[str] = list(permissions)

    def dependency(request: Request, ctx: IamContext = Depends(get_iam_context)) -> IamContext:
        missing = ctx.missing_permissions(perms)
        if missing:
            _deny("all_permissions", request, ctx, f"Missing permissions: {', '.join(missing)}")
        _allow("all_permissions")
        return ctx

    return dependency


def require_cross_tenant_access(request: Request, ctx: IamContext = Depends(get_iam_context)) -> IamContext:
    if not is_cross_tenant(ctx):
        _deny("cross_tenant", request, ctx, "Cross-tenant access not permitted")
    _allow("cross_tenant")
    return ctx


def require_tenant_access(
    tenant_id: str,
    request: Request,
    ctx: IamContext = Depends(get_iam_context),
    store: DocumentStore = Depends(get_store),
) -> IamContext:
    """Guard for `/tenants/{tenant_id}/...` routes."""
    try:
        assert_tenant_access(store, ctx, tenant_id)
    except TenantAccessError:
        AUTHZ_DECISIONS_TOTAL.labels(decision="deny", check="tenant").inc()
        log.info("tenant deny user=%s primary_role=%s tenant=%s", ctx.user_id, ctx.primary_role, tenant_id)
        raise
    get_active_tenant(store, tenant_id, allow_inactive=ctx.primary_role == PrimaryRole.IT_ADMIN.value)
    _allow("tenant")
    request.state.tenant = tenant_id
    return ctx


def ensure_permission(ctx: IamContext, permission: str) -> None:
    """Inline check for permissions that only apply to part of a request body."""
    if not ctx.has_permission(permission):
        AUTHZ_DECISIONS_TOTAL.labels(decision="deny", check="permission").inc()
        raise ForbiddenError(f"Permission denied: {permission}")


def require_operational_permission(permission: str) -> Callable:
    """Same as `require_permission`, counted separately for the business app surface."""

    def dependency(request: Request, ctx: IamContext = Depends(get_iam_context)) -> IamContext:
        if not ctx.has_permission(permission):
            _deny("operational", request, ctx, f"Permission denied: {permission}")
        _allow("operational")
        return ctx

    return dependency
