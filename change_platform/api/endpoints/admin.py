from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from change_platform.api.deps import get_iam_context, get_store, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.errors import UnauthorizedError
from change_platform.core.iam.permissions import (
    IamPermission,
    PERMISSION_CATALOG,
    SYSTEM_ROLE_DESCRIPTIONS,
    SYSTEM_ROLE_PERMISSIONS,
)
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.tenant_access import get_accessible_tenants
from change_platform.core.iam.users import public_user
from change_platform.core.store import DocumentStore
from change_platform.core.tenants import TenantService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/me")
def admin_me(
    ctx: IamContext = Depends(get_iam_context),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    user = store.users.get(ctx.user_id)
    if not user:
        raise UnauthorizedError("User not found")
    return ok(
        {
            "user": public_user(user),
            "permissions": sorted(ctx.permissions),
            "roles": ctx.role_summaries(),
            "tenant_id": ctx.tenant_id,
            "primary_role": ctx.primary_role,
            "accessible_tenants": get_accessible_tenants(store, ctx.user_id, ctx.primary_role, ctx.tenant_id),
        }
    )


@router.get("/permissions")
def permission_catalog(ctx: IamContext = Depends(get_iam_context)) -> Dict[str, Any]:
    return ok(PERMISSION_CATALOG)


@router.get("/system-roles")
def system_roles(ctx: IamContext = Depends(require_permission(IamPermission.ROLE_READ))) -> Dict[str, Any]:
    out = []
    for key, perms in SYSTEM_ROLE_PERMISSIONS.items():
        out.append({"key": key, **SYSTEM_ROLE_DESCRIPTIONS[key], "permissions": sorted(perms)})
    return ok(out)


@router.get(
    "/tenants/{tenant_id}/dashboard",
    dependencies=[Depends(require_permission(IamPermission.USER_READ))],
)
def tenant_dashboard(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(TenantService(store).dashboard(tenant_id))
