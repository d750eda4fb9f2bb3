from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_store, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.iam.permissions import IamPermission
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.roles import MAX_DESCRIPTION, MAX_NAME, RoleService
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/admin/tenants/{tenant_id}/roles", tags=["admin-roles"])


class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_NAME)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION)
    permissions: List[str] = Field(default_factory=list)
    is_global: bool = False


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=MAX_NAME)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION)
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None


@router.get("", dependencies=[Depends(require_permission(IamPermission.ROLE_READ))])
def list_roles(
    tenant_id: str,
    include_inactive: bool = Query(False),
    search: Optional[str] = Query(None),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RoleService(store).list(ctx, tenant_id, include_inactive=include_inactive, search=search))


@router.post("", status_code=201, dependencies=[Depends(require_permission(IamPermission.ROLE_WRITE))])
def create_role(
    tenant_id: str,
    req: RoleCreateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RoleService(store).create(ctx, tenant_id, req.model_dump(), meta=request_meta(request)))


@router.get("/{role_id}", dependencies=[Depends(require_permission(IamPermission.ROLE_READ))])
def get_role(
    tenant_id: str,
    role_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RoleService(store).get(ctx, tenant_id, role_id))


@router.put("/{role_id}", dependencies=[Depends(require_permission(IamPermission.ROLE_WRITE))])
def update_role(
    tenant_id: str,
    role_id: str,
    req: RoleUpdateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    changes = req.model_dump(exclude_unset=True)
    return ok(RoleService(store).update(ctx, tenant_id, role_id, changes, meta=request_meta(request)))


@router.delete("/{role_id}", dependencies=[Depends(require_permission(IamPermission.ROLE_DELETE))])
def delete_role(
    tenant_id: str,
    role_id: str,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    RoleService(store).delete(ctx, tenant_id, role_id, meta=request_meta(request))
    return ok({"message": "Role deleted successfully"})
