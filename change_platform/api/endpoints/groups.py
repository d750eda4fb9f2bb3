from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import ensure_permission, get_store, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.iam.groups import GroupService
from change_platform.core.iam.permissions import IamPermission
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/admin/tenants/{tenant_id}/groups", tags=["admin-groups"])


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    members: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class MembersRequest(BaseModel):
    action: Literal["add", "remove"]
    user_ids: List[str] = Field(..., min_length=1)


class GroupRolesRequest(BaseModel):
    action: Literal["add", "remove"]
    role_ids: List[str] = Field(..., min_length=1)


@router.get("", dependencies=[Depends(require_permission(IamPermission.GROUP_READ))])
def list_groups(
    tenant_id: str,
    search: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    items, pagination = GroupService(store).list(
        tenant_id, search=search, include_inactive=include_inactive, page=page, limit=limit
    )
    return ok(items, pagination)


@router.post("", status_code=201, dependencies=[Depends(require_permission(IamPermission.GROUP_WRITE))])
def create_group(
    tenant_id: str,
    req: GroupCreateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    if req.roles:
        ensure_permission(ctx, IamPermission.ROLE_ASSIGN)
    return ok(GroupService(store).create(ctx, tenant_id, req.model_dump(), meta=request_meta(request)))


@router.get("/{group_id}", dependencies=[Depends(require_permission(IamPermission.GROUP_READ))])
def get_group(
    tenant_id: str,
    group_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(GroupService(store).get_with_details(tenant_id, group_id))


@router.put("/{group_id}", dependencies=[Depends(require_permission(IamPermission.GROUP_WRITE))])
def update_group(
    tenant_id: str,
    group_id: str,
    req: GroupUpdateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    changes = req.model_dump(exclude_unset=True)
    return ok(GroupService(store).update(ctx, tenant_id, group_id, changes, meta=request_meta(request)))


@router.delete("/{group_id}", dependencies=[Depends(require_permission(IamPermission.GROUP_DELETE))])
def delete_group(
    tenant_id: str,
    group_id: str,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    GroupService(store).delete(ctx, tenant_id, group_id, meta=request_meta(request))
    return ok({"message": "Group deleted successfully"})


@router.post(
    "/{group_id}/members",
    dependencies=[Depends(require_permission(IamPermission.GROUP_MANAGE_MEMBERS))],
)
def manage_members(
    tenant_id: str,
    group_id: str,
    req: MembersRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    group = GroupService(store).manage_members(
        ctx, tenant_id, group_id, req.action, req.user_ids, meta=request_meta(request)
    )
    return ok(group)


@router.post("/{group_id}/roles", dependencies=[Depends(require_permission(IamPermission.ROLE_ASSIGN))])
def manage_roles(
    tenant_id: str,
    group_id: str,
    req: GroupRolesRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    group = GroupService(store).manage_roles(
        ctx, tenant_id, group_id, req.action, req.role_ids, meta=request_meta(request)
    )
    return ok(group)
