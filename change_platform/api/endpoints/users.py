from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import ensure_permission, get_store, require_permission, require_tenant_access
from change_platform.api.endpoints.auth import EMAIL_PATTERN, MIN_PASSWORD
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.errors import ForbiddenError
from change_platform.core.iam.permissions import IamPermission, PrimaryRole, UserRole, has_role_level
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.users import UserService, public_user
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/admin/tenants/{tenant_id}/users", tags=["admin-users"])


def _check_role_grant(ctx: IamContext, data: Dict[str, Any]) -> None:
    if "primary_role" not in data and "role" not in data:
        return
    ensure_permission(ctx, IamPermission.ROLE_ASSIGN)
    if ctx.primary_role == PrimaryRole.IT_ADMIN.value:
        return
    legacy = data.get("role")
    if data.get("primary_role") == PrimaryRole.IT_ADMIN.value or legacy == UserRole.SYSTEM_ADMIN.value:
        raise ForbiddenError("Only IT administrators can grant platform administrator access")
    if legacy and not has_role_level(ctx.legacy_role, legacy):
        raise ForbiddenError("You cannot grant a role above your own")


class UserCreateRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(..., min_length=MIN_PASSWORD, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.CLIENT_OWNER
    primary_role: Optional[PrimaryRole] = None
    must_change_password: bool = True


class UserUpdateRequest(BaseModel):
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=254)
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[UserRole] = None
    primary_role: Optional[PrimaryRole] = None
    is_active: Optional[bool] = None
    must_change_password: Optional[bool] = None


class UserRolesRequest(BaseModel):
    role_ids: List[str] = Field(default_factory=list)


class UserGroupsRequest(BaseModel):
    group_ids: List[str] = Field(default_factory=list)


class LockRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=MIN_PASSWORD, max_length=128)


@router.get("", dependencies=[Depends(require_permission(IamPermission.USER_READ))])
def list_users(
    tenant_id: str,
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    items, pagination = UserService(store).list(
        tenant_id, search=search, role=role, is_active=is_active, page=page, limit=limit
    )
    return ok(items, pagination)


@router.post("", status_code=201, dependencies=[Depends(require_permission(IamPermission.USER_WRITE))])
def create_user(
    tenant_id: str,
    req: UserCreateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    data = req.model_dump(mode="json")
    if data.get("primary_role") or data.get("role") != UserRole.CLIENT_OWNER.value:
        _check_role_grant(ctx, data)
    return ok(UserService(store).create(tenant_id, data, actor=ctx, meta=request_meta(request)))


@router.get("/{user_id}", dependencies=[Depends(require_permission(IamPermission.USER_READ))])
def get_user(
    tenant_id: str,
    user_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(public_user(UserService(store).get_in_tenant(tenant_id, user_id)))


@router.put("/{user_id}", dependencies=[Depends(require_permission(IamPermission.USER_WRITE))])
def update_user(
    tenant_id: str,
    user_id: str,
    req: UserUpdateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    changes = req.model_dump(mode="json", exclude_unset=True)
    _check_role_grant(ctx, changes)
    return ok(UserService(store).update(tenant_id, user_id, changes, actor=ctx, meta=request_meta(request)))


@router.delete("/{user_id}", dependencies=[Depends(require_permission(IamPermission.USER_DELETE))])
def deactivate_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    UserService(store).deactivate(tenant_id, user_id, actor=ctx, meta=request_meta(request))
    return ok({"message": "User deactivated successfully"})


@router.post("/{user_id}/roles", dependencies=[Depends(require_permission(IamPermission.ROLE_ASSIGN))])
def set_user_roles(
    tenant_id: str,
    user_id: str,
    req: UserRolesRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    user = UserService(store).set_roles(tenant_id, user_id, req.role_ids, actor=ctx, meta=request_meta(request))
    return ok(user)


@router.post("/{user_id}/groups", dependencies=[Depends(require_permission(IamPermission.GROUP_MANAGE_MEMBERS))])
def set_user_groups(
    tenant_id: str,
    user_id: str,
    req: UserGroupsRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    user = UserService(store).set_groups(tenant_id, user_id, req.group_ids, actor=ctx, meta=request_meta(request))
    return ok(user)


@router.post("/{user_id}/lock", dependencies=[Depends(require_permission(IamPermission.USER_WRITE))])
def lock_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    req: Optional[LockRequest] = None,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    reason = req.reason if req else None
    return ok(UserService(store).lock(tenant_id, user_id, reason=reason, actor=ctx, meta=request_meta(request)))


@router.post("/{user_id}/unlock", dependencies=[Depends(require_permission(IamPermission.USER_WRITE))])
def unlock_user(
    tenant_id: str,
    user_id: str,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(UserService(store).unlock(tenant_id, user_id, actor=ctx, meta=request_meta(request)))


@router.post(
    "/{user_id}/reset-password",
    dependencies=[Depends(require_permission(IamPermission.USER_RESET_PASSWORD))],
)
def reset_password(
    tenant_id: str,
    user_id: str,
    req: ResetPasswordRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    UserService(store).reset_password(tenant_id, user_id, req.new_password, actor=ctx, meta=request_meta(request))
    return ok({"message": "Password reset successfully"})


@router.get("/{user_id}/permissions", dependencies=[Depends(require_permission(IamPermission.USER_READ))])
def user_permissions(
    tenant_id: str,
    user_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok({"user_id": user_id, "permissions": UserService(store).effective_permissions(tenant_id, user_id)})
