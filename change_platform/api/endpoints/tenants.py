from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import (
    get_iam_context,
    get_store,
    require_cross_tenant_access,
    require_tenant_access,
)
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.errors import ForbiddenError
from change_platform.core.iam.permissions import PrimaryRole
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.tenant_access import get_accessible_tenants
from change_platform.core.store import DocumentStore
from change_platform.core.tenants import TenantService

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


class TenantCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = Field(None, max_length=100)
    settings: Optional[Dict[str, Any]] = None
    subscription: Optional[Dict[str, Any]] = None


class TenantUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    settings: Optional[Dict[str, Any]] = None
    subscription: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


@router.get("")
def list_tenants(
    ctx: IamContext = Depends(get_iam_context),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    accessible = get_accessible_tenants(store, ctx.user_id, ctx.primary_role, ctx.tenant_id)
    return ok(TenantService(store).list_accessible(accessible))


@router.post("", status_code=201)
def create_tenant(
    req: TenantCreateRequest,
    request: Request,
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    tenant = TenantService(store).create(
        name=req.name,
        slug=req.slug,
        settings=req.settings,
        subscription=req.subscription,
        created_by=ctx.user_id,
        actor=ctx,
        meta=request_meta(request),
    )
    return ok(tenant)


@router.get("/{tenant_id}")
def get_tenant(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(TenantService(store).get(tenant_id))


@router.put("/{tenant_id}")
def update_tenant(
    tenant_id: str,
    req: TenantUpdateRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    changes = req.model_dump(exclude_unset=True)
    # IT admins and tenant managers may update; only IT admins touch billing or is_active
    if ctx.primary_role not in (PrimaryRole.IT_ADMIN.value, PrimaryRole.MANAGER.value):
        raise ForbiddenError("Only tenant managers can update tenant settings")
    if ctx.primary_role != PrimaryRole.IT_ADMIN.value:
        changes.pop("subscription", None)
        changes.pop("is_active", None)
    return ok(TenantService(store).update(tenant_id, changes, actor=ctx, meta=request_meta(request)))
