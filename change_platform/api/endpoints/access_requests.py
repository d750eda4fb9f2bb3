from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_store, require_any_permission, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.iam.access_requests import AccessRequestService
from change_platform.core.iam.permissions import IamPermission
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/admin/tenants/{tenant_id}/access-requests", tags=["admin-access-requests"])


class AccessRequestCreate(BaseModel):
    role_ids: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    reason: str = Field(..., min_length=10, max_length=2000)
    effective_until: Optional[datetime] = None


class DecisionRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


@router.get("", dependencies=[Depends(require_permission(IamPermission.ACCESS_REQUEST_READ))])
def list_access_requests(
    tenant_id: str,
    status: Optional[Literal["pending", "approved", "rejected"]] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    items, pagination = AccessRequestService(store).list(tenant_id, status=status, page=page, limit=limit)
    return ok(items, pagination)


@router.get("/{request_id}", dependencies=[Depends(require_permission(IamPermission.ACCESS_REQUEST_READ))])
def get_access_request(
    tenant_id: str,
    request_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(AccessRequestService(store).get(tenant_id, request_id))


@router.post(
    "",
    status_code=201,
    dependencies=[
        Depends(
            require_any_permission([IamPermission.ACCESS_REQUEST_CREATE, IamPermission.ACCESS_REQUEST_APPROVE])
        )
    ],
)
def create_access_request(
    tenant_id: str,
    req: AccessRequestCreate,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(AccessRequestService(store).create(ctx, tenant_id, req.model_dump(), meta=request_meta(request)))


@router.post("/{request_id}/approve", dependencies=[Depends(require_permission(IamPermission.ACCESS_REQUEST_APPROVE))])
def approve_access_request(
    tenant_id: str,
    request_id: str,
    req: DecisionRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    decided = AccessRequestService(store).approve(ctx, tenant_id, request_id, req.notes, meta=request_meta(request))
    return ok(decided)


@router.post("/{request_id}/reject", dependencies=[Depends(require_permission(IamPermission.ACCESS_REQUEST_APPROVE))])
def reject_access_request(
    tenant_id: str,
    request_id: str,
    req: DecisionRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    decided = AccessRequestService(store).reject(ctx, tenant_id, request_id, req.notes, meta=request_meta(request))
    return ok(decided)
