from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_store, require_cross_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.iam.advisors import AdvisorAssignmentService
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.tenant_access import ALL_TENANTS
from change_platform.core.store import DocumentStore
from change_platform.core.tenants import TenantService

router = APIRouter(prefix="/api/v1/admin/advisor-assignments", tags=["admin-advisors"])

# pickers for the assignment form, mounted directly under /api/v1/admin
lookups = APIRouter(prefix="/api/v1/admin", tags=["admin-advisors"])


class AssignmentCreateRequest(BaseModel):
    advisor_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)


class AssignmentUpdateRequest(BaseModel):
    status: Optional[Literal["active", "inactive"]] = None
    notes: Optional[str] = Field(None, max_length=1000)


@router.get("")
def list_assignments(
    tenant_id: Optional[str] = Query(None),
    advisor_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(AdvisorAssignmentService(store).list(tenant_id=tenant_id, advisor_id=advisor_id, status=status))


@lookups.get("/advisors")
def list_advisors(
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(AdvisorAssignmentService(store).list_advisors())


@lookups.get("/tenants-list")
def list_assignable_tenants(
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    tenants = TenantService(store).list_accessible(ALL_TENANTS)
    return ok([{"id": t["id"], "name": t.get("name"), "slug": t.get("slug")} for t in tenants])


@router.post("", status_code=201)
def create_assignment(
    req: AssignmentCreateRequest,
    request: Request,
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    assignment = AdvisorAssignmentService(store).create(
        ctx, req.advisor_id, req.tenant_id, notes=req.notes, meta=request_meta(request)
    )
    return ok(assignment)


@router.put("/{assignment_id}")
def update_assignment(
    assignment_id: str,
    req: AssignmentUpdateRequest,
    request: Request,
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    assignment = AdvisorAssignmentService(store).update(
        ctx, assignment_id, status=req.status, notes=req.notes, meta=request_meta(request)
    )
    return ok(assignment)


@router.delete("/{assignment_id}")
def remove_assignment(
    assignment_id: str,
    request: Request,
    ctx: IamContext = Depends(require_cross_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    AdvisorAssignmentService(store).remove(ctx, assignment_id, meta=request_meta(request))
    return ok({"message": "Advisor assignment removed successfully"})
