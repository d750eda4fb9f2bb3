from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from change_platform.api.deps import get_store, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import (
    distinct_actions,
    distinct_target_types,
    export_iam_audit_logs,
    query_iam_audit_logs,
)
from change_platform.core.iam.permissions import IamPermission, PrimaryRole
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore, utc_now_iso

router = APIRouter(prefix="/api/v1/admin/tenants/{tenant_id}/audit-logs", tags=["admin-audit"])


def _filters(
    tenant_id: str,
    ctx: IamContext,
    actor_id: Optional[str],
    actor_email: Optional[str],
    action: Optional[str],
    target_type: Optional[str],
    target_id: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str],
) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        # platform-level entries (no tenant) are only visible to IT admins
        "include_platform_logs": ctx.primary_role == PrimaryRole.IT_ADMIN.value,
        "actor_id": actor_id,
        "actor_email": actor_email,
        "action": action,
        "target_type": target_type,
        "target_id": target_id,
        "start_date": start_date,
        "end_date": end_date,
    }


@router.get("", dependencies=[Depends(require_permission(IamPermission.AUDIT_READ))])
def list_audit_logs(
    tenant_id: str,
    actor_id: Optional[str] = Query(None),
    actor_email: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    flt = _filters(tenant_id, ctx, actor_id, actor_email, action, target_type, target_id, start_date, end_date)
    items, pagination = query_iam_audit_logs(store, page=page, limit=limit, **flt)
    return ok(items, pagination)


@router.get("/export", dependencies=[Depends(require_permission(IamPermission.AUDIT_EXPORT))])
def export_audit_logs(
    tenant_id: str,
    actor_id: Optional[str] = Query(None),
    actor_email: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Response:
    flt = _filters(tenant_id, ctx, actor_id, actor_email, action, target_type, target_id, start_date, end_date)
    body = export_iam_audit_logs(store, **flt)
    stamp = utc_now_iso()[:10]
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="iam-audit-{tenant_id}-{stamp}.csv"'},
    )


@router.get("/actions", dependencies=[Depends(require_permission(IamPermission.AUDIT_READ))])
def audit_actions(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(distinct_actions(store, tenant_id))


@router.get("/target-types", dependencies=[Depends(require_permission(IamPermission.AUDIT_READ))])
def audit_target_types(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(distinct_target_types(store, tenant_id))
