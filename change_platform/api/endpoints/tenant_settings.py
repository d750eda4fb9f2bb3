from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from change_platform.api.deps import get_store, require_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.errors import ForbiddenError
from change_platform.core.iam.permissions import IamPermission, PrimaryRole
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore
from change_platform.core.tenants import TenantSettingsService

router = APIRouter(
    prefix="/api/v1/admin/tenants/{tenant_id}/settings",
    tags=["admin-tenant-settings"],
    dependencies=[Depends(require_permission(IamPermission.AUDIT_READ))],
)


class TenantSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audit_logging_enabled: Optional[bool] = None
    audit_retention_days: Optional[int] = Field(None, ge=30, le=2555)
    mfa_required: Optional[bool] = None
    session_timeout_minutes: Optional[int] = Field(None, ge=5, le=1440)
    max_failed_login_attempts: Optional[int] = Field(None, ge=3, le=10)
    # 0 = passwords never expire
    password_expiry_days: Optional[int] = Field(None, ge=0, le=365)
    email_notifications_enabled: Optional[bool] = None


class AuditLoggingToggle(BaseModel):
    enabled: bool


def _ensure_can_write(ctx: IamContext) -> None:
    if ctx.primary_role not in (PrimaryRole.IT_ADMIN.value, PrimaryRole.MANAGER.value):
        raise ForbiddenError("Only tenant managers can update tenant settings")


@router.get("")
def get_tenant_settings(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(TenantSettingsService(store).get(tenant_id))


@router.put("")
def update_tenant_settings(
    tenant_id: str,
    req: TenantSettingsUpdate,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    _ensure_can_write(ctx)
    changes = req.model_dump(exclude_unset=True)
    return ok(TenantSettingsService(store).update(ctx, tenant_id, changes, meta=request_meta(request)))


@router.patch("/audit-logging")
def toggle_audit_logging(
    tenant_id: str,
    req: AuditLoggingToggle,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    _ensure_can_write(ctx)
    settings = TenantSettingsService(store).update(
        ctx, tenant_id, {"audit_logging_enabled": req.enabled}, meta=request_meta(request)
    )
    return ok({"audit_logging_enabled": settings["audit_logging_enabled"]})
