from __future__ import annotations

from typing import List, Optional, Union

from change_platform.core.errors import NotFoundError, TenantAccessError
from change_platform.core.iam.permissions import PrimaryRole
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore

ALL_TENANTS = "all"

ASSIGNMENT_ACTIVE = "active"
ASSIGNMENT_INACTIVE = "inactive"


def _active_assignment_filter(advisor_id: str) -> dict:
    return {"advisor_id": advisor_id, "status": ASSIGNMENT_ACTIVE, "is_active": True}


def can_access_tenant(
    store: DocumentStore,
    user_id: str,
    target_tenant_id: str,
    primary_role: str,
    user_tenant_id: Optional[str],
) -> bool:
    if primary_role == PrimaryRole.IT_ADMIN.value:
        return True
    if primary_role in (PrimaryRole.MANAGER.value, PrimaryRole.CUSTOMER.value):
        return user_tenant_id is not None and user_tenant_id == target_tenant_id
    if primary_role == PrimaryRole.ADVISOR.value:
        flt = _active_assignment_filter(user_id)
        flt["tenant_id"] = target_tenant_id
        return store.advisor_assignments.count(flt) > 0
    return False


def get_accessible_tenants(
    store: DocumentStore,
    user_id: str,
    primary_role: str,
    user_tenant_id: Optional[str],
) -> Union[str, List[str]]:
    if primary_role == PrimaryRole.IT_ADMIN.value:
        return ALL_TENANTS
    if primary_role in (PrimaryRole.MANAGER.value, PrimaryRole.CUSTOMER.value):
        return [user_tenant_id] if user_tenant_id else []
    if primary_role == PrimaryRole.ADVISOR.value:
        return store.advisor_assignments.distinct("tenant_id", _active_assignment_filter(user_id))
    return []


def assert_tenant_access(store: DocumentStore, ctx: IamContext, tenant_id: str) -> None:
    """Raise TenantAccessError unless `ctx` may operate inside `tenant_id`."""
    if can_access_tenant(store, ctx.user_id, tenant_id, ctx.primary_role, ctx.tenant_id):
        return
    if ctx.primary_role in (PrimaryRole.MANAGER.value, PrimaryRole.CUSTOMER.value):
        raise TenantAccessError("Access denied: You can only access your own tenant")
    if ctx.primary_role == PrimaryRole.ADVISOR.value:
        raise TenantAccessError("Access denied: You are not assigned to this tenant")
    raise TenantAccessError("Access denied")


def get_active_tenant(store: DocumentStore, tenant_id: str, allow_inactive: bool = False) -> dict:
    tenant = store.tenants.get(tenant_id)
    if not tenant:
        raise NotFoundError("Tenant", code="TENANT_NOT_FOUND")
    if not allow_inactive and not tenant.get("is_active", True):
        raise TenantAccessError("Tenant is not active")
    return tenant
