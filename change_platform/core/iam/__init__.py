from .permissions import IamPermission, OperationalPermission, PrimaryRole, SystemRole, UserRole
from .resolver import IamContext, get_user_permissions, load_iam_context
from .tenant_access import ALL_TENANTS, assert_tenant_access, can_access_tenant, get_accessible_tenants

__all__ = [
    "ALL_TENANTS",
    "IamContext",
    "IamPermission",
    "OperationalPermission",
    "PrimaryRole",
    "SystemRole",
    "UserRole",
    "assert_tenant_access",
    "can_access_tenant",
    "get_accessible_tenants",
    "get_user_permissions",
    "load_iam_context",
]
