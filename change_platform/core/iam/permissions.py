"""
Permission catalog and role -> permission maps.

Three kinds of roles feed a user's effective permission set:
  - legacy `UserRole` stored on the user (system_admin, program_admin, ...)
  - the `PrimaryRole` (it_admin, manager, advisor, customer), either stored or
    derived from the legacy role
  - IAM roles (custom or system) assigned directly or through groups
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Iterable, List


class IamPermission:
    USER_READ = "iam:users:read"
    USER_WRITE = "iam:users:write"
    USER_DELETE = "iam:users:delete"
    USER_RESET_PASSWORD = "iam:users:reset_password"

    ROLE_READ = "iam:roles:read"
    ROLE_WRITE = "iam:roles:write"
    ROLE_DELETE = "iam:roles:delete"
    ROLE_ASSIGN = "iam:roles:assign"

    GROUP_READ = "iam:groups:read"
    GROUP_WRITE = "iam:groups:write"
    GROUP_DELETE = "iam:groups:delete"
    GROUP_MANAGE_MEMBERS = "iam:groups:manage_members"

    AUDIT_READ = "iam:audit:read"
    AUDIT_EXPORT = "iam:audit:export"

    ACCESS_REQUEST_CREATE = "iam:access_requests:create"
    ACCESS_REQUEST_READ = "iam:access_requests:read"
    ACCESS_REQUEST_WRITE = "iam:access_requests:write"
    ACCESS_REQUEST_APPROVE = "iam:access_requests:approve"

    ACCESS_REVIEW_READ = "iam:access_reviews:read"
    ACCESS_REVIEW_WRITE = "iam:access_reviews:write"
    ACCESS_REVIEW_DECIDE = "iam:access_reviews:decide"

    API_KEY_READ = "iam:api_keys:read"
    API_KEY_WRITE = "iam:api_keys:write"
    API_KEY_REVOKE = "iam:api_keys:revoke"

    CROSS_TENANT = "iam:cross_tenant"


class OperationalPermission:
    BUSINESS_READ = "business:read"
    BUSINESS_WRITE = "business:write"
    WORKFLOW_READ = "workflow:read"
    WORKFLOW_MANAGE = "workflow:manage"
    DOCUMENTS_READ = "documents:read"
    DOCUMENTS_WRITE = "documents:write"
    TASKS_READ = "tasks:read"
    TASKS_WRITE = "tasks:write"
    RULES_READ = "rules:read"
    RULES_WRITE = "rules:write"
    CLIENTS_READ = "clients:read"
    ADVISOR_ASSIGNMENTS_MANAGE = "advisor_assignments:manage"


class UserRole(str, Enum):
    SYSTEM_ADMIN = "system_admin"
    PROGRAM_ADMIN = "program_admin"
    ADVISOR = "advisor"
    CLIENT_OWNER = "client_owner"
    CLIENT_ADMIN = "client_admin"
    CLIENT_CONTRIBUTOR = "client_contributor"
    EXTERNAL_PARTNER = "external_partner"


ROLE_HIERARCHY: Dict[str, int] = {
    UserRole.SYSTEM_ADMIN.value: 100,
    UserRole.PROGRAM_ADMIN.value: 90,
    UserRole.ADVISOR.value: 80,
    UserRole.CLIENT_OWNER.value: 50,
    UserRole.CLIENT_ADMIN.value: 40,
    UserRole.CLIENT_CONTRIBUTOR.value: 30,
    UserRole.EXTERNAL_PARTNER.value: 20,
}


class PrimaryRole(str, Enum):
    IT_ADMIN = "it_admin"
    MANAGER = "manager"
    ADVISOR = "advisor"
    CUSTOMER = "customer"


class SystemRole(str, Enum):
    GLOBAL_ADMIN = "global_admin"
    TENANT_ADMIN = "tenant_admin"
    ADVISOR_ADMIN = "advisor_admin"
    AUDITOR = "auditor"


def _perm(key: str, name: str, description: str, category: str) -> Dict[str, str]:
    return {"key": key, "name": name, "description": description, "category": category}


PERMISSION_CATALOG: List[Dict[str, str]] = [
    _perm(IamPermission.USER_READ, "View users", "List and view user accounts", "users"),
    _perm(IamPermission.USER_WRITE, "Manage users", "Create and update user accounts", "users"),
    _perm(IamPermission.USER_DELETE, "Deactivate users", "Deactivate user accounts", "users"),
    _perm(IamPermission.USER_RESET_PASSWORD, "Reset passwords", "Reset user passwords", "users"),
    _perm(IamPermission.ROLE_READ, "View roles", "List and view IAM roles", "roles"),
    _perm(IamPermission.ROLE_WRITE, "Manage roles", "Create and update IAM roles", "roles"),
    _perm(IamPermission.ROLE_DELETE, "Delete roles", "Deactivate IAM roles", "roles"),
    _perm(IamPermission.ROLE_ASSIGN, "Assign roles", "Assign roles to users and groups", "roles"),
    _perm(IamPermission.GROUP_READ, "View groups", "List and view groups", "groups"),
    _perm(IamPermission.GROUP_WRITE, "Manage groups", "Create and update groups", "groups"),
    _perm(IamPermission.GROUP_DELETE, "Delete groups", "Deactivate groups", "groups"),
    _perm(IamPermission.GROUP_MANAGE_MEMBERS, "Manage members", "Add and remove group members", "groups"),
    _perm(IamPermission.AUDIT_READ, "View audit logs", "Query the IAM audit log", "audit"),
    _perm(IamPermission.AUDIT_EXPORT, "Export audit logs", "Export the IAM audit log as CSV", "audit"),
    _perm(IamPermission.ACCESS_REQUEST_CREATE, "Request access", "Submit access requests", "access_requests"),
    _perm(IamPermission.ACCESS_REQUEST_READ, "View access requests", "View access requests", "access_requests"),
    _perm(IamPermission.ACCESS_REQUEST_WRITE, "Manage access requests", "Update access requests", "access_requests"),
    _perm(IamPermission.ACCESS_REQUEST_APPROVE, "Approve access", "Approve or reject access requests", "access_requests"),
    _perm(IamPermission.ACCESS_REVIEW_READ, "View access reviews", "View access review campaigns", "access_reviews"),
    _perm(IamPermission.ACCESS_REVIEW_WRITE, "Manage access reviews", "Create access review campaigns", "access_reviews"),
    _perm(IamPermission.ACCESS_REVIEW_DECIDE, "Decide access reviews", "Record review decisions", "access_reviews"),
    _perm(IamPermission.API_KEY_READ, "View API keys", "List API keys", "api_keys"),
    _perm(IamPermission.API_KEY_WRITE, "Manage API keys", "Create API keys", "api_keys"),
    _perm(IamPermission.API_KEY_REVOKE, "Revoke API keys", "Revoke API keys", "api_keys"),
    _perm(IamPermission.CROSS_TENANT, "Cross-tenant access", "Operate across tenant boundaries", "platform"),
]

ALL_IAM_PERMISSIONS: FrozenSet[str] = frozenset(p["key"] for p in PERMISSION_CATALOG)

ALL_OPERATIONAL_PERMISSIONS: FrozenSet[str] = frozenset(
    v for k, v in vars(OperationalPermission).items() if k.isupper()
)

_TENANT_ADMIN_PERMISSIONS = frozenset(
    {
        IamPermission.USER_READ,
        IamPermission.USER_WRITE,
        IamPermission.USER_DELETE,
        IamPermission.USER_RESET_PASSWORD,
        IamPermission.ROLE_READ,
        IamPermission.ROLE_WRITE,
        IamPermission.ROLE_DELETE,
        IamPermission.ROLE_ASSIGN,
        IamPermission.GROUP_READ,
        IamPermission.GROUP_WRITE,
        IamPermission.GROUP_DELETE,
        IamPermission.GROUP_MANAGE_MEMBERS,
        IamPermission.AUDIT_READ,
        IamPermission.AUDIT_EXPORT,
        IamPermission.ACCESS_REQUEST_CREATE,
        IamPermission.ACCESS_REQUEST_READ,
        IamPermission.ACCESS_REQUEST_WRITE,
        IamPermission.ACCESS_REQUEST_APPROVE,
        IamPermission.ACCESS_REVIEW_READ,
        IamPermission.ACCESS_REVIEW_WRITE,
        IamPermission.ACCESS_REVIEW_DECIDE,
        IamPermission.API_KEY_READ,
        IamPermission.API_KEY_WRITE,
        IamPermission.API_KEY_REVOKE,
    }
)

_ADVISOR_ADMIN_PERMISSIONS = frozenset(
    {
        IamPermission.USER_READ,
        IamPermission.GROUP_READ,
        IamPermission.ROLE_READ,
        IamPermission.AUDIT_READ,
        IamPermission.ACCESS_REQUEST_CREATE,
        IamPermission.ACCESS_REQUEST_READ,
    }
)

_AUDITOR_PERMISSIONS = frozenset(
    {
        IamPermission.USER_READ,
        IamPermission.ROLE_READ,
        IamPermission.GROUP_READ,
        IamPermission.AUDIT_READ,
        IamPermission.AUDIT_EXPORT,
        IamPermission.ACCESS_REQUEST_READ,
        IamPermission.ACCESS_REVIEW_READ,
        IamPermission.API_KEY_READ,
    }
)

SYSTEM_ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    SystemRole.GLOBAL_ADMIN.value: ALL_IAM_PERMISSIONS,
    SystemRole.TENANT_ADMIN.value: _TENANT_ADMIN_PERMISSIONS,
    SystemRole.ADVISOR_ADMIN.value: _ADVISOR_ADMIN_PERMISSIONS,
    SystemRole.AUDITOR.value: _AUDITOR_PERMISSIONS,
}

SYSTEM_ROLE_DESCRIPTIONS: Dict[str, Dict[str, str]] = {
    SystemRole.GLOBAL_ADMIN.value: {
        "name": "Global Administrator",
        "description": "Full IAM control across every tenant",
    },
    SystemRole.TENANT_ADMIN.value: {
        "name": "Tenant Administrator",
        "description": "Full IAM control inside one tenant",
    },
    SystemRole.ADVISOR_ADMIN.value: {
        "name": "Advisor Administrator",
        "description": "Read access to the tenants an advisor is assigned to",
    },
    SystemRole.AUDITOR.value: {
        "name": "Auditor",
        "description": "Read-only access to identities and the audit trail",
    },
}


# primary role -> (iam permissions, operational permissions)
PRIMARY_ROLE_PERMISSIONS: Dict[str, Dict[str, FrozenSet[str]]] = {
    PrimaryRole.IT_ADMIN.value: {
        "iam": ALL_IAM_PERMISSIONS,
        "operational": ALL_OPERATIONAL_PERMISSIONS,
    },
    PrimaryRole.MANAGER.value: {
        "iam": frozenset(
            {
                IamPermission.USER_READ,
                IamPermission.USER_WRITE,
                IamPermission.GROUP_READ,
                IamPermission.GROUP_WRITE,
                IamPermission.GROUP_MANAGE_MEMBERS,
                IamPermission.ROLE_READ,
                IamPermission.AUDIT_READ,
                IamPermission.ACCESS_REQUEST_READ,
                IamPermission.ACCESS_REQUEST_APPROVE,
            }
        ),
        "operational": frozenset(
            {
                OperationalPermission.BUSINESS_READ,
                OperationalPermission.BUSINESS_WRITE,
                OperationalPermission.WORKFLOW_READ,
                OperationalPermission.WORKFLOW_MANAGE,
                OperationalPermission.DOCUMENTS_READ,
                OperationalPermission.DOCUMENTS_WRITE,
                OperationalPermission.TASKS_READ,
                OperationalPermission.TASKS_WRITE,
                OperationalPermission.RULES_READ,
            }
        ),
    },
    PrimaryRole.ADVISOR.value: {
        "iam": frozenset({IamPermission.ACCESS_REQUEST_CREATE}),
        "operational": frozenset(
            {
                OperationalPermission.BUSINESS_READ,
                OperationalPermission.WORKFLOW_READ,
                OperationalPermission.DOCUMENTS_READ,
                OperationalPermission.DOCUMENTS_WRITE,
                OperationalPermission.TASKS_READ,
                OperationalPermission.TASKS_WRITE,
                OperationalPermission.RULES_READ,
                OperationalPermission.CLIENTS_READ,
            }
        ),
    },
    PrimaryRole.CUSTOMER.value: {
        "iam": frozenset({IamPermission.ACCESS_REQUEST_CREATE}),
        "operational": frozenset(
            {
                OperationalPermission.BUSINESS_READ,
                OperationalPermission.BUSINESS_WRITE,
                OperationalPermission.WORKFLOW_READ,
                OperationalPermission.DOCUMENTS_READ,
                OperationalPermission.DOCUMENTS_WRITE,
                OperationalPermission.TASKS_READ,
                OperationalPermission.TASKS_WRITE,
            }
        ),
    },
}


def derive_primary_role(legacy_role: str | None) -> str:
    if legacy_role == UserRole.SYSTEM_ADMIN.value:
        return PrimaryRole.IT_ADMIN.value
    if legacy_role == UserRole.PROGRAM_ADMIN.value:
        return PrimaryRole.MANAGER.value
    if legacy_role == UserRole.ADVISOR.value:
        return PrimaryRole.ADVISOR.value
    return PrimaryRole.CUSTOMER.value


def legacy_role_permissions(legacy_role: str | None) -> FrozenSet[str]:
    if legacy_role == UserRole.SYSTEM_ADMIN.value:
        return SYSTEM_ROLE_PERMISSIONS[SystemRole.GLOBAL_ADMIN.value]
    if legacy_role == UserRole.PROGRAM_ADMIN.value:
        return SYSTEM_ROLE_PERMISSIONS[SystemRole.TENANT_ADMIN.value]
    if legacy_role == UserRole.ADVISOR.value:
        return SYSTEM_ROLE_PERMISSIONS[SystemRole.ADVISOR_ADMIN.value]
    return frozenset({IamPermission.ACCESS_REQUEST_CREATE})


def primary_role_permissions(primary_role: str) -> FrozenSet[str]:
    entry = PRIMARY_ROLE_PERMISSIONS.get(primary_role)
    if not entry:
        return frozenset()
    return entry["iam"] | entry["operational"]


def has_role_level(user_role: str | None, minimum: str) -> bool:
    return ROLE_HIERARCHY.get(user_role or "", 0) >= ROLE_HIERARCHY[minimum]


def validate_permissions(perms: Iterable[str]) -> List[str]:
    """Return the entries that are neither IAM nor operational permissions."""
    known = ALL_IAM_PERMISSIONS | ALL_OPERATIONAL_PERMISSIONS
    return [p for p in perms if p not in known]
