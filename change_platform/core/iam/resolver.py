from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from change_platform.core.errors import ForbiddenError, UnauthorizedError
from change_platform.core.iam.permissions import (
    IamPermission,
    derive_primary_role,
    legacy_role_permissions,
    primary_role_permissions,
)
from change_platform.core.store import DocumentStore

log = logging.getLogger("change.iam")


@dataclass(frozen=True)
class IamContext:
    user_id: str
    email: str
    tenant_id: Optional[str]
    legacy_role: str
    primary_role: str
    permissions: frozenset = field(default_factory=frozenset)
    roles: tuple = ()

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(p in self.permissions for p in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return all(p in self.permissions for p in permissions)

    def missing_permissions(self, permissions: Iterable[str]) -> List[str]:
        return [p for p in permissions if p not in self.permissions]

    def role_summaries(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.roles]


def _active_roles(store: DocumentStore, role_ids: Iterable[str]) -> List[Dict[str, Any]]:
    ids = list(dict.fromkeys(r for r in role_ids if r))
    if not ids:
        return []
    return store.iam_roles.find({"id": {"$in": ids}, "is_active": True})


def _group_role_ids(store: DocumentStore, user: Dict[str, Any]) -> List[str]:
    group_ids = list(user.get("groups") or [])
    if not group_ids:
        return []
    groups = store.groups.find({"id": {"$in": group_ids}, "is_active": True})
    role_ids: List[str] = []
    for g in groups:
        for rid in g.get("roles") or []:
            if rid not in role_ids:
                role_ids.append(rid)
    return role_ids


def load_iam_context(store: DocumentStore, user_id: str) -> IamContext:
    """
    Build the effective permission set for a user.

    Union, in order:
      1. primary role permissions (IAM + operational)
      2. legacy role IAM permissions
      3. active IAM roles assigned directly
      4. active IAM roles linked through active groups
    """
    user = store.users.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if not user.get("is_active", True):
        raise UnauthorizedError("User account is deactivated")
    if user.get("locked_at"):
        reason = user.get("lock_reason") or "Contact administrator"
        raise ForbiddenError(f"Account is locked: {reason}")

    legacy = user.get("role") or ""
    primary = user.get("primary_role") or derive_primary_role(legacy)

    perms: Set[str] = set()
    perms.update(primary_role_permissions(primary))
    perms.update(legacy_role_permissions(legacy))

    roles: List[Dict[str, Any]] = []
    seen_role_ids: Set[str] = set()

    direct = _active_roles(store, user.get("iam_roles") or [])
    inherited = _active_roles(store, _group_role_ids(store, user))

    for role in direct + inherited:
        perms.update(role.get("permissions") or [])
        if role["id"] in seen_role_ids:
            continue
        seen_role_ids.add(role["id"])
        roles.append(
            {
                "id": role["id"],
                "name": role.get("name"),
                "permissions": list(role.get("permissions") or []),
            }
        )

    log.debug(
        "iam context user=%s primary=%s roles=%d permissions=%d",
        user_id,
        primary,
        len(roles),
        len(perms),
    )

    return IamContext(
        user_id=user["id"],
        email=user.get("email") or "",
        tenant_id=user.get("tenant_id"),
        legacy_role=legacy,
        primary_role=primary,
        permissions=frozenset(perms),
        roles=tuple(roles),
    )


def get_user_permissions(store: DocumentStore, user_id: str) -> Set[str]:
    """
    Effective IAM permissions from the legacy role, direct roles and group
    roles. Unknown users have none.
    """
    user = store.users.get(user_id)
    if not user:
        return set()

    perms: Set[str] = set(legacy_role_permissions(user.get("role")))
    for role in _active_roles(store, user.get("iam_roles") or []):
        perms.update(role.get("permissions") or [])
    for role in _active_roles(store, _group_role_ids(store, user)):
        perms.update(role.get("permissions") or [])
    return perms


def is_cross_tenant(ctx: IamContext) -> bool:
    return ctx.has_permission(IamPermission.CROSS_TENANT)
