from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.errors import ConflictError, ForbiddenError, NotFoundError
from change_platform.core.iam.permissions import (
    IamPermission,
    PrimaryRole,
    SYSTEM_ROLE_DESCRIPTIONS,
    SYSTEM_ROLE_PERMISSIONS,
    validate_permissions,
)
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore

MAX_NAME = 100
MAX_DESCRIPTION = 500


def _is_it_admin(ctx: Optional[IamContext]) -> bool:
    return ctx is None or ctx.primary_role == PrimaryRole.IT_ADMIN.value


def _name_filter(name: str) -> Dict[str, Any]:
    return {"name": {"$regex": f"^{re.escape(name.strip())}$"}}


def _assert_no_cross_tenant(ctx: Optional[IamContext], perms: List[str]) -> None:
    if IamPermission.CROSS_TENANT in perms and not _is_it_admin(ctx):
        raise ForbiddenError("Only IT administrators can grant cross-tenant access")


def assert_roles_grantable(ctx: Optional[IamContext], roles: List[Dict[str, Any]]) -> None:
    """
    System roles and roles carrying `iam:cross_tenant` reach beyond one
    tenant, so only IT administrators (or the system itself) may hand them out.
    """
    if _is_it_admin(ctx):
        return
    for role in roles:
        if role.get("is_system"):
            raise ForbiddenError(f"Only IT administrators can assign the system role '{role.get('name')}'")
        _assert_no_cross_tenant(ctx, list(role.get("permissions") or []))


def group_roles(store: DocumentStore, groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Active roles granted through `groups`."""
    ids = list(dict.fromkeys(rid for g in groups for rid in (g.get("roles") or [])))
    if not ids:
        return []
    return store.iam_roles.find({"id": {"$in": ids}, "is_active": True})


class RoleService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def list(
        self,
        ctx: IamContext,
        tenant_id: str,
        include_inactive: bool = False,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {}
        if not _is_it_admin(ctx):
            flt["$or"] = [{"tenant_id": tenant_id}, {"tenant_id": None}]
        if not include_inactive:
            flt["is_active"] = True
        if search:
            flt["name"] = {"$regex": re.escape(search.strip())}
        return self.store.iam_roles.find(flt, sort=[("is_system", -1), ("name", 1)])

    def get(self, ctx: IamContext, tenant_id: str, role_id: str) -> Dict[str, Any]:
        role = self.store.iam_roles.get(role_id)
        if not role:
            raise NotFoundError("Role")
        if not _is_it_admin(ctx) and role.get("tenant_id") not in (None, tenant_id):
            raise NotFoundError("Role")
        return role

    def _assert_unique_name(self, tenant_id: Optional[str], name: str, exclude_id: Optional[str] = None) -> None:
        flt = _name_filter(name)
        flt["is_active"] = True
        flt["$or"] = [{"tenant_id": tenant_id}, {"tenant_id": None}]
        for other in self.store.iam_roles.find(flt):
            if other["id"] != exclude_id:
                raise ConflictError(f"Role with name '{name.strip()}' already exists", code="ALREADY_EXISTS")

    @staticmethod
    def _assert_valid_permissions(perms: List[str]) -> None:
        invalid = validate_permissions(perms)
        if invalid:
            raise ConflictError(f"Invalid permissions: {', '.join(invalid)}", details={"invalid": invalid})

    def create(
        self,
        ctx: IamContext,
        tenant_id: str,
        data: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        name = data["name"].strip()
        perms = list(dict.fromkeys(data.get("permissions") or []))
        is_global = bool(data.get("is_global"))
        if is_global and not _is_it_admin(ctx):
            raise ForbiddenError("Only IT administrators can create global roles")
        owner = None if is_global else tenant_id

        self._assert_unique_name(owner, name)
        self._assert_valid_permissions(perms)
        _assert_no_cross_tenant(ctx, perms)

        role = self.store.iam_roles.insert(
            {
                "tenant_id": owner,
                "name": name,
                "description": data.get("description") or "",
                "is_system": False,
                "system_role": None,
                "permissions": perms,
                "is_active": True,
                "created_by": ctx.user_id,
            }
        )
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ROLE_CREATED,
            tenant_id=tenant_id,
            target_type="role",
            target_id=role["id"],
            target_name=name,
            summary=f"Created role {name}",
            after=role,
        )
        return role

    def update(
        self,
        ctx: IamContext,
        tenant_id: str,
        role_id: str,
        changes: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get(ctx, tenant_id, role_id)
        if before.get("is_system") and not _is_it_admin(ctx):
            raise ForbiddenError("Only IT administrators can modify system roles")
        if not _is_it_admin(ctx) and before.get("tenant_id") is None:
            raise ForbiddenError("Only IT administrators can modify global roles")

        patch: Dict[str, Any] = {}
        if changes.get("name") is not None:
            name = changes["name"].strip()
            self._assert_unique_name(before.get("tenant_id"), name, exclude_id=role_id)
            patch["name"] = name
        if changes.get("description") is not None:
            patch["description"] = changes["description"]
        if changes.get("permissions") is not None:
            perms = list(dict.fromkeys(changes["permissions"]))
            self._assert_valid_permissions(perms)
            _assert_no_cross_tenant(ctx, perms)
            patch["permissions"] = perms
        if changes.get("is_active") is not None:
            patch["is_active"] = bool(changes["is_active"])
        patch["updated_by"] = ctx.user_id

        after = self.store.iam_roles.update(role_id, patch)
        diff = compute_diff(before, after)
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ROLE_UPDATED,
            tenant_id=tenant_id,
            target_type="role",
            target_id=role_id,
            target_name=after.get("name"),
            summary=f"Updated role {after.get('name')}",
            before=diff["before"],
            after=diff["after"],
        )
        return after

    def delete(
        self,
        ctx: IamContext,
        tenant_id: str,
        role_id: str,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        role = self.get(ctx, tenant_id, role_id)
        if role.get("is_system"):
            raise ForbiddenError("System roles cannot be deleted")
        if not _is_it_admin(ctx) and role.get("tenant_id") is None:
            raise ForbiddenError("Only IT administrators can delete global roles")

        after = self.store.iam_roles.update(role_id, {"is_active": False, "updated_by": ctx.user_id})
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ROLE_DELETED,
            tenant_id=tenant_id,
            target_type="role",
            target_id=role_id,
            target_name=role.get("name"),
            summary=f"Deleted role {role.get('name')}",
            before={"is_active": True},
            after={"is_active": False},
        )
        return after


def ensure_system_roles(store: DocumentStore) -> List[Dict[str, Any]]:
    """Create or refresh the global system roles. Returns them in catalog order."""
    out: List[Dict[str, Any]] = []
    for key, perms in SYSTEM_ROLE_PERMISSIONS.items():
        desc = SYSTEM_ROLE_DESCRIPTIONS[key]
        existing = store.iam_roles.find_one({"system_role": key, "is_system": True})
        body = {
            "tenant_id": None,
            "name": desc["name"],
            "description": desc["description"],
            "is_system": True,
            "system_role": key,
            "permissions": sorted(perms),
            "is_active": True,
        }
        if existing:
            out.append(store.iam_roles.update(existing["id"], body))
        else:
            out.append(store.iam_roles.insert(body))
    return out
