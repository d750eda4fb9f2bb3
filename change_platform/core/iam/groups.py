from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.errors import BadRequestError, ConflictError, NotFoundError
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.roles import assert_roles_grantable, group_roles
from change_platform.core.pagination import build_pagination, clamp_page
from change_platform.core.store import DocumentStore

ACTION_ADD = "add"
ACTION_REMOVE = "remove"


class GroupService:
    """Groups bundle users so roles can be granted to all of them at once."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def list(
        self,
        tenant_id: str,
        search: Optional[str] = None,
        include_inactive: bool = False,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        p, lim = clamp_page(page, limit)
        flt: Dict[str, Any] = {"tenant_id": tenant_id}
        if not include_inactive:
            flt["is_active"] = True
        if search:
            flt["name"] = {"$regex": re.escape(search.strip())}
        coll = self.store.groups
        total = coll.count(flt)
        items = coll.find(flt, sort=[("name", 1)], skip=(p - 1) * lim, limit=lim)
        return items, build_pagination(p, lim, total)

    def get(self, tenant_id: str, group_id: str) -> Dict[str, Any]:
        group = self.store.groups.find_one({"id": group_id, "tenant_id": tenant_id})
        if not group:
            raise NotFoundError("Group")
        return group

    def get_with_details(self, tenant_id: str, group_id: str) -> Dict[str, Any]:
        group = self.get(tenant_id, group_id)
        member_ids = group.get("members") or []
        role_ids = group.get("roles") or []
        users = self.store.users.find({"id": {"$in": member_ids}}) if member_ids else []
        roles = self.store.iam_roles.find({"id": {"$in": role_ids}}) if role_ids else []
        group["member_details"] = [
            {"id": u["id"], "email": u.get("email"), "first_name": u.get("first_name"), "last_name": u.get("last_name")}
            for u in users
        ]
        group["role_details"] = [{"id": r["id"], "name": r.get("name"), "is_active": r.get("is_active")} for r in roles]
        return group

    # ------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------
    def _assert_unique_name(self, tenant_id: str, name: str, exclude_id: Optional[str] = None) -> None:
        flt = {"tenant_id": tenant_id, "is_active": True, "name": {"$regex": f"^{re.escape(name)}$"}}
        for other in self.store.groups.find(flt):
            if other["id"] != exclude_id:
                raise ConflictError(f"Group with name '{name}' already exists", code="ALREADY_EXISTS")

    def _tenant_users(self, tenant_id: str, user_ids: List[str]) -> List[Dict[str, Any]]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        users = self.store.users.find({"id": {"$in": ids}, "tenant_id": tenant_id})
        if len(users) != len(ids):
            raise NotFoundError("One or more users")
        return users

    def _assignable_roles(self, ctx: IamContext, tenant_id: str, role_ids: List[str]) -> List[Dict[str, Any]]:
        ids = list(dict.fromkeys(role_ids))
        if not ids:
            return []
        roles = self.store.iam_roles.find(
            {"id": {"$in": ids}, "is_active": True, "$or": [{"tenant_id": tenant_id}, {"tenant_id": None}]}
        )
        if len(roles) != len(ids):
            raise NotFoundError("One or more roles")
        assert_roles_grantable(ctx, roles)
        return roles

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------
    def create(
        self,
        ctx: IamContext,
        tenant_id: str,
        data: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        name = data["name"].strip()
        self._assert_unique_name(tenant_id, name)
        members = [u["id"] for u in self._tenant_users(tenant_id, data.get("members") or [])]
        roles = [r["id"] for r in self._assignable_roles(ctx, tenant_id, data.get("roles") or [])]

        group = self.store.groups.insert(
            {
                "tenant_id": tenant_id,
                "name": name,
                "description": data.get("description") or "",
                "members": members,
                "roles": roles,
                "is_active": True,
                "is_platform_group": False,
                "created_by": ctx.user_id,
            }
        )
        for uid in members:
            self.store.users.add_to_set(uid, "groups", [group["id"]])

        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.GROUP_CREATED,
            tenant_id=tenant_id,
            target_type="group",
            target_id=group["id"],
            target_name=name,
            summary=f"Created group {name}",
            after=group,
        )
        return group

    def update(
        self,
        ctx: IamContext,
        tenant_id: str,
        group_id: str,
        changes: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get(tenant_id, group_id)
        patch: Dict[str, Any] = {}
        if changes.get("name") is not None:
            name = changes["name"].strip()
            self._assert_unique_name(tenant_id, name, exclude_id=group_id)
            patch["name"] = name
        if changes.get("description") is not None:
            patch["description"] = changes["description"]
        if not patch:
            return before

        after = self.store.groups.update(group_id, patch)
        diff = compute_diff(before, after)
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.GROUP_UPDATED,
            tenant_id=tenant_id,
            target_type="group",
            target_id=group_id,
            target_name=after.get("name"),
            summary=f"Updated group {after.get('name')}",
            before=diff["before"],
            after=diff["after"],
        )
        return after

    def delete(
        self,
        ctx: IamContext,
        tenant_id: str,
        group_id: str,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        group = self.get(tenant_id, group_id)
        after = self.store.groups.update(group_id, {"is_active": False})
        removed = self.store.users.update_many(
            {"groups": group_id},
            lambda u: u.update({"groups": [g for g in (u.get("groups") or []) if g != group_id]}),
        )
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.GROUP_DELETED,
            tenant_id=tenant_id,
            target_type="group",
            target_id=group_id,
            target_name=group.get("name"),
            summary=f"Deleted group {group.get('name')}",
            metadata={"members_removed": removed},
        )
        return after

    def manage_members(
        self,
        ctx: IamContext,
        tenant_id: str,
        group_id: str,
        action: str,
        user_ids: List[str],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        group = self.get(tenant_id, group_id)
        if not group.get("is_active", True):
            raise BadRequestError("Group is not active")
        users = self._tenant_users(tenant_id, user_ids)
        ids = [u["id"] for u in users]

        if action == ACTION_ADD:
            if set(ids) - set(group.get("members") or []):
                assert_roles_grantable(ctx, group_roles(self.store, [group]))
            after = self.store.groups.add_to_set(group_id, "members", ids)
            for uid in ids:
                self.store.users.add_to_set(uid, "groups", [group_id])
            audit_action = IamAuditAction.GROUP_MEMBER_ADDED
            verb = "Added"
        elif action == ACTION_REMOVE:
            after = self.store.groups.pull(group_id, "members", ids)
            for uid in ids:
                self.store.users.pull(uid, "groups", [group_id])
            audit_action = IamAuditAction.GROUP_MEMBER_REMOVED
            verb = "Removed"
        else:
            raise BadRequestError(f"Unknown action: {action}")

        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=audit_action,
            tenant_id=tenant_id,
            target_type="group",
            target_id=group_id,
            target_name=group.get("name"),
            summary=f"{verb} {len(ids)} member(s) {'to' if action == ACTION_ADD else 'from'} group {group.get('name')}",
            metadata={"user_ids": ids, "emails": [u.get("email") for u in users]},
        )
        return after

    def manage_roles(
        self,
        ctx: IamContext,
        tenant_id: str,
        group_id: str,
        action: str,
        role_ids: List[str],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        group = self.get(tenant_id, group_id)
        before_roles = list(group.get("roles") or [])

        if action == ACTION_ADD:
            roles = self._assignable_roles(ctx, tenant_id, role_ids)
            after = self.store.groups.add_to_set(group_id, "roles", [r["id"] for r in roles])
        elif action == ACTION_REMOVE:
            after = self.store.groups.pull(group_id, "roles", role_ids)
        else:
            raise BadRequestError(f"Unknown action: {action}")

        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ROLE_ASSIGNED,
            tenant_id=tenant_id,
            target_type="group",
            target_id=group_id,
            target_name=group.get("name"),
            summary=f"Updated roles for group {group.get('name')}",
            before={"roles": before_roles},
            after={"roles": after.get("roles") or []},
        )
        return after
