from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.auth.passwords import hash_password
from change_platform.core.errors import BadRequestError, ConflictError, NotFoundError
from change_platform.core.iam.permissions import UserRole, derive_primary_role
from change_platform.core.iam.resolver import IamContext, get_user_permissions
from change_platform.core.iam.roles import assert_roles_grantable, group_roles
from change_platform.core.pagination import build_pagination, clamp_page
from change_platform.core.store import DocumentStore, utc_now_iso

log = logging.getLogger("change.iam")

DEFAULT_LOCK_REASON = "Locked by administrator"

# fields that never leave the service layer
_PRIVATE_FIELDS = ("password_hash", "mfa_secret")

# fields an administrator may change through a plain update
UPDATABLE_FIELDS = ("first_name", "last_name", "email", "role", "primary_role", "is_active", "must_change_password")


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k not in _PRIVATE_FIELDS}
    out["primary_role"] = doc.get("primary_role") or derive_primary_role(doc.get("role"))
    out["is_locked"] = bool(doc.get("locked_at"))
    return out


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def new_user_document(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    tenant_id: Optional[str],
    role: Optional[str] = None,
    primary_role: Optional[str] = None,
    must_change_password: bool = False,
) -> Dict[str, Any]:
    legacy = role or UserRole.CLIENT_OWNER.value
    return {
        "email": normalize_email(email),
        "password_hash": hash_password(password),
        "first_name": first_name.strip(),
        "last_name": last_name.strip(),
        "role": legacy,
        "primary_role": primary_role or derive_primary_role(legacy),
        "tenant_id": tenant_id,
        "is_active": True,
        "last_login_at": None,
        "iam_roles": [],
        "groups": [],
        "locked_at": None,
        "lock_reason": None,
        "failed_login_attempts": 0,
        "password_changed_at": utc_now_iso(),
        "must_change_password": must_change_password,
        "mfa_enabled": False,
    }


class UserService:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------
    def get_in_tenant(self, tenant_id: str, user_id: str) -> Dict[str, Any]:
        user = self.store.users.find_one({"id": user_id, "tenant_id": tenant_id})
        if not user:
            raise NotFoundError("User")
        return user

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.store.users.find_one({"email": normalize_email(email)})

    def list(
        self,
        tenant_id: str,
        search: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        p, lim = clamp_page(page, limit)
        flt: Dict[str, Any] = {"tenant_id": tenant_id}
        if role:
            flt["role"] = role
        if is_active is not None:
            flt["is_active"] = is_active
        if search:
            pat = re.escape(search.strip())
            flt["$or"] = [
                {"email": {"$regex": pat}},
                {"first_name": {"$regex": pat}},
                {"last_name": {"$regex": pat}},
            ]
        coll = self.store.users
        total = coll.count(flt)
        docs = coll.find(flt, sort=[("created_at", -1)], skip=(p - 1) * lim, limit=lim)
        return [public_user(d) for d in docs], build_pagination(p, lim, total)

    def effective_permissions(self, tenant_id: str, user_id: str) -> List[str]:
        self.get_in_tenant(tenant_id, user_id)
        return sorted(get_user_permissions(self.store, user_id))

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------
    def create(
        self,
        tenant_id: str,
        data: Dict[str, Any],
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        email = normalize_email(data["email"])
        if self.find_by_email(email):
            raise ConflictError("User with this email already exists", code="ALREADY_EXISTS")

        doc = new_user_document(
            email=email,
            password=data["password"],
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            tenant_id=tenant_id,
            role=data.get("role"),
            primary_role=data.get("primary_role"),
            must_change_password=bool(data.get("must_change_password", False)),
        )
        user = self.store.users.insert(doc)
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_CREATED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user["id"],
            target_name=email,
            summary=f"Created user {email}",
            after=public_user(user),
        )
        return public_user(user)

    def update(
        self,
        tenant_id: str,
        user_id: str,
        changes: Dict[str, Any],
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get_in_tenant(tenant_id, user_id)
        patch = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}

        if "email" in patch:
            patch["email"] = normalize_email(patch["email"])
            other = self.find_by_email(patch["email"])
            if other and other["id"] != user_id:
                raise ConflictError("User with this email already exists", code="ALREADY_EXISTS")
        # a primary role that was only ever derived follows the legacy role
        derived = before.get("primary_role") in (None, derive_primary_role(before.get("role")))
        if "role" in patch and "primary_role" not in patch and derived:
            patch["primary_role"] = derive_primary_role(patch["role"])
        if patch.get("is_active") is False:
            self._guard_self(actor, user_id, "deactivate")

        after = self.store.users.update(user_id, patch)
        diff = compute_diff(public_user(before), public_user(after))
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_UPDATED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=before.get("email"),
            summary=f"Updated user {before.get('email')}",
            before=diff["before"],
            after=diff["after"],
        )
        return public_user(after)

    def set_roles(
        self,
        tenant_id: str,
        user_id: str,
        role_ids: List[str],
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        ids = list(dict.fromkeys(role_ids))
        roles = self._assignable_roles(tenant_id, ids)
        if len(roles) != len(ids):
            raise NotFoundError("One or more roles")
        held = set(user.get("iam_roles") or [])
        assert_roles_grantable(actor, [r for r in roles if r["id"] not in held])

        before_names = self._role_names(user.get("iam_roles") or [])
        after = self.store.users.update(user_id, {"iam_roles": ids})
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.ROLE_ASSIGNED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=user.get("email"),
            summary=f"Updated roles for {user.get('email')}",
            before={"roles": before_names},
            after={"roles": [r.get("name") for r in roles]},
        )
        return public_user(after)

    def set_groups(
        self,
        tenant_id: str,
        user_id: str,
        group_ids: List[str],
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        ids = list(dict.fromkeys(group_ids))
        groups = self.store.groups.find({"id": {"$in": ids}, "tenant_id": tenant_id, "is_active": True}) if ids else []
        if len(groups) != len(ids):
            raise NotFoundError("One or more groups")

        previous = list(user.get("groups") or [])
        removed = [g for g in previous if g not in ids]
        added = [g for g in ids if g not in previous]
        assert_roles_grantable(actor, group_roles(self.store, [g for g in groups if g["id"] in added]))
        for gid in removed:
            self.store.groups.pull(gid, "members", [user_id])
        for gid in added:
            self.store.groups.add_to_set(gid, "members", [user_id])

        after = self.store.users.update(user_id, {"groups": ids})
        if added:
            log_iam_action_by(
                self.store,
                actor,
                meta,
                action=IamAuditAction.GROUP_MEMBER_ADDED,
                tenant_id=tenant_id,
                target_type="user",
                target_id=user_id,
                target_name=user.get("email"),
                summary=f"Added {user.get('email')} to {len(added)} group(s)",
                after={"groups": added},
            )
        if removed:
            log_iam_action_by(
                self.store,
                actor,
                meta,
                action=IamAuditAction.GROUP_MEMBER_REMOVED,
                tenant_id=tenant_id,
                target_type="user",
                target_id=user_id,
                target_name=user.get("email"),
                summary=f"Removed {user.get('email')} from {len(removed)} group(s)",
                before={"groups": removed},
            )
        return public_user(after)

    def lock(
        self,
        tenant_id: str,
        user_id: str,
        reason: Optional[str] = None,
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        self._guard_self(actor, user_id, "lock")
        why = (reason or "").strip() or DEFAULT_LOCK_REASON
        after = self.store.users.update(user_id, {"locked_at": utc_now_iso(), "lock_reason": why})
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_LOCKED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=user.get("email"),
            summary=f"Locked user {user.get('email')}",
            metadata={"reason": why},
        )
        return public_user(after)

    def unlock(
        self,
        tenant_id: str,
        user_id: str,
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        after = self.store.users.update(
            user_id, {"locked_at": None, "lock_reason": None, "failed_login_attempts": 0}
        )
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_UNLOCKED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=user.get("email"),
            summary=f"Unlocked user {user.get('email')}",
        )
        return public_user(after)

    def deactivate(
        self,
        tenant_id: str,
        user_id: str,
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        self._guard_self(actor, user_id, "deactivate")
        after = self.store.users.update(user_id, {"is_active": False})
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_DELETED,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=user.get("email"),
            summary=f"Deactivated user {user.get('email')}",
            before={"is_active": user.get("is_active", True)},
            after={"is_active": False},
        )
        return public_user(after)

    def reset_password(
        self,
        tenant_id: str,
        user_id: str,
        new_password: str,
        actor: Optional[IamContext] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        user = self.get_in_tenant(tenant_id, user_id)
        after = self.store.users.update(
            user_id,
            {
                "password_hash": hash_password(new_password),
                "password_changed_at": utc_now_iso(),
                "must_change_password": True,
                "failed_login_attempts": 0,
            },
        )
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.USER_PASSWORD_RESET,
            tenant_id=tenant_id,
            target_type="user",
            target_id=user_id,
            target_name=user.get("email"),
            summary=f"Reset password for {user.get('email')}",
        )
        return public_user(after)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _assignable_roles(self, tenant_id: str, role_ids: List[str]) -> List[Dict[str, Any]]:
        if not role_ids:
            return []
        return self.store.iam_roles.find(
            {
                "id": {"$in": role_ids},
                "is_active": True,
                "$or": [{"tenant_id": tenant_id}, {"tenant_id": None}],
            }
        )

    def _role_names(self, role_ids: List[str]) -> List[str]:
        if not role_ids:
            return []
        return [r.get("name") for r in self.store.iam_roles.find({"id": {"$in": list(role_ids)}})]

    @staticmethod
    def _guard_self(actor: Optional[IamContext], user_id: str, verb: str) -> None:
        if actor is not None and actor.user_id == user_id:
            raise BadRequestError(f"You cannot {verb} your own account")
