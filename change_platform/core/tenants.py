from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.audit.service import AuditService
from change_platform.core.errors import ConflictError, NotFoundError
from change_platform.core.iam.tenant_access import ALL_TENANTS
from change_platform.core.store import DocumentStore

DEFAULT_SUBSCRIPTION = {"plan": "starter", "status": "active"}

# audit, security and notification settings kept per tenant
DEFAULT_TENANT_SETTINGS: Dict[str, Any] = {
    "audit_logging_enabled": True,
    "audit_retention_days": 365,
    "mfa_required": False,
    "session_timeout_minutes": 60,
    "max_failed_login_attempts": 5,
    "password_expiry_days": 90,
    "email_notifications_enabled": True,
}

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", (name or "").strip().lower()).strip("-")


class TenantService:
    def __init__(self, store: DocumentStore):
        self.store = store
        self.audit = AuditService(store)

    def get(self, tenant_id: str) -> Dict[str, Any]:
        tenant = self.store.tenants.get(tenant_id)
        if not tenant:
            raise NotFoundError("Tenant", code="TENANT_NOT_FOUND")
        return tenant

    def list_accessible(self, accessible: Union[str, List[str]], include_inactive: bool = False) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {}
        if accessible != ALL_TENANTS:
            flt["id"] = {"$in": list(accessible)}
        if not include_inactive:
            flt["is_active"] = True
        return self.store.tenants.find(flt, sort=[("name", 1)])

    def create(
        self,
        name: str,
        slug: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        subscription: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
        actor: Any = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        s = slugify(slug or name)
        if not s:
            raise ConflictError("Tenant slug cannot be empty")
        if self.store.tenants.find_one({"slug": s}):
            raise ConflictError(f"Tenant with slug '{s}' already exists", code="ALREADY_EXISTS")
        tenant = self.store.tenants.insert(
            {
                "name": name.strip(),
                "slug": s,
                "is_active": True,
                "settings": settings or {},
                "subscription": subscription or dict(DEFAULT_SUBSCRIPTION),
                "created_by": created_by,
            }
        )
        self.audit.log_system_action(
            action="tenant_created",
            resource_type="tenant",
            resource_id=tenant["id"],
            tenant_id=tenant["id"],
            metadata={"created_by": created_by, "slug": s},
        )
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.TENANT_CREATED,
            tenant_id=tenant["id"],
            target_type="tenant",
            target_id=tenant["id"],
            target_name=tenant["name"],
            summary=f"Created tenant {tenant['name']}",
            after=tenant,
        )
        return tenant

    def update(
        self,
        tenant_id: str,
        changes: Dict[str, Any],
        actor: Any = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get(tenant_id)
        patch: Dict[str, Any] = {}
        if changes.get("name") is not None:
            patch["name"] = changes["name"].strip()
        if changes.get("settings") is not None:
            patch["settings"] = changes["settings"]
        if changes.get("subscription") is not None:
            patch["subscription"] = changes["subscription"]
        if changes.get("is_active") is not None:
            patch["is_active"] = bool(changes["is_active"])
        after = self.store.tenants.update(tenant_id, patch)
        if patch:
            log_iam_action_by(
                self.store,
                actor,
                meta,
                action=IamAuditAction.TENANT_UPDATED,
                tenant_id=tenant_id,
                target_type="tenant",
                target_id=tenant_id,
                target_name=after["name"],
                summary=f"Updated tenant {after['name']}: {', '.join(sorted(patch))}",
                before={k: before.get(k) for k in patch},
                after=patch,
            )
        return after

    def dashboard(self, tenant_id: str) -> Dict[str, Any]:
        tenant = self.get(tenant_id)
        users = self.store.users
        recent = self.store.iam_audit_logs.find({"tenant_id": tenant_id}, sort=[("created_at", -1)], limit=10)
        return {
            "tenant": tenant,
            "stats": {
                "users_total": users.count({"tenant_id": tenant_id}),
                "users_active": users.count({"tenant_id": tenant_id, "is_active": True}),
                "users_locked": users.count({"tenant_id": tenant_id, "locked_at": {"$ne": None}}),
                "roles": self.store.iam_roles.count({"tenant_id": tenant_id, "is_active": True}),
                "groups": self.store.groups.count({"tenant_id": tenant_id, "is_active": True}),
                "advisors": self.store.advisor_assignments.count(
                    {"tenant_id": tenant_id, "is_active": True, "status": "active"}
                ),
            },
            "recent_activity": recent,
        }


class TenantSettingsService:
    """One `tenant_settings` document per tenant, created with defaults on first read."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, tenant_id: str) -> Dict[str, Any]:
        settings = self.store.tenant_settings.find_one({"tenant_id": tenant_id})
        if settings:
            return settings
        return self.store.tenant_settings.insert({"tenant_id": tenant_id, **DEFAULT_TENANT_SETTINGS})

    def update(
        self,
        ctx: Any,
        tenant_id: str,
        changes: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get(tenant_id)
        patch = {k: v for k, v in changes.items() if k in DEFAULT_TENANT_SETTINGS and v is not None}
        after = self.store.tenant_settings.update(before["id"], patch)
        diff = compute_diff({k: before.get(k) for k in patch}, patch)
        if diff["after"]:
            log_iam_action_by(
                self.store,
                ctx,
                meta,
                action=IamAuditAction.TENANT_SETTINGS_UPDATED,
                tenant_id=tenant_id,
                target_type="tenant_settings",
                target_id=after["id"],
                summary=f"Updated tenant settings: {', '.join(sorted(diff['after']))}",
                before=diff["before"],
                after=diff["after"],
            )
        return after
