from __future__ import annotations

from typing import Any, Dict, Optional

from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.audit.service import AuditService
from change_platform.core.errors import NotFoundError
from change_platform.core.store import DocumentStore

BUSINESS_TYPES = ("llc", "corporation", "sole_proprietorship", "partnership", "nonprofit", "cooperative")

PROFILE_FIELDS = (
    "business_name",
    "business_type",
    "formation_state",
    "archetype",
    "industry_code",
    "email",
    "phone",
    "address",
    "is_existing_business",
    "has_ein",
    "employee_count",
    "owners",
    "attributes",
)


def build_rule_context(profile: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Flatten a business profile into the context rules are evaluated against.
    The whole profile stays reachable under `profile.*`.
    """
    state = profile.get("formation_state")
    ctx: Dict[str, Any] = {
        "state": state.upper() if isinstance(state, str) else state,
        "entity_type": profile.get("business_type"),
        "archetype": profile.get("archetype"),
        "business_name": profile.get("business_name"),
        "industry_code": profile.get("industry_code"),
        "is_existing_business": bool(profile.get("is_existing_business", False)),
        "has_ein": bool(profile.get("has_ein", False)),
        "employee_count": profile.get("employee_count"),
        "owner_count": len(profile.get("owners") or []),
        "attributes": profile.get("attributes") or {},
        "profile": profile,
    }
    if extra:
        ctx.update(extra)
    return ctx


class BusinessProfileService:
    def __init__(self, store: DocumentStore):
        self.store = store
        self.audit = AuditService(store)

    def get(self, tenant_id: str) -> Dict[str, Any]:
        profile = self.store.business_profiles.find_one({"tenant_id": tenant_id})
        if not profile:
            raise NotFoundError("Business profile")
        return profile

    def upsert(
        self,
        tenant_id: str,
        data: Dict[str, Any],
        actor: Any,
        request: Any = None,
    ) -> Dict[str, Any]:
        patch = {k: v for k, v in data.items() if k in PROFILE_FIELDS and v is not None}
        if isinstance(patch.get("formation_state"), str):
            patch["formation_state"] = patch["formation_state"].strip().upper()

        existing = self.store.business_profiles.find_one({"tenant_id": tenant_id})
        if existing:
            after = self.store.business_profiles.update(existing["id"], patch)
            action = "business_profile_updated"
            changes = compute_diff(existing, after)
        else:
            body = {"tenant_id": tenant_id, "created_by": actor.user_id}
            body.update(patch)
            after = self.store.business_profiles.insert(body)
            action = "business_profile_created"
            changes = {"before": None, "after": patch}

        if request is not None:
            self.audit.log_from_request(
                request,
                actor,
                action=action,
                resource_type="business_profile",
                resource_id=after["id"],
                tenant_id=tenant_id,
                changes=changes,
            )
        return after
