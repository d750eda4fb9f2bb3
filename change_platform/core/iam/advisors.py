from __future__ import annotations

from typing import Any, Dict, List, Optional

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.errors import BadRequestError, ConflictError, NotFoundError
from change_platform.core.iam.permissions import PrimaryRole, UserRole, derive_primary_role
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.tenant_access import ASSIGNMENT_ACTIVE, ASSIGNMENT_INACTIVE
from change_platform.core.store import DocumentStore

VALID_STATUSES = (ASSIGNMENT_ACTIVE, ASSIGNMENT_INACTIVE)


def _is_advisor(user: Dict[str, Any]) -> bool:
    primary = user.get("primary_role") or derive_primary_role(user.get("role"))
    return primary == PrimaryRole.ADVISOR.value


class AdvisorAssignmentService:
    """Links advisors to the client tenants they are allowed to work in."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def list(
        self,
        tenant_id: Optional[str] = None,
        advisor_id: Optional[str] = None,
        status: Optional[str] = None,
        include_removed: bool = False,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {}
        if tenant_id:
            flt["tenant_id"] = tenant_id
        if advisor_id:
            flt["advisor_id"] = advisor_id
        if status:
            flt["status"] = status
        if not include_removed:
            flt["is_active"] = True
        items = self.store.advisor_assignments.find(flt, sort=[("created_at", -1)])
        return [self._with_names(a) for a in items]

    def _with_names(self, assignment: Dict[str, Any]) -> Dict[str, Any]:
        advisor = self.store.users.get(assignment.get("advisor_id") or "")
        tenant = self.store.tenants.get(assignment.get("tenant_id") or "")
        out = dict(assignment)
        out["advisor_email"] = advisor.get("email") if advisor else None
        out["tenant_name"] = tenant.get("name") if tenant else None
        return out

    def list_advisors(self) -> List[Dict[str, Any]]:
        users = self.store.users.find(
            {
                "is_active": True,
                "$or": [{"primary_role": PrimaryRole.ADVISOR.value}, {"role": UserRole.ADVISOR.value}],
            },
            sort=[("email", 1)],
        )
        return [
            {"id": u["id"], "email": u.get("email"), "first_name": u.get("first_name"), "last_name": u.get("last_name")}
            for u in users
            if _is_advisor(u)
        ]

    def create(
        self,
        ctx: IamContext,
        advisor_id: str,
        tenant_id: str,
        notes: Optional[str] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        advisor = self.store.users.get(advisor_id)
        if not advisor or not advisor.get("is_active", True):
            raise NotFoundError("Advisor")
        if not _is_advisor(advisor):
            raise BadRequestError("User is not an advisor")
        tenant = self.store.tenants.get(tenant_id)
        if not tenant:
            raise NotFoundError("Tenant", code="TENANT_NOT_FOUND")

        existing = self.store.advisor_assignments.find_one(
            {"advisor_id": advisor_id, "tenant_id": tenant_id, "is_active": True}
        )
        if existing:
            raise ConflictError("Advisor is already assigned to this tenant", code="ALREADY_EXISTS")

        assignment = self.store.advisor_assignments.insert(
            {
                "advisor_id": advisor_id,
                "tenant_id": tenant_id,
                "status": ASSIGNMENT_ACTIVE,
                "is_active": True,
                "notes": notes or "",
                "assigned_by": ctx.user_id,
            }
        )
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ADVISOR_ASSIGNMENT_CREATED,
            tenant_id=tenant_id,
            target_type="advisor_assignment",
            target_id=assignment["id"],
            target_name=advisor.get("email"),
            summary=f"Assigned advisor {advisor.get('email')} to tenant {tenant.get('name')}",
            after=assignment,
        )
        return self._with_names(assignment)

    def update(
        self,
        ctx: IamContext,
        assignment_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.store.advisor_assignments.get(assignment_id)
        if not before or not before.get("is_active", True):
            raise NotFoundError("Advisor assignment")
        patch: Dict[str, Any] = {}
        if status is not None:
            if status not in VALID_STATUSES:
                raise BadRequestError(f"Invalid status: {status}")
            patch["status"] = status
        if notes is not None:
            patch["notes"] = notes
        after = self.store.advisor_assignments.update(assignment_id, patch)
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ADVISOR_ASSIGNMENT_UPDATED,
            tenant_id=before.get("tenant_id"),
            target_type="advisor_assignment",
            target_id=assignment_id,
            summary="Updated advisor assignment",
            before={k: before.get(k) for k in patch},
            after=patch,
        )
        return self._with_names(after)

    def remove(
        self,
        ctx: IamContext,
        assignment_id: str,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.store.advisor_assignments.get(assignment_id)
        if not before or not before.get("is_active", True):
            raise NotFoundError("Advisor assignment")
        after = self.store.advisor_assignments.update(
            assignment_id, {"is_active": False, "status": ASSIGNMENT_INACTIVE}
        )
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ADVISOR_ASSIGNMENT_REMOVED,
            tenant_id=before.get("tenant_id"),
            target_type="advisor_assignment",
            target_id=assignment_id,
            summary="Removed advisor assignment",
            before={"status": before.get("status"), "is_active": True},
            after={"status": ASSIGNMENT_INACTIVE, "is_active": False},
        )
        return after
