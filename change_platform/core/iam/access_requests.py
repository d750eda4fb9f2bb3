"""
Access requests: a user asks for extra roles or permissions, an approver
decides. Approving grants the requested roles to the requestor; requested
permissions are informational and are granted by building a role.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.errors import BadRequestError, ForbiddenError, InvalidTransitionError, NotFoundError
from change_platform.core.iam.permissions import validate_permissions
from change_platform.core.iam.resolver import IamContext
from change_platform.core.iam.roles import assert_roles_grantable
from change_platform.core.pagination import build_pagination, clamp_page
from change_platform.core.store import DocumentStore, utc_now_iso

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class AccessRequestService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _requestable_roles(self, tenant_id: str, role_ids: List[str]) -> List[Dict[str, Any]]:
        if not role_ids:
            return []
        roles = self.store.iam_roles.find(
            {"id": {"$in": role_ids}, "is_active": True, "$or": [{"tenant_id": tenant_id}, {"tenant_id": None}]}
        )
        if len(roles) != len(role_ids):
            raise NotFoundError("One or more requested roles")
        return roles

    def _with_role_names(self, request: Dict[str, Any]) -> Dict[str, Any]:
        ids = request.get("requested_role_ids") or []
        names = {r["id"]: r.get("name") for r in self.store.iam_roles.find({"id": {"$in": ids}})} if ids else {}
        request["requested_roles"] = [{"id": rid, "name": names.get(rid)} for rid in ids]
        return request

    def list(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        p, lim = clamp_page(page, limit)
        flt: Dict[str, Any] = {"tenant_id": tenant_id}
        if status:
            flt["status"] = status
        coll = self.store.access_requests
        total = coll.count(flt)
        items = coll.find(flt, sort=[("created_at", -1)], skip=(p - 1) * lim, limit=lim)
        return [self._with_role_names(r) for r in items], build_pagination(p, lim, total)

    def get(self, tenant_id: str, request_id: str) -> Dict[str, Any]:
        request = self.store.access_requests.find_one({"id": request_id, "tenant_id": tenant_id})
        if not request:
            raise NotFoundError("Access request")
        return self._with_role_names(request)

    def create(
        self,
        ctx: IamContext,
        tenant_id: str,
        data: Dict[str, Any],
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        role_ids = list(dict.fromkeys(data.get("role_ids") or []))
        perms = list(dict.fromkeys(data.get("permissions") or []))
        if not role_ids and not perms:
            raise BadRequestError("Must request at least one role or permission")
        invalid = validate_permissions(perms)
        if invalid:
            raise BadRequestError(f"Invalid permissions: {', '.join(invalid)}", details={"invalid": invalid})
        self._requestable_roles(tenant_id, role_ids)
        if not self.store.users.get(ctx.user_id):
            raise NotFoundError("User")

        request = self.store.access_requests.insert(
            {
                "tenant_id": tenant_id,
                "requestor_id": ctx.user_id,
                "requestor_email": ctx.email,
                "requested_role_ids": role_ids,
                "requested_permissions": perms,
                "reason": data["reason"].strip(),
                "status": STATUS_PENDING,
                "effective_until": _iso(data.get("effective_until")),
                "approver_id": None,
                "approver_email": None,
                "approver_notes": None,
                "decided_at": None,
            }
        )
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ACCESS_REQUEST_CREATED,
            tenant_id=tenant_id,
            target_type="access_request",
            target_id=request["id"],
            target_name=ctx.email,
            summary="Created access request",
            after={"requested_role_ids": role_ids, "requested_permissions": perms, "reason": request["reason"]},
        )
        return self._with_role_names(request)

    def _pending(self, ctx: IamContext, tenant_id: str, request_id: str, decision: str) -> Dict[str, Any]:
        request = self.store.access_requests.find_one({"id": request_id, "tenant_id": tenant_id})
        if not request:
            raise NotFoundError("Access request")
        if request["status"] != STATUS_PENDING:
            raise InvalidTransitionError(request["status"], decision)
        if request["requestor_id"] == ctx.user_id:
            raise ForbiddenError("You cannot decide your own access request")
        return request

    def _decide(
        self,
        ctx: IamContext,
        request: Dict[str, Any],
        status: str,
        notes: Optional[str],
        meta: Optional[Dict[str, Optional[str]]],
    ) -> Dict[str, Any]:
        after = self.store.access_requests.update(
            request["id"],
            {
                "status": status,
                "approver_id": ctx.user_id,
                "approver_email": ctx.email,
                "approver_notes": notes,
                "decided_at": utc_now_iso(),
            },
        )
        approved = status == STATUS_APPROVED
        log_iam_action_by(
            self.store,
            ctx,
            meta,
            action=IamAuditAction.ACCESS_REQUEST_APPROVED if approved else IamAuditAction.ACCESS_REQUEST_REJECTED,
            tenant_id=request["tenant_id"],
            target_type="access_request",
            target_id=request["id"],
            target_name=request["requestor_email"],
            summary=f"{'Approved' if approved else 'Rejected'} access request for {request['requestor_email']}",
            after={"decision": status, "notes": notes},
        )
        return self._with_role_names(after)

    def approve(
        self,
        ctx: IamContext,
        tenant_id: str,
        request_id: str,
        notes: Optional[str] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        request = self._pending(ctx, tenant_id, request_id, STATUS_APPROVED)
        role_ids = request.get("requested_role_ids") or []
        roles = self._requestable_roles(tenant_id, role_ids)
        assert_roles_grantable(ctx, roles)
        if not self.store.users.get(request["requestor_id"]):
            raise NotFoundError("Requestor")
        if role_ids:
            self.store.users.add_to_set(request["requestor_id"], "iam_roles", role_ids)
        return self._decide(ctx, request, STATUS_APPROVED, notes, meta)

    def reject(
        self,
        ctx: IamContext,
        tenant_id: str,
        request_id: str,
        notes: Optional[str] = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        request = self._pending(ctx, tenant_id, request_id, STATUS_REJECTED)
        return self._decide(ctx, request, STATUS_REJECTED, notes, meta)
