from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from change_platform.core.audit.iam_audit import SYSTEM_ACTOR_EMAIL, SYSTEM_ACTOR_ID, iso_bound, request_meta
from change_platform.core.audit.sanitize import sanitize_for_log
from change_platform.core.observability.metrics import AUDIT_WRITE_FAILURES_TOTAL
from change_platform.core.pagination import build_pagination, clamp_page
from change_platform.core.store import DocumentStore

log = logging.getLogger("change.audit")

DEFAULT_LIMIT = 50


class AuditService:
    """
    Workflow-level audit log (`audit_logs` collection): who did what to which
    business resource. IAM changes go to the IAM audit trail instead.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def log(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        entry = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "user_email": user_email,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "changes": sanitize_for_log(changes) if changes else None,
            "metadata": sanitize_for_log(metadata) if metadata else None,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "request_id": request_id,
        }
        try:
            return self.store.audit_logs.insert(entry)
        except Exception as e:
            AUDIT_WRITE_FAILURES_TOTAL.labels(log="workflow").inc()
            log.error("audit write failed action=%s resource=%s/%s err=%s", action, resource_type, resource_id, e)
            return None

    def log_from_request(
        self,
        request: Any,
        ctx: Any,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        tenant_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        return self.log(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            tenant_id=tenant_id if tenant_id is not None else ctx.tenant_id,
            user_id=ctx.user_id,
            user_email=ctx.email,
            changes=changes,
            metadata=metadata,
            **request_meta(request),
        )

    def log_system_action(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        tenant_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        meta = dict(metadata or {})
        meta["is_system_action"] = True
        return self.log(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            tenant_id=tenant_id,
            user_id=SYSTEM_ACTOR_ID,
            user_email=SYSTEM_ACTOR_EMAIL,
            changes=changes,
            metadata=meta,
        )

    def get_resource_logs(self, resource_type: str, resource_id: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        return self.store.audit_logs.find(
            {"resource_type": resource_type, "resource_id": resource_id},
            sort=[("created_at", -1)],
            limit=limit,
        )

    def get_tenant_logs(
        self,
        tenant_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        p, lim = clamp_page(page, limit, default_limit=DEFAULT_LIMIT)
        flt: Dict[str, Any] = {"tenant_id": tenant_id}
        if action:
            flt["action"] = action
        if user_id:
            flt["user_id"] = user_id
        created: Dict[str, str] = {}
        start = iso_bound(start_date)
        end = iso_bound(end_date, end=True)
        if start:
            created["$gte"] = start
        if end:
            created["$lte"] = end
        if created:
            flt["created_at"] = created

        coll = self.store.audit_logs
        total = coll.count(flt)
        items = coll.find(flt, sort=[("created_at", -1)], skip=(p - 1) * lim, limit=lim)
        return items, build_pagination(p, lim, total)

    def get_user_activity(self, user_id: str, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        return self.store.audit_logs.find({"user_id": user_id}, sort=[("created_at", -1)], limit=limit)
