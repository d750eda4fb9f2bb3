"""
IAM audit trail (`iam_audit_logs` collection).

Every identity mutation (tenants, users, roles, groups, advisor assignments,
rules) and every login attempt lands here. Writing an entry must never break
the operation being audited: persistence errors are logged and counted, then
dropped.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from change_platform.core.audit.sanitize import sanitize_for_log
from change_platform.core.observability.metrics import AUDIT_WRITE_FAILURES_TOTAL
from change_platform.core.pagination import build_pagination, clamp_page
from change_platform.core.store import DocumentStore, new_id

log = logging.getLogger("change.audit")

UNKNOWN_ACTOR = "unknown"
SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_EMAIL = "system@change-platform.local"
DEFAULT_QUERY_LIMIT = 50
MAX_EXPORT_ROWS = 10000
MAX_USER_AGENT = 500

EXPORT_HEADERS = [
    "Timestamp",
    "Actor Email",
    "Actor Type",
    "Action",
    "Target Type",
    "Target ID",
    "Target Name",
    "Summary",
    "IP Address",
    "Request ID",
]


class IamAuditAction:
    AUTH_LOGIN_SUCCESS = "auth.login_success"
    AUTH_LOGIN_FAILED = "auth.login_failed"

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    USER_LOCKED = "user.locked"
    USER_UNLOCKED = "user.unlocked"
    USER_PASSWORD_RESET = "user.password_reset"

    ROLE_CREATED = "role.created"
    ROLE_UPDATED = "role.updated"
    ROLE_DELETED = "role.deleted"
    ROLE_ASSIGNED = "role.assigned"

    GROUP_CREATED = "group.created"
    GROUP_UPDATED = "group.updated"
    GROUP_DELETED = "group.deleted"
    GROUP_MEMBER_ADDED = "group.member_added"
    GROUP_MEMBER_REMOVED = "group.member_removed"

    ADVISOR_ASSIGNMENT_CREATED = "advisor_assignment.created"
    ADVISOR_ASSIGNMENT_UPDATED = "advisor_assignment.updated"
    ADVISOR_ASSIGNMENT_REMOVED = "advisor_assignment.removed"

    RULE_CREATED = "rule.created"
    RULE_UPDATED = "rule.updated"
    RULE_DELETED = "rule.deleted"

    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_SETTINGS_UPDATED = "tenant.settings_updated"

    ACCESS_REQUEST_CREATED = "access_request.created"
    ACCESS_REQUEST_APPROVED = "access_request.approved"
    ACCESS_REQUEST_REJECTED = "access_request.rejected"


class ActorType:
    USER = "user"
    SYSTEM = "system"


def log_iam_action(
    store: DocumentStore,
    *,
    action: str,
    actor_id: Optional[str],
    actor_email: Optional[str],
    target_type: str,
    target_id: Optional[str],
    summary: str,
    tenant_id: Optional[str] = None,
    actor_type: str = ActorType.USER,
    target_name: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    # anonymous actors (failed logins) still need a stable id on the entry
    aid = actor_id
    if not aid or aid == UNKNOWN_ACTOR:
        aid = f"anon-{new_id()[:12]}"

    entry = {
        "tenant_id": tenant_id,
        "actor_id": aid,
        "actor_email": (actor_email or "").lower(),
        "actor_type": actor_type,
        "action": action,
        "target_type": target_type,
        "target_id": target_id,
        "target_name": target_name,
        "summary": summary,
        "before": sanitize_for_log(before) if before is not None else None,
        "after": sanitize_for_log(after) if after is not None else None,
        "metadata": sanitize_for_log(metadata) if metadata else None,
        "ip_address": ip_address,
        "user_agent": (user_agent or "")[:MAX_USER_AGENT] or None,
        "request_id": request_id,
    }
    try:
        return store.iam_audit_logs.insert(entry)
    except Exception as e:
        AUDIT_WRITE_FAILURES_TOTAL.labels(log="iam").inc()
        log.error("iam audit write failed action=%s target=%s err=%s", action, target_id, e)
        return None


def client_ip(request: Any) -> Optional[str]:
    xf = request.headers.get("x-forwarded-for")
    if xf:
        return xf.split(",")[0].strip()
    client = getattr(request, "client", None)
    return client.host if client else None


def request_meta(request: Any) -> Dict[str, Optional[str]]:
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "request_id": getattr(request.state, "request_id", None) or request.headers.get("x-request-id"),
    }


def log_iam_action_by(
    store: DocumentStore,
    actor: Any,
    meta: Optional[Dict[str, Optional[str]]] = None,
    **fields: Any,
) -> Optional[Dict[str, Any]]:
    """
    Record an action taken by `actor` (an IamContext). A None actor is the
    platform itself. `meta` carries ip_address / user_agent / request_id.
    """
    if actor is None:
        fields.setdefault("actor_type", ActorType.SYSTEM)
        return log_iam_action(store, actor_id=SYSTEM_ACTOR_ID, actor_email=SYSTEM_ACTOR_EMAIL, **(meta or {}), **fields)
    fields.setdefault("tenant_id", actor.tenant_id)
    return log_iam_action(store, actor_id=actor.user_id, actor_email=actor.email, **(meta or {}), **fields)


def log_iam_action_from_request(store: DocumentStore, request: Any, ctx: Any, **fields: Any) -> Optional[Dict[str, Any]]:
    """Record an action taken by the authenticated caller of `request`."""
    return log_iam_action_by(store, ctx, request_meta(request), **fields)


def iso_bound(value: Union[str, datetime, None], end: bool = False) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    s = str(value).strip()
    if len(s) == 10:
        # bare date: cover the whole day
        return f"{s}T23:59:59.999999Z" if end else f"{s}T00:00:00Z"
    return s


def build_iam_audit_filter(
    tenant_id: Optional[str] = None,
    include_platform_logs: bool = False,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    start_date: Union[str, datetime, None] = None,
    end_date: Union[str, datetime, None] = None,
) -> Dict[str, Any]:
    flt: Dict[str, Any] = {}
    if tenant_id:
        if include_platform_logs:
            flt["$or"] = [{"tenant_id": tenant_id}, {"tenant_id": None}]
        else:
            flt["tenant_id"] = tenant_id
    if actor_id:
        flt["actor_id"] = actor_id
    if actor_email:
        flt["actor_email"] = {"$regex": _escape(actor_email)}
    if action:
        flt["action"] = action
    if target_type:
        flt["target_type"] = target_type
    if target_id:
        flt["target_id"] = target_id

    created: Dict[str, str] = {}
    start = iso_bound(start_date)
    end = iso_bound(end_date, end=True)
    if start:
        created["$gte"] = start
    if end:
        created["$lte"] = end
    if created:
        flt["created_at"] = created
    return flt


def _escape(text: str) -> str:
    return re.escape(text.strip())


def query_iam_audit_logs(
    store: DocumentStore,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    **filters: Any,
) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    p, lim = clamp_page(page, limit, default_limit=DEFAULT_QUERY_LIMIT)
    flt = build_iam_audit_filter(**filters)
    coll = store.iam_audit_logs
    total = coll.count(flt)
    items = coll.find(flt, sort=[("created_at", -1)], skip=(p - 1) * lim, limit=lim)
    return items, build_pagination(p, lim, total)


def export_iam_audit_logs(store: DocumentStore, **filters: Any) -> str:
    """Render matching entries (newest first, at most 10000) as CSV text."""
    flt = build_iam_audit_filter(**filters)
    rows = store.iam_audit_logs.find(flt, sort=[("created_at", -1)], limit=MAX_EXPORT_ROWS)

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for r in rows:
        writer.writerow(
            [
                r.get("created_at") or "",
                r.get("actor_email") or "",
                r.get("actor_type") or "",
                r.get("action") or "",
                r.get("target_type") or "",
                r.get("target_id") or "",
                r.get("target_name") or "",
                r.get("summary") or "",
                r.get("ip_address") or "",
                r.get("request_id") or "",
            ]
        )
    return buf.getvalue()


def _tenant_filter(tenant_id: Optional[str]) -> Dict[str, Any]:
    return {"tenant_id": tenant_id} if tenant_id else {}


def distinct_actions(store: DocumentStore, tenant_id: Optional[str] = None) -> List[str]:
    return sorted(store.iam_audit_logs.distinct("action", _tenant_filter(tenant_id)))


def distinct_target_types(store: DocumentStore, tenant_id: Optional[str] = None) -> List[str]:
    return sorted(store.iam_audit_logs.distinct("target_type", _tenant_filter(tenant_id)))
