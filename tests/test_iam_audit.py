import csv
import io

from change_platform.core.audit.iam_audit import (
    EXPORT_HEADERS,
    IamAuditAction,
    distinct_actions,
    distinct_target_types,
    export_iam_audit_logs,
    log_iam_action,
    query_iam_audit_logs,
)
from change_platform.core.audit.service import AuditService
from change_platform.core.store import get_document_store


def _log(store, action, tenant_id="t1", actor_email="admin@acme.test", **kw):
    fields = dict(
        action=action,
        actor_id="u1",
        actor_email=actor_email,
        tenant_id=tenant_id,
        target_type=kw.pop("target_type", "user"),
        target_id="x",
        summary=f"{action} happened",
    )
    fields.update(kw)
    return log_iam_action(store, **fields)


def test_entry_is_sanitized_and_actor_normalized(store):
    entry = log_iam_action(
        store,
        action=IamAuditAction.USER_UPDATED,
        actor_id="unknown",
        actor_email="Someone@Example.COM",
        target_type="user",
        target_id="u2",
        summary="changed",
        before={"password": "old"},
        after={"password": "new", "first_name": "Z"},
        user_agent="x" * 600,
    )
    assert entry["actor_id"].startswith("anon-")
    assert entry["actor_email"] == "someone@example.com"
    assert entry["before"] == {"password": "[REDACTED]"}
    assert entry["after"] == {"password": "[REDACTED]", "first_name": "Z"}
    assert len(entry["user_agent"]) == 500


def test_write_failure_never_raises(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    broken = get_document_store(blocker / "data")

    assert _log(broken, IamAuditAction.USER_CREATED) is None


def test_query_filters_and_paginates(store):
    for _ in range(3):
        _log(store, IamAuditAction.USER_CREATED)
    _log(store, IamAuditAction.ROLE_CREATED, target_type="role")
    _log(store, IamAuditAction.USER_CREATED, tenant_id="t2")
    _log(store, IamAuditAction.AUTH_LOGIN_FAILED, tenant_id=None, actor_email="stranger@x.io")

    items, pagination = query_iam_audit_logs(store, tenant_id="t1", limit=2)
    assert len(items) == 2
    assert pagination["total"] == 4
    assert pagination["total_pages"] == 2
    assert pagination["has_next"] is True

    items, _ = query_iam_audit_logs(store, tenant_id="t1", action=IamAuditAction.ROLE_CREATED)
    assert [i["target_type"] for i in items] == ["role"]

    items, p = query_iam_audit_logs(store, tenant_id="t1", include_platform_logs=True)
    assert p["total"] == 5

    items, _ = query_iam_audit_logs(store, actor_email="STRANGER")
    assert len(items) == 1


def test_query_newest_first_and_date_range(store):
    old = _log(store, IamAuditAction.USER_CREATED)
    store.iam_audit_logs.update(old["id"], {"created_at": "2020-01-05T10:00:00Z"})
    _log(store, IamAuditAction.USER_UPDATED)

    items, _ = query_iam_audit_logs(store, tenant_id="t1")
    assert items[0]["action"] == IamAuditAction.USER_UPDATED

    items, _ = query_iam_audit_logs(store, tenant_id="t1", start_date="2020-01-05", end_date="2020-01-05")
    assert [i["id"] for i in items] == [old["id"]]


def test_export_csv(store):
    _log(store, IamAuditAction.USER_CREATED, summary='Created "quoted", user')
    body = export_iam_audit_logs(store, tenant_id="t1")

    rows = list(csv.reader(io.StringIO(body)))
    assert rows[0] == EXPORT_HEADERS
    assert rows[1][3] == IamAuditAction.USER_CREATED
    assert rows[1][7] == 'Created "quoted", user'


def test_distinct_values_are_sorted(store):
    _log(store, IamAuditAction.ROLE_CREATED, target_type="role")
    _log(store, IamAuditAction.GROUP_CREATED, target_type="group")
    _log(store, IamAuditAction.USER_CREATED, tenant_id="t2")

    assert distinct_actions(store, "t1") == [IamAuditAction.GROUP_CREATED, IamAuditAction.ROLE_CREATED]
    assert distinct_target_types(store, "t1") == ["group", "role"]
    assert len(distinct_actions(store)) == 3


def test_workflow_audit_service(store):
    svc = AuditService(store)
    svc.log(action="document_uploaded", resource_type="document", resource_id="d1", tenant_id="t1", user_id="u1")
    svc.log_system_action(action="tenant_created", resource_type="tenant", resource_id="t1", tenant_id="t1")

    logs, pagination = svc.get_tenant_logs("t1")
    assert pagination["total"] == 2

    system, _ = svc.get_tenant_logs("t1", action="tenant_created")
    assert system[0]["user_id"] == "system"
    assert system[0]["metadata"]["is_system_action"] is True

    assert len(svc.get_resource_logs("document", "d1")) == 1
    assert [e["action"] for e in svc.get_user_activity("u1")] == ["document_uploaded"]
