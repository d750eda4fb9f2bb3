def _url(tenant_id, suffix=""):
    return f"/api/v1/admin/tenants/{tenant_id}/settings{suffix}"


def test_settings_are_created_with_defaults(client, seeded):
    tid = seeded.tenant_a["id"]
    r = client.get(_url(tid), headers=seeded.headers(seeded.manager))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["tenant_id"] == tid
    assert data["audit_logging_enabled"] is True
    assert data["audit_retention_days"] == 365
    assert data["mfa_required"] is False
    assert data["session_timeout_minutes"] == 60
    assert data["max_failed_login_attempts"] == 5
    assert data["password_expiry_days"] == 90
    assert data["email_notifications_enabled"] is True

    client.get(_url(tid), headers=seeded.headers(seeded.manager))
    assert seeded.store.tenant_settings.count({"tenant_id": tid}) == 1


def test_update_validates_ranges_and_is_audited(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)

    r = client.put(_url(tid), json={"mfa_required": True, "password_expiry_days": 0}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["mfa_required"] is True
    assert r.json()["data"]["password_expiry_days"] == 0
    assert r.json()["data"]["session_timeout_minutes"] == 60

    for bad in ({"audit_retention_days": 10}, {"max_failed_login_attempts": 11}, {"unknown": 1}):
        assert client.put(_url(tid), json=bad, headers=headers).status_code == 400

    entry = seeded.store.iam_audit_logs.find_one({"action": "tenant.settings_updated"})
    assert entry["tenant_id"] == tid
    # keys naming a password are redacted like any other audit payload
    assert entry["before"] == {"mfa_required": False, "password_expiry_days": "[REDACTED]"}
    assert entry["after"] == {"mfa_required": True, "password_expiry_days": "[REDACTED]"}
    assert entry["summary"] == "Updated tenant settings: mfa_required, password_expiry_days"


def test_audit_logging_toggle(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)

    r = client.patch(_url(tid, "/audit-logging"), json={"enabled": False}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"] == {"audit_logging_enabled": False}
    assert client.get(_url(tid), headers=headers).json()["data"]["audit_logging_enabled"] is False

    assert client.patch(_url(tid, "/audit-logging"), json={"enabled": "nope"}, headers=headers).status_code == 400


def test_settings_access_rules(client, seeded, tenant_auditor_role):
    tid = seeded.tenant_a["id"]
    assert client.get(_url(tid), headers=seeded.headers(seeded.customer)).status_code == 403
    assert client.get(_url(seeded.tenant_b["id"]), headers=seeded.headers(seeded.manager)).status_code == 403

    # audit readers may look but only managers change settings
    seeded.store.users.update(seeded.customer["id"], {"iam_roles": [tenant_auditor_role["id"]]})
    auditor = seeded.headers(seeded.customer)
    assert client.get(_url(tid), headers=auditor).status_code == 200
    r = client.put(_url(tid), json={"mfa_required": True}, headers=auditor)
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Only tenant managers can update tenant settings"

    assert client.put(_url(tid), json={"mfa_required": True}, headers=seeded.headers(seeded.it_admin)).status_code == 200
