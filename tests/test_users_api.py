from conftest import PASSWORD


def _users_url(tenant_id, suffix=""):
    return f"/api/v1/admin/tenants/{tenant_id}/users{suffix}"


def _new_user(**extra):
    body = {
        "email": "Staff@Acme.test",
        "password": PASSWORD,
        "first_name": "Staff",
        "last_name": "Member",
    }
    body.update(extra)
    return body


def test_create_and_list_users(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)

    r = client.post(_users_url(tid), json=_new_user(), headers=headers)
    assert r.status_code == 201
    user = r.json()["data"]
    assert user["email"] == "staff@acme.test"
    assert user["tenant_id"] == tid
    assert user["role"] == "client_owner"
    assert user["must_change_password"] is True
    assert "password_hash" not in user

    entry = seeded.store.iam_audit_logs.find_one({"action": "user.created"})
    assert "password_hash" not in entry["after"]

    r = client.post(_users_url(tid), json=_new_user(), headers=headers)
    assert r.status_code == 409

    r = client.get(_users_url(tid), params={"search": "staff"}, headers=headers)
    body = r.json()
    assert [u["email"] for u in body["data"]] == ["staff@acme.test"]
    assert body["meta"]["pagination"]["total"] == 1

    r = client.get(_users_url(tid), headers=headers)
    assert {u["email"] for u in r.json()["data"]} == {"manager@acme.test", "owner@acme.test", "staff@acme.test"}


def test_users_from_other_tenants_are_not_found(client, seeded):
    r = client.get(
        _users_url(seeded.tenant_a["id"], f"/{seeded.customer_b['id']}"),
        headers=seeded.headers(seeded.it_admin),
    )
    assert r.status_code == 404


def test_privilege_escalation_is_blocked(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)

    r = client.post(_users_url(tid), json=_new_user(role="system_admin"), headers=headers)
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Only IT administrators can grant platform administrator access"

    r = client.put(
        _users_url(tid, f"/{seeded.customer['id']}"),
        json={"primary_role": "it_admin"},
        headers=headers,
    )
    assert r.status_code == 403

    r = client.put(
        _users_url(tid, f"/{seeded.customer['id']}"),
        json={"role": "program_admin"},
        headers=seeded.headers(seeded.it_admin),
    )
    assert r.status_code == 200
    assert r.json()["data"]["primary_role"] == "manager"


def test_update_user_records_diff(client, seeded):
    tid = seeded.tenant_a["id"]
    r = client.put(
        _users_url(tid, f"/{seeded.customer['id']}"),
        json={"first_name": "Corinne"},
        headers=seeded.headers(seeded.manager),
    )
    assert r.status_code == 200
    assert r.json()["data"]["first_name"] == "Corinne"

    entry = seeded.store.iam_audit_logs.find_one({"action": "user.updated"})
    assert entry["before"]["first_name"] == "Cora"
    assert entry["after"]["first_name"] == "Corinne"


def test_lock_unlock_and_self_protection(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)

    r = client.post(_users_url(tid, f"/{seeded.customer['id']}/lock"), json={"reason": "Suspicious"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["is_locked"] is True
    assert r.json()["data"]["lock_reason"] == "Suspicious"

    login = client.post("/api/v1/auth/login", json={"email": "owner@acme.test", "password": PASSWORD})
    assert login.status_code == 401

    r = client.post(_users_url(tid, f"/{seeded.customer['id']}/unlock"), headers=headers)
    assert r.json()["data"]["is_locked"] is False

    r = client.post(_users_url(tid, f"/{seeded.manager['id']}/lock"), headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "You cannot lock your own account"

    r = client.delete(_users_url(tid, f"/{seeded.manager['id']}"), headers=headers)
    assert r.status_code == 400


def test_deactivate_user(client, seeded):
    tid = seeded.tenant_a["id"]
    r = client.delete(_users_url(tid, f"/{seeded.customer['id']}"), headers=seeded.headers(seeded.manager))
    assert r.status_code == 200
    assert r.json()["data"]["message"] == "User deactivated successfully"
    assert seeded.store.users.get(seeded.customer["id"])["is_active"] is False

    r = client.get("/api/v1/admin/me", headers=seeded.headers(seeded.customer))
    assert r.status_code == 401


def test_reset_password(client, seeded):
    tid = seeded.tenant_a["id"]
    r = client.post(
        _users_url(tid, f"/{seeded.customer['id']}/reset-password"),
        json={"new_password": "Fresh-passw0rd"},
        headers=seeded.headers(seeded.manager),
    )
    assert r.status_code == 200
    login = client.post("/api/v1/auth/login", json={"email": "owner@acme.test", "password": "Fresh-passw0rd"})
    assert login.status_code == 200
    assert login.json()["data"]["user"]["must_change_password"] is True


def test_direct_roles_and_effective_permissions(client, seeded, tenant_auditor_role):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)
    auditor = tenant_auditor_role

    r = client.post(_users_url(tid, f"/{seeded.customer['id']}/roles"), json={"role_ids": [auditor["id"]]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["iam_roles"] == [auditor["id"]]

    r = client.get(_users_url(tid, f"/{seeded.customer['id']}/permissions"), headers=headers)
    perms = r.json()["data"]["permissions"]
    assert "iam:audit:export" in perms
    assert perms == sorted(perms)

    r = client.post(_users_url(tid, f"/{seeded.customer['id']}/roles"), json={"role_ids": ["missing"]}, headers=headers)
    assert r.status_code == 404


def test_set_user_groups(client, seeded):
    tid = seeded.tenant_a["id"]
    headers = seeded.headers(seeded.manager)
    g1 = client.post(f"/api/v1/admin/tenants/{tid}/groups", json={"name": "One"}, headers=headers).json()["data"]["id"]
    g2 = client.post(f"/api/v1/admin/tenants/{tid}/groups", json={"name": "Two"}, headers=headers).json()["data"]["id"]
    url = _users_url(tid, f"/{seeded.customer['id']}/groups")

    r = client.post(url, json={"group_ids": [g1, g2]}, headers=headers)
    assert r.json()["data"]["groups"] == [g1, g2]

    r = client.post(url, json={"group_ids": [g2]}, headers=headers)
    assert r.json()["data"]["groups"] == [g2]
    assert seeded.store.groups.get(g1)["members"] == []
    assert seeded.store.groups.get(g2)["members"] == [seeded.customer["id"]]
