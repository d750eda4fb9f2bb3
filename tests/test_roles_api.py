def _roles_url(tenant_id, suffix=""):
    return f"/api/v1/admin/tenants/{tenant_id}/roles{suffix}"


def _create(client, seeded, user, **body):
    payload = {"name": "Reviewers", "description": "Read-only reviewers", "permissions": ["iam:users:read"]}
    payload.update(body)
    return client.post(_roles_url(seeded.tenant_a["id"]), json=payload, headers=seeded.headers(user))


def test_manager_creates_and_lists_roles(client, seeded):
    r = _create(client, seeded, seeded.manager, permissions=["iam:users:read", "business:read", "iam:users:read"])
    assert r.status_code == 201
    role = r.json()["data"]
    assert role["tenant_id"] == seeded.tenant_a["id"]
    assert role["permissions"] == ["iam:users:read", "business:read"]
    assert role["is_system"] is False

    r = client.get(_roles_url(seeded.tenant_a["id"]), headers=seeded.headers(seeded.manager))
    names = [x["name"] for x in r.json()["data"]]
    assert names == [
        "Advisor Administrator",
        "Auditor",
        "Global Administrator",
        "Tenant Administrator",
        "Reviewers",
    ]

    r = client.get(_roles_url(seeded.tenant_a["id"]), params={"search": "review"}, headers=seeded.headers(seeded.manager))
    assert [x["name"] for x in r.json()["data"]] == ["Reviewers"]

    entry = seeded.store.iam_audit_logs.find_one({"action": "role.created"})
    assert entry["tenant_id"] == seeded.tenant_a["id"]
    assert entry["actor_id"] == seeded.manager["id"]
    assert entry["ip_address"] == "1.2.3.4"


def test_role_name_must_be_unique_case_insensitively(client, seeded):
    assert _create(client, seeded, seeded.manager).status_code == 201

    r = _create(client, seeded, seeded.manager, name="reviewers")
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "ALREADY_EXISTS"

    # global roles share the namespace
    assert _create(client, seeded, seeded.manager, name="Auditor").status_code == 409


def test_invalid_permissions_are_rejected(client, seeded):
    r = _create(client, seeded, seeded.manager, permissions=["iam:users:read", "iam:nope"])
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["message"] == "Invalid permissions: iam:nope"
    assert err["details"] == {"invalid": ["iam:nope"]}


def test_only_it_admin_creates_global_roles(client, seeded):
    r = _create(client, seeded, seeded.manager, is_global=True)
    assert r.status_code == 403

    r = _create(client, seeded, seeded.it_admin, name="Support", is_global=True)
    assert r.status_code == 201
    assert r.json()["data"]["tenant_id"] is None


def test_update_and_soft_delete(client, seeded):
    tid = seeded.tenant_a["id"]
    role_id = _create(client, seeded, seeded.manager).json()["data"]["id"]
    headers = seeded.headers(seeded.manager)

    r = client.put(_roles_url(tid, f"/{role_id}"), json={"permissions": ["iam:groups:read"]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["permissions"] == ["iam:groups:read"]
    entry = seeded.store.iam_audit_logs.find_one({"action": "role.updated"})
    assert entry["before"]["permissions"] == ["iam:users:read"]
    assert entry["after"]["permissions"] == ["iam:groups:read"]

    r = client.delete(_roles_url(tid, f"/{role_id}"), headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["message"] == "Role deleted successfully"

    listed = client.get(_roles_url(tid), headers=headers).json()["data"]
    assert role_id not in [x["id"] for x in listed]
    listed = client.get(_roles_url(tid), params={"include_inactive": "true"}, headers=headers).json()["data"]
    assert role_id in [x["id"] for x in listed]


def test_system_roles_are_protected(client, seeded):
    tid = seeded.tenant_a["id"]
    auditor = seeded.store.iam_roles.find_one({"system_role": "auditor"})
    headers = seeded.headers(seeded.manager)

    r = client.delete(_roles_url(tid, f"/{auditor['id']}"), headers=headers)
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "System roles cannot be deleted"

    r = client.put(_roles_url(tid, f"/{auditor['id']}"), json={"name": "Renamed"}, headers=headers)
    assert r.status_code == 403


def test_roles_of_other_tenants_are_invisible(client, seeded):
    r = client.post(
        _roles_url(seeded.tenant_b["id"]),
        json={"name": "Beta only", "permissions": []},
        headers=seeded.headers(seeded.it_admin),
    )
    beta_role = r.json()["data"]["id"]

    r = client.get(_roles_url(seeded.tenant_a["id"], f"/{beta_role}"), headers=seeded.headers(seeded.manager))
    assert r.status_code == 404

    r = client.get(_roles_url(seeded.tenant_b["id"]), headers=seeded.headers(seeded.manager))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "TENANT_ACCESS_DENIED"
    assert r.json()["error"]["message"] == "Access denied: You can only access your own tenant"


def test_customer_cannot_read_roles(client, seeded):
    r = client.get(_roles_url(seeded.tenant_a["id"]), headers=seeded.headers(seeded.customer))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"
