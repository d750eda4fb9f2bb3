from change_platform.core.iam.permissions import ALL_IAM_PERMISSIONS, PERMISSION_CATALOG


def test_admin_me_for_each_primary_role(client, seeded):
    r = client.get("/api/v1/admin/me", headers=seeded.headers(seeded.it_admin))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["primary_role"] == "it_admin"
    assert data["accessible_tenants"] == "all"
    assert set(ALL_IAM_PERMISSIONS) <= set(data["permissions"])
    assert data["permissions"] == sorted(data["permissions"])
    assert "password_hash" not in data["user"]

    data = client.get("/api/v1/admin/me", headers=seeded.headers(seeded.manager)).json()["data"]
    assert data["primary_role"] == "manager"
    assert data["tenant_id"] == seeded.tenant_a["id"]
    assert data["accessible_tenants"] == [seeded.tenant_a["id"]]

    data = client.get("/api/v1/admin/me", headers=seeded.headers(seeded.advisor)).json()["data"]
    assert data["accessible_tenants"] == [seeded.tenant_a["id"]]
    assert "clients:read" in data["permissions"]


def test_locked_user_is_rejected_by_permission_loading(client, seeded):
    headers = seeded.headers(seeded.manager)
    seeded.store.users.update(seeded.manager["id"], {"locked_at": "2025-01-01T00:00:00Z"})
    r = client.get("/api/v1/admin/me", headers=headers)
    assert r.status_code == 403
    assert r.json()["error"]["message"].startswith("Account is locked")


def test_permission_catalog_is_public_to_authenticated_users(client, seeded):
    r = client.get("/api/v1/admin/permissions", headers=seeded.headers(seeded.customer))
    assert r.status_code == 200
    assert len(r.json()["data"]) == len(PERMISSION_CATALOG)

    assert client.get("/api/v1/admin/permissions").status_code == 401


def test_system_roles_requires_role_read(client, seeded):
    r = client.get("/api/v1/admin/system-roles", headers=seeded.headers(seeded.manager))
    assert r.status_code == 200
    keys = [role["key"] for role in r.json()["data"]]
    assert keys == ["global_admin", "tenant_admin", "advisor_admin", "auditor"]

    r = client.get("/api/v1/admin/system-roles", headers=seeded.headers(seeded.customer))
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Permission denied: iam:roles:read"


def test_tenant_dashboard(client, seeded):
    tid = seeded.tenant_a["id"]
    seeded.store.users.update(seeded.customer["id"], {"locked_at": "2025-01-01T00:00:00Z"})

    r = client.get(f"/api/v1/admin/tenants/{tid}/dashboard", headers=seeded.headers(seeded.manager))
    assert r.status_code == 200
    stats = r.json()["data"]["stats"]
    assert stats["users_total"] == 2
    assert stats["users_active"] == 2
    assert stats["users_locked"] == 1
    assert stats["advisors"] == 1

    other = seeded.tenant_b["id"]
    r = client.get(f"/api/v1/admin/tenants/{other}/dashboard", headers=seeded.headers(seeded.manager))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "TENANT_ACCESS_DENIED"


def test_tenant_listing_is_scoped(client, seeded):
    r = client.get("/api/v1/tenants", headers=seeded.headers(seeded.it_admin))
    assert [t["name"] for t in r.json()["data"]] == ["Acme Holdings", "Beta Ventures"]

    r = client.get("/api/v1/tenants", headers=seeded.headers(seeded.customer_b))
    assert [t["name"] for t in r.json()["data"]] == ["Beta Ventures"]


def test_only_it_admin_creates_tenants(client, seeded):
    r = client.post("/api/v1/tenants", json={"name": "Gamma Co"}, headers=seeded.headers(seeded.manager))
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Cross-tenant access not permitted"

    r = client.post("/api/v1/tenants", json={"name": "Gamma Co"}, headers=seeded.headers(seeded.it_admin))
    assert r.status_code == 201
    tenant = r.json()["data"]
    assert tenant["slug"] == "gamma-co"
    assert tenant["subscription"] == {"plan": "starter", "status": "active"}

    r = client.post("/api/v1/tenants", json={"name": "Gamma  Co!"}, headers=seeded.headers(seeded.it_admin))
    assert r.status_code == 409


def test_it_admin_can_reactivate_inactive_tenant(client, seeded):
    tid = seeded.tenant_b["id"]
    seeded.store.tenants.update(tid, {"is_active": False})

    r = client.get(f"/api/v1/tenants/{tid}", headers=seeded.headers(seeded.customer_b))
    assert r.status_code == 403

    r = client.put(f"/api/v1/tenants/{tid}", json={"is_active": True}, headers=seeded.headers(seeded.it_admin))
    assert r.status_code == 200
    assert r.json()["data"]["is_active"] is True


def test_manager_cannot_change_subscription(client, seeded):
    tid = seeded.tenant_a["id"]
    r = client.put(
        f"/api/v1/tenants/{tid}",
        json={"name": "Acme Group", "subscription": {"plan": "enterprise"}},
        headers=seeded.headers(seeded.manager),
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["name"] == "Acme Group"
    assert "subscription" not in data

    r = client.put(f"/api/v1/tenants/{tid}", json={"name": "Nope"}, headers=seeded.headers(seeded.customer))
    assert r.status_code == 403


def test_tenant_create_and_update_are_audited(client, seeded):
    admin = seeded.headers(seeded.it_admin)
    tenant = client.post("/api/v1/tenants", json={"name": "Gamma Co"}, headers=admin).json()["data"]

    created = seeded.store.iam_audit_logs.find_one({"action": "tenant.created"})
    assert created["tenant_id"] == tenant["id"]
    assert created["target_id"] == tenant["id"]
    assert created["actor_id"] == seeded.it_admin["id"]
    assert created["summary"] == "Created tenant Gamma Co"

    r = client.put(
        f"/api/v1/tenants/{seeded.tenant_a['id']}", json={"name": "Acme Group"}, headers=seeded.headers(seeded.manager)
    )
    assert r.status_code == 200
    updated = seeded.store.iam_audit_logs.find_one({"action": "tenant.updated"})
    assert updated["actor_id"] == seeded.manager["id"]
    assert updated["before"] == {"name": "Acme Holdings"}
    assert updated["after"] == {"name": "Acme Group"}

    # a manager's billing-only change is dropped, so nothing is recorded
    client.put(
        f"/api/v1/tenants/{seeded.tenant_a['id']}",
        json={"subscription": {"plan": "enterprise"}},
        headers=seeded.headers(seeded.manager),
    )
    assert seeded.store.iam_audit_logs.count({"action": "tenant.updated"}) == 1
