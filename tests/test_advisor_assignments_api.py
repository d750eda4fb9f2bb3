URL = "/api/v1/admin/advisor-assignments"


def test_only_cross_tenant_users_manage_assignments(client, seeded):
    for user in (seeded.manager, seeded.advisor, seeded.customer):
        r = client.get(URL, headers=seeded.headers(user))
        assert r.status_code == 403
        assert r.json()["error"]["message"] == "Cross-tenant access not permitted"


def test_list_advisors_and_tenants(client, seeded):
    headers = seeded.headers(seeded.it_admin)

    r = client.get("/api/v1/admin/advisors", headers=headers)
    assert [a["email"] for a in r.json()["data"]] == ["advisor@change.test"]

    r = client.get("/api/v1/admin/tenants-list", headers=headers)
    assert [t["slug"] for t in r.json()["data"]] == ["acme", "beta"]

    r = client.get(URL, headers=headers)
    (assignment,) = r.json()["data"]
    assert assignment["advisor_email"] == "advisor@change.test"
    assert assignment["tenant_name"] == "Acme Holdings"


def test_assignment_lifecycle_controls_tenant_access(client, seeded):
    admin = seeded.headers(seeded.it_admin)
    advisor = seeded.headers(seeded.advisor)
    beta = seeded.tenant_b["id"]
    dashboard = f"/api/v1/app/tenants/{beta}/business-profile"

    r = client.get(dashboard, headers=advisor)
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Access denied: You are not assigned to this tenant"

    r = client.post(URL, json={"advisor_id": seeded.advisor["id"], "tenant_id": beta, "notes": "Q3"}, headers=admin)
    assert r.status_code == 201
    assignment_id = r.json()["data"]["id"]

    r = client.post(URL, json={"advisor_id": seeded.advisor["id"], "tenant_id": beta}, headers=admin)
    assert r.status_code == 409

    # access granted, the tenant simply has no profile yet
    assert client.get(dashboard, headers=advisor).status_code == 404

    r = client.put(f"{URL}/{assignment_id}", json={"status": "inactive"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "inactive"
    assert client.get(dashboard, headers=advisor).status_code == 403

    r = client.delete(f"{URL}/{assignment_id}", headers=admin)
    assert r.json()["data"]["message"] == "Advisor assignment removed successfully"
    assert client.delete(f"{URL}/{assignment_id}", headers=admin).status_code == 404

    actions = seeded.store.iam_audit_logs.distinct("action", {"target_type": "advisor_assignment"})
    assert sorted(actions) == [
        "advisor_assignment.created",
        "advisor_assignment.removed",
        "advisor_assignment.updated",
    ]


def test_only_advisors_can_be_assigned(client, seeded):
    r = client.post(
        URL,
        json={"advisor_id": seeded.customer["id"], "tenant_id": seeded.tenant_b["id"]},
        headers=seeded.headers(seeded.it_admin),
    )
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "User is not an advisor"

    r = client.put(f"{URL}/missing", json={"status": "paused"}, headers=seeded.headers(seeded.it_admin))
    assert r.status_code == 400
