import pytest

from change_platform.core.errors import NotFoundError, TenantAccessError
from change_platform.core.iam.resolver import load_iam_context
from change_platform.core.iam.tenant_access import (
    ALL_TENANTS,
    assert_tenant_access,
    can_access_tenant,
    get_accessible_tenants,
    get_active_tenant,
)


def test_it_admin_reaches_everything(seeded):
    a, b = seeded.tenant_a["id"], seeded.tenant_b["id"]
    assert can_access_tenant(seeded.store, seeded.it_admin["id"], b, "it_admin", None)
    assert get_accessible_tenants(seeded.store, seeded.it_admin["id"], "it_admin", None) == ALL_TENANTS
    assert can_access_tenant(seeded.store, seeded.it_admin["id"], a, "it_admin", None)


def test_manager_and_customer_stay_in_own_tenant(seeded):
    a, b = seeded.tenant_a["id"], seeded.tenant_b["id"]
    assert can_access_tenant(seeded.store, seeded.manager["id"], a, "manager", a)
    assert not can_access_tenant(seeded.store, seeded.manager["id"], b, "manager", a)
    assert get_accessible_tenants(seeded.store, seeded.customer["id"], "customer", a) == [a]
    assert get_accessible_tenants(seeded.store, "x", "customer", None) == []


def test_advisor_needs_active_assignment(seeded):
    store = seeded.store
    a, b = seeded.tenant_a["id"], seeded.tenant_b["id"]
    adv = seeded.advisor["id"]

    assert can_access_tenant(store, adv, a, "advisor", None)
    assert not can_access_tenant(store, adv, b, "advisor", None)
    assert get_accessible_tenants(store, adv, "advisor", None) == [a]

    store.advisor_assignments.insert(
        {"advisor_id": adv, "tenant_id": b, "status": "inactive", "is_active": True}
    )
    assert not can_access_tenant(store, adv, b, "advisor", None)


def test_unknown_primary_role_is_denied(seeded):
    assert not can_access_tenant(seeded.store, "u", seeded.tenant_a["id"], "janitor", seeded.tenant_a["id"])


def test_assert_tenant_access_messages(seeded):
    store = seeded.store
    b = seeded.tenant_b["id"]

    with pytest.raises(TenantAccessError) as e:
        assert_tenant_access(store, load_iam_context(store, seeded.manager["id"]), b)
    assert e.value.message == "Access denied: You can only access your own tenant"

    with pytest.raises(TenantAccessError) as e:
        assert_tenant_access(store, load_iam_context(store, seeded.advisor["id"]), b)
    assert e.value.message == "Access denied: You are not assigned to this tenant"


def test_get_active_tenant(seeded):
    store = seeded.store
    with pytest.raises(NotFoundError) as e:
        get_active_tenant(store, "nope")
    assert e.value.code == "TENANT_NOT_FOUND"

    store.tenants.update(seeded.tenant_b["id"], {"is_active": False})
    with pytest.raises(TenantAccessError):
        get_active_tenant(store, seeded.tenant_b["id"])
    assert get_active_tenant(store, seeded.tenant_b["id"], allow_inactive=True)["slug"] == "beta"
