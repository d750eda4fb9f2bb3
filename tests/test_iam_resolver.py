import pytest

from change_platform.core.errors import ForbiddenError, UnauthorizedError
from change_platform.core.iam.permissions import IamPermission, OperationalPermission
from change_platform.core.iam.resolver import get_user_permissions, is_cross_tenant, load_iam_context


def _role(store, name, perms, tenant_id=None, active=True):
    return store.iam_roles.insert(
        {"tenant_id": tenant_id, "name": name, "permissions": perms, "is_active": active, "is_system": False}
    )


def test_customer_context_has_primary_and_legacy_permissions(seeded):
    ctx = load_iam_context(seeded.store, seeded.customer["id"])

    assert ctx.primary_role == "customer"
    assert ctx.legacy_role == "client_owner"
    assert ctx.tenant_id == seeded.tenant_a["id"]
    assert ctx.has_permission(OperationalPermission.BUSINESS_WRITE)
    assert ctx.has_permission(IamPermission.ACCESS_REQUEST_CREATE)
    assert not ctx.has_permission(IamPermission.USER_READ)
    assert ctx.roles == ()


def test_union_of_direct_and_group_roles(seeded):
    store = seeded.store
    direct = _role(store, "Readers", [IamPermission.USER_READ], seeded.tenant_a["id"])
    via_group = _role(store, "Auditors", [IamPermission.AUDIT_READ, IamPermission.USER_READ])
    inactive = _role(store, "Old", [IamPermission.USER_DELETE], active=False)

    group = store.groups.insert(
        {
            "tenant_id": seeded.tenant_a["id"],
            "name": "Audit",
            "members": [seeded.customer["id"]],
            "roles": [via_group["id"], direct["id"], inactive["id"]],
            "is_active": True,
        }
    )
    store.users.update(
        seeded.customer["id"], {"iam_roles": [direct["id"], inactive["id"]], "groups": [group["id"]]}
    )

    ctx = load_iam_context(store, seeded.customer["id"])
    assert ctx.has_all_permissions([IamPermission.USER_READ, IamPermission.AUDIT_READ])
    assert not ctx.has_permission(IamPermission.USER_DELETE)

    ids = [r["id"] for r in ctx.role_summaries()]
    assert ids == [direct["id"], via_group["id"]]


def test_inactive_group_contributes_nothing(seeded):
    store = seeded.store
    role = _role(store, "Exporters", [IamPermission.AUDIT_EXPORT])
    group = store.groups.insert(
        {"tenant_id": seeded.tenant_a["id"], "name": "Gone", "roles": [role["id"]], "is_active": False}
    )
    store.users.update(seeded.customer["id"], {"groups": [group["id"]]})

    assert not load_iam_context(store, seeded.customer["id"]).has_permission(IamPermission.AUDIT_EXPORT)
    assert IamPermission.AUDIT_EXPORT not in get_user_permissions(store, seeded.customer["id"])


def test_locked_and_deactivated_users(seeded):
    store = seeded.store
    store.users.update(seeded.customer["id"], {"locked_at": "2024-01-01T00:00:00Z", "lock_reason": None})
    with pytest.raises(ForbiddenError) as e:
        load_iam_context(store, seeded.customer["id"])
    assert e.value.message == "Account is locked: Contact administrator"

    store.users.update(seeded.customer_b["id"], {"is_active": False})
    with pytest.raises(UnauthorizedError):
        load_iam_context(store, seeded.customer_b["id"])

    with pytest.raises(UnauthorizedError):
        load_iam_context(store, "no-such-user")


def test_get_user_permissions_skips_primary_role(seeded):
    perms = get_user_permissions(seeded.store, seeded.customer["id"])
    assert perms == {IamPermission.ACCESS_REQUEST_CREATE}
    assert get_user_permissions(seeded.store, "missing") == set()
    assert IamPermission.ROLE_ASSIGN in get_user_permissions(seeded.store, seeded.manager["id"])


def test_cross_tenant_flag(seeded):
    assert is_cross_tenant(load_iam_context(seeded.store, seeded.it_admin["id"]))
    assert not is_cross_tenant(load_iam_context(seeded.store, seeded.manager["id"]))
