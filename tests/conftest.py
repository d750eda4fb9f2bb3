from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from change_platform.api.main import app
from change_platform.core.auth.tokens import TokenPayload, issue_tokens
from change_platform.core.iam.permissions import UserRole
from change_platform.core.iam.roles import ensure_system_roles
from change_platform.core.iam.tenant_access import ASSIGNMENT_ACTIVE
from change_platform.core.iam.users import new_user_document
from change_platform.core.store import DocumentStore, get_document_store

PASSWORD = "Passw0rd!long"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch):
    """Every test gets its own data dir and HTTP audit file."""
    monkeypatch.setenv("CHANGE_ENV", "test")
    monkeypatch.setenv("CHANGE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CHANGE_AUDIT_PATH", str(tmp_path / "audit.log"))
    monkeypatch.setenv("CHANGE_BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("CHANGE_MAX_FAILED_LOGINS", "3")
    yield


@pytest.fixture()
def store(tmp_path: Path) -> DocumentStore:
    return get_document_store(tmp_path / "data")


@dataclass
class Seeded:
    store: DocumentStore
    tenant_a: dict
    tenant_b: dict
    it_admin: dict
    manager: dict
    advisor: dict
    customer: dict
    customer_b: dict

    def token(self, user: dict) -> str:
        tokens = issue_tokens(
            TokenPayload(user_id=user["id"], email=user["email"], role=user["role"], tenant_id=user.get("tenant_id"))
        )
        return tokens["access_token"]

    def headers(self, user: dict) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token(user)}", "X-Forwarded-For": "1.2.3.4"}


def _user(store: DocumentStore, email: str, role: UserRole, tenant_id, first: str = "Test") -> dict:
    doc = new_user_document(
        email=email,
        password=PASSWORD,
        first_name=first,
        last_name="User",
        tenant_id=tenant_id,
        role=role.value,
    )
    return store.users.insert(doc)


@pytest.fixture()
def seeded(store: DocumentStore) -> Seeded:
    ensure_system_roles(store)
    tenant_a = store.tenants.insert({"name": "Acme Holdings", "slug": "acme", "is_active": True, "settings": {}})
    tenant_b = store.tenants.insert({"name": "Beta Ventures", "slug": "beta", "is_active": True, "settings": {}})

    it_admin = _user(store, "admin@change.test", UserRole.SYSTEM_ADMIN, None, "Ada")
    manager = _user(store, "manager@acme.test", UserRole.PROGRAM_ADMIN, tenant_a["id"], "Mona")
    advisor = _user(store, "advisor@change.test", UserRole.ADVISOR, None, "Avi")
    customer = _user(store, "owner@acme.test", UserRole.CLIENT_OWNER, tenant_a["id"], "Cora")
    customer_b = _user(store, "owner@beta.test", UserRole.CLIENT_OWNER, tenant_b["id"], "Bo")

    store.advisor_assignments.insert(
        {
            "advisor_id": advisor["id"],
            "tenant_id": tenant_a["id"],
            "status": ASSIGNMENT_ACTIVE,
            "is_active": True,
            "notes": "",
        }
    )
    return Seeded(store, tenant_a, tenant_b, it_admin, manager, advisor, customer, customer_b)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def tenant_auditor_role(seeded: Seeded) -> dict:
    """A tenant-owned role a manager is allowed to hand out."""
    return seeded.store.iam_roles.insert(
        {
            "tenant_id": seeded.tenant_a["id"],
            "name": "Tenant Auditors",
            "description": "",
            "permissions": ["iam:users:read", "iam:roles:read", "iam:audit:read", "iam:audit:export"],
            "is_active": True,
            "is_system": False,
            "system_role": None,
        }
    )
