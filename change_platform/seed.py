"""
Seed a fresh (or existing) data directory:

  python -m change_platform.seed [--data-dir DIR] [--rules-file FILE] [--skip-rules]

Creates the system IAM roles, the demo tenant, the platform administrator
(CHANGE_SEED_ADMIN_EMAIL / CHANGE_SEED_ADMIN_PASSWORD) and imports the rule
pack. Running it again only refreshes what already exists.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Dict, Optional

from change_platform.core.config import configure_logging, get_settings
from change_platform.core.iam.permissions import PrimaryRole, SystemRole, UserRole
from change_platform.core.iam.roles import ensure_system_roles
from change_platform.core.iam.users import new_user_document, normalize_email
from change_platform.core.rules.service import RuleService, load_rule_pack
from change_platform.core.store import DocumentStore, get_document_store
from change_platform.core.tenants import TenantService

DEMO_TENANT_NAME = "Demo Business Solutions"
DEMO_TENANT_SLUG = "demo-business"
DEMO_TENANT_SETTINGS = {
    "timezone": "America/New_York",
    "locale": "en-US",
    "features": ["onboarding", "enrollment", "formation", "documents", "tasks"],
}


def seed_tenant(store: DocumentStore) -> Dict[str, Any]:
    existing = store.tenants.find_one({"slug": DEMO_TENANT_SLUG})
    if existing:
        return existing
    return TenantService(store).create(name=DEMO_TENANT_NAME, slug=DEMO_TENANT_SLUG, settings=DEMO_TENANT_SETTINGS)


def seed_admin(store: DocumentStore, email: str, password: str, global_admin_role_id: str) -> Dict[str, Any]:
    existing = store.users.find_one({"email": normalize_email(email)})
    if existing:
        return store.users.add_to_set(existing["id"], "iam_roles", [global_admin_role_id])
    doc = new_user_document(
        email=email,
        password=password,
        first_name="System",
        last_name="Admin",
        tenant_id=None,
        role=UserRole.SYSTEM_ADMIN.value,
        primary_role=PrimaryRole.IT_ADMIN.value,
    )
    doc["iam_roles"] = [global_admin_role_id]
    return store.users.insert(doc)


def seed(
    data_dir: Optional[Path] = None,
    rules_file: Optional[Path] = None,
    skip_rules: bool = False,
) -> Dict[str, Any]:
    settings = get_settings()
    store = get_document_store(data_dir or settings.data_dir)

    roles = ensure_system_roles(store)
    global_admin = next(r for r in roles if r["system_role"] == SystemRole.GLOBAL_ADMIN.value)
    tenant = seed_tenant(store)
    admin = seed_admin(store, settings.seed_admin_email, settings.seed_admin_password, global_admin["id"])

    summary: Dict[str, Any] = {
        "system_roles": len(roles),
        "tenant_id": tenant["id"],
        "admin_email": admin["email"],
        "rules": None,
    }
    if not skip_rules:
        definitions = load_rule_pack(rules_file or settings.rules_file)
        summary["rules"] = RuleService(store).import_rules(definitions)
    return summary


def main() -> int:
    ap = argparse.ArgumentParser(description="Seed the CHANGE platform data directory")
    ap.add_argument("--data-dir", default=None, help="Document store root (default CHANGE_DATA_DIR)")
    ap.add_argument("--rules-file", default=None, help="YAML rule pack (default CHANGE_RULES_FILE)")
    ap.add_argument("--skip-rules", action="store_true", help="Do not import the rule pack")
    args = ap.parse_args()

    configure_logging()
    summary = seed(
        data_dir=Path(args.data_dir) if args.data_dir else None,
        rules_file=Path(args.rules_file) if args.rules_file else None,
        skip_rules=args.skip_rules,
    )
    print(f"System roles: {summary['system_roles']}")
    print(f"Tenant: {DEMO_TENANT_SLUG} ({summary['tenant_id']})")
    print(f"Admin: {summary['admin_email']}")
    if summary["rules"] is not None:
        r = summary["rules"]
        print(f"Rules: created={r['created']} updated={r['updated']} unchanged={r['unchanged']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
