from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from change_platform.core.audit.iam_audit import IamAuditAction, log_iam_action_by
from change_platform.core.audit.sanitize import compute_diff
from change_platform.core.errors import ConflictError, NotFoundError, ValidationError
from change_platform.core.observability.metrics import RULE_EVALUATIONS_TOTAL, RULES_MATCHED_TOTAL
from change_platform.core.rules.engine import RuleEngine, RuleEvaluationResult
from change_platform.core.rules.models import RuleDefinition, RuleUpdate
from change_platform.core.store import DocumentStore

log = logging.getLogger("change.rules")


def load_rule_pack(path: Path) -> List[RuleDefinition]:
    """
    Load rule definitions from YAML. The file holds either a list of rules or
    a mapping with a top-level `rules` list.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    items = raw.get("rules", []) if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise ValueError(f"rule pack {path} must contain a list of rules")
    return [RuleDefinition.model_validate(item) for item in items]


class RuleService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def list(
        self,
        category: Optional[str] = None,
        tag: Optional[str] = None,
        scope: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {}
        if category:
            flt["category"] = category
        if tag:
            flt["tags"] = tag.strip().lower()
        if scope:
            flt["scope"] = scope
        if is_active is not None:
            flt["is_active"] = is_active
        if search:
            pat = re.escape(search.strip())
            flt["$or"] = [{"key": {"$regex": pat}}, {"name": {"$regex": pat}}]
        return self.store.rules.find(flt, sort=[("priority", 1), ("key", 1)])

    def get(self, key: str) -> Dict[str, Any]:
        rule = self.store.rules.find_one({"key": key.strip().lower()})
        if not rule:
            raise NotFoundError("Rule")
        return rule

    def create(
        self,
        definition: RuleDefinition,
        actor: Any = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        if self.store.rules.find_one({"key": definition.key}):
            raise ConflictError(f"Rule with key '{definition.key}' already exists", code="ALREADY_EXISTS")
        body = definition.model_dump(mode="json")
        body["version"] = 1
        body["created_by"] = actor.user_id if actor else None
        body["updated_by"] = body["created_by"]
        rule = self.store.rules.insert(body)
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.RULE_CREATED,
            tenant_id=None,
            target_type="rule",
            target_id=rule["id"],
            target_name=rule["key"],
            summary=f"Created rule {rule['key']}",
            after={"key": rule["key"], "name": rule["name"], "priority": rule["priority"]},
        )
        return rule

    def update(
        self,
        key: str,
        changes: RuleUpdate,
        actor: Any = None,
        meta: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, Any]:
        before = self.get(key)
        patch = changes.model_dump(mode="json", exclude_unset=True)
        merged = {k: v for k, v in before.items() if k in RuleDefinition.model_fields}
        merged.update(patch)
        try:
            definition = RuleDefinition.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid rule",
                validation_errors=[
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"], "code": err["type"]}
                    for err in e.errors()
                ],
            ) from e

        body = definition.model_dump(mode="json")
        body["version"] = int(before.get("version") or 1) + 1
        body["updated_by"] = actor.user_id if actor else None
        after = self.store.rules.update(before["id"], body)

        diff = compute_diff(
            {k: before.get(k) for k in patch},
            {k: after.get(k) for k in patch},
        )
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.RULE_UPDATED,
            tenant_id=None,
            target_type="rule",
            target_id=after["id"],
            target_name=after["key"],
            summary=f"Updated rule {after['key']} to version {after['version']}",
            before=diff["before"],
            after=diff["after"],
        )
        return after

    def delete(self, key: str, actor: Any = None, meta: Optional[Dict[str, Optional[str]]] = None) -> None:
        rule = self.get(key)
        self.store.rules.delete(rule["id"])
        log_iam_action_by(
            self.store,
            actor,
            meta,
            action=IamAuditAction.RULE_DELETED,
            tenant_id=None,
            target_type="rule",
            target_id=rule["id"],
            target_name=rule["key"],
            summary=f"Deleted rule {rule['key']}",
            before={"key": rule["key"], "name": rule["name"], "version": rule.get("version")},
        )

    def import_rules(self, definitions: List[RuleDefinition]) -> Dict[str, int]:
        """Upsert by key. Existing rules whose body is unchanged keep their version."""
        created = updated = unchanged = 0
        for d in definitions:
            body = d.model_dump(mode="json")
            existing = self.store.rules.find_one({"key": d.key})
            if not existing:
                body["version"] = 1
                self.store.rules.insert(body)
                created += 1
                continue
            current = {k: existing.get(k) for k in body}
            if current == body:
                unchanged += 1
                continue
            body["version"] = int(existing.get("version") or 1) + 1
            self.store.rules.update(existing["id"], body)
            updated += 1
        log.info("rule import created=%d updated=%d unchanged=%d", created, updated, unchanged)
        return {"created": created, "updated": updated, "unchanged": unchanged}

    def evaluate(
        self,
        context: Dict[str, Any],
        workflow: Optional[str] = None,
        phase: Optional[str] = None,
        step: Optional[str] = None,
        source: str = "adhoc",
    ) -> RuleEvaluationResult:
        engine = RuleEngine(self.store.rules.find({"is_active": True}))
        result = engine.evaluate(context, workflow=workflow, phase=phase, step=step)
        RULE_EVALUATIONS_TOTAL.labels(source=source).inc()
        RULES_MATCHED_TOTAL.inc(len(result.matched_rules))
        return result

    def explain(self, key: str, context: Dict[str, Any], **target: Any) -> Dict[str, Any]:
        return RuleEngine.explain(self.get(key), context, **target)
