"""
Declarative rule evaluation.

A rule is a condition tree plus a list of actions. Evaluating a set of rules
against a business context yields the workflow requirements (steps,
documents, tasks, approvals, ...) where every item remembers which rule
produced it and why.

Rules are evaluated in ascending `priority` (then key). Within a rule, actions
run in ascending action priority. For single-valued outputs (`set_field`,
`set_flag`) the first writer wins; later differing values are reported as
conflicts rather than silently overwriting. List outputs keep one item per
target; warnings and untargeted items keep one per (target, value, reason).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel

from change_platform.core.rules.models import ActionType, LogicOperator, RuleScope
from change_platform.core.rules.operators import apply_operator
from change_platform.core.store.documents import get_path, is_missing

log = logging.getLogger("change.rules")

RuleLike = Union[Dict[str, Any], BaseModel]

# scope -> context key it is matched against
_SCOPE_CONTEXT_KEY = {
    RuleScope.ARCHETYPE.value: "archetype",
    RuleScope.STATE.value: "state",
    RuleScope.ENTITY_TYPE.value: "entity_type",
    RuleScope.WORKFLOW.value: "workflow",
}

_LIST_OUTPUTS = {
    ActionType.ADD_STEP.value: "steps",
    ActionType.REMOVE_STEP.value: "removed_steps",
    ActionType.SKIP_STEP.value: "skipped_steps",
    ActionType.REQUIRE_ARTIFACT.value: "required_artifacts",
    ActionType.ADD_TASK.value: "tasks",
    ActionType.ADD_DOCUMENT.value: "documents",
    ActionType.REQUIRE_APPROVAL.value: "approvals",
    ActionType.ADD_WARNING.value: "warnings",
}

_MAP_OUTPUTS = {
    ActionType.SET_FIELD.value: "fields",
    ActionType.SET_FLAG.value: "flags",
}


def _list_key(a_type: str, item: Dict[str, Any]) -> Any:
    # warnings and untargeted items are distinct per message
    if a_type == ActionType.ADD_WARNING.value or item["target"] is None:
        return (item["target"], repr(item["value"]), item["reason"])
    return item["target"]


def _as_dict(rule: RuleLike) -> Dict[str, Any]:
    if isinstance(rule, BaseModel):
        return rule.model_dump(mode="json")
    return rule


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.casefold() == b.casefold()
    return a == b


@dataclass
class RuleEvaluationResult:
    steps: List[Dict[str, Any]] = field(default_factory=list)
    removed_steps: List[Dict[str, Any]] = field(default_factory=list)
    skipped_steps: List[Dict[str, Any]] = field(default_factory=list)
    required_artifacts: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    documents: List[Dict[str, Any]] = field(default_factory=list)
    approvals: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    fields: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    flags: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    matched_rules: List[Dict[str, Any]] = field(default_factory=list)
    evaluated_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": self.steps,
            "removed_steps": self.removed_steps,
            "skipped_steps": self.skipped_steps,
            "required_artifacts": self.required_artifacts,
            "tasks": self.tasks,
            "documents": self.documents,
            "approvals": self.approvals,
            "warnings": self.warnings,
            "fields": self.fields,
            "flags": self.flags,
            "conflicts": self.conflicts,
            "matched_rules": self.matched_rules,
            "evaluated_count": self.evaluated_count,
        }


def evaluate_condition(condition: Dict[str, Any], context: Dict[str, Any]) -> bool:
    if "logic" in condition:
        return evaluate_group(condition, context)
    actual = get_path(context, condition["field"])
    return apply_operator(
        condition["operator"],
        actual,
        condition.get("value"),
        bool(condition.get("case_sensitive", False)),
    )


def evaluate_group(group: Dict[str, Any], context: Dict[str, Any]) -> bool:
    # Empty AND is vacuously true, empty OR is false.
    children = group.get("conditions") or []
    if group.get("logic", LogicOperator.AND.value) == LogicOperator.OR.value:
        return any(evaluate_condition(c, context) for c in children)
    return all(evaluate_condition(c, context) for c in children)


def explain_condition(condition: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    """Evaluate without short-circuiting and return the full trace tree."""
    if "logic" in condition:
        children = [explain_condition(c, context) for c in condition.get("conditions") or []]
        results = [c["result"] for c in children]
        if condition.get("logic") == LogicOperator.OR.value:
            ok = any(results)
        else:
            ok = all(results)
        return {"logic": condition.get("logic"), "result": ok, "conditions": children}

    actual = get_path(context, condition["field"])
    ok = apply_operator(
        condition["operator"],
        actual,
        condition.get("value"),
        bool(condition.get("case_sensitive", False)),
    )
    return {
        "field": condition["field"],
        "operator": condition["operator"],
        "expected": condition.get("value"),
        "actual": None if is_missing(actual) else actual,
        "present": not is_missing(actual),
        "result": ok,
    }


class RuleEngine:
    def __init__(self, rules: Iterable[RuleLike]):
        docs = [_as_dict(r) for r in rules]
        self.rules = sorted(docs, key=lambda r: (int(r.get("priority", 100)), r.get("key", "")))

    @staticmethod
    def is_applicable(
        rule: Dict[str, Any],
        context: Dict[str, Any],
        workflow: Optional[str] = None,
        phase: Optional[str] = None,
        step: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        if not rule.get("is_active", True):
            return False

        ts = now or datetime.now(timezone.utc)
        start = _parse_ts(rule.get("effective_from"))
        end = _parse_ts(rule.get("effective_until"))
        if start and ts < start:
            return False
        if end and ts > end:
            return False

        scope = rule.get("scope") or RuleScope.GLOBAL.value
        if scope != RuleScope.GLOBAL.value:
            ctx_key = _SCOPE_CONTEXT_KEY.get(scope)
            if ctx_key is None:
                return False
            have = workflow if (scope == RuleScope.WORKFLOW.value and workflow) else context.get(ctx_key)
            if have is None or not _same(have, rule.get("scope_value")):
                return False

        # applicability lists only narrow when the caller names a target
        for requested, allowed in (
            (workflow, rule.get("applicable_workflows")),
            (phase, rule.get("applicable_phases")),
            (step, rule.get("applicable_steps")),
        ):
            if requested and allowed and not any(_same(requested, a) for a in allowed):
                return False
        return True

    def evaluate(
        self,
        context: Dict[str, Any],
        workflow: Optional[str] = None,
        phase: Optional[str] = None,
        step: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RuleEvaluationResult:
        result = RuleEvaluationResult()
        for rule in self.rules:
            if not self.is_applicable(rule, context, workflow, phase, step, now):
                continue
            result.evaluated_count += 1
            if not evaluate_group(rule.get("conditions") or {"logic": "and", "conditions": []}, context):
                continue

            result.matched_rules.append(
                {
                    "key": rule.get("key"),
                    "name": rule.get("name"),
                    "priority": rule.get("priority", 100),
                    "version": rule.get("version", 1),
                }
            )
            actions = sorted(rule.get("actions") or [], key=lambda a: int(a.get("priority", 100)))
            for action in actions:
                self._apply(result, rule, action)

        removed = {s["target"] for s in result.removed_steps if s["target"] is not None}
        result.steps = [s for s in result.steps if s["target"] not in removed]

        log.debug(
            "rules evaluated=%d matched=%d conflicts=%d",
            result.evaluated_count,
            len(result.matched_rules),
            len(result.conflicts),
        )
        return result

    @staticmethod
    def _apply(result: RuleEvaluationResult, rule: Dict[str, Any], action: Dict[str, Any]) -> None:
        a_type = action.get("type")
        item = {
            "target": action.get("target"),
            "value": action.get("value"),
            "rule_key": rule.get("key"),
            "rule_name": rule.get("name"),
            "reason": action.get("reason"),
        }

        if a_type in _LIST_OUTPUTS:
            bucket = getattr(result, _LIST_OUTPUTS[a_type])
            key = _list_key(a_type, item)
            if not any(_list_key(a_type, existing) == key for existing in bucket):
                bucket.append(item)
            return

        if a_type in _MAP_OUTPUTS:
            bucket = getattr(result, _MAP_OUTPUTS[a_type])
            if a_type == ActionType.SET_FLAG.value and item["value"] is None:
                item["value"] = True
            target = item["target"]
            kept = bucket.get(target)
            if kept is None:
                bucket[target] = {k: v for k, v in item.items() if k != "target"}
            elif kept["value"] != item["value"]:
                result.conflicts.append(
                    {
                        "type": a_type,
                        "target": target,
                        "kept_value": kept["value"],
                        "kept_rule": kept["rule_key"],
                        "ignored_value": item["value"],
                        "ignored_rule": item["rule_key"],
                    }
                )
            return

        raise ValueError(f"Unknown action type: {a_type}")

    @staticmethod
    def explain(rule: RuleLike, context: Dict[str, Any], **target: Any) -> Dict[str, Any]:
        doc = _as_dict(rule)
        trace = explain_condition(doc.get("conditions") or {"logic": "and", "conditions": []}, context)
        return {
            "key": doc.get("key"),
            "applicable": RuleEngine.is_applicable(doc, context, **target),
            "matched": trace["result"],
            "trace": trace,
        }
