from datetime import datetime, timezone
from pathlib import Path

from change_platform.core.business import build_rule_context
from change_platform.core.config import DEFAULT_RULES_FILE
from change_platform.core.rules.engine import RuleEngine, evaluate_group, explain_condition
from change_platform.core.rules.service import load_rule_pack


def rule(key, actions, conditions=None, **extra):
    body = {
        "key": key,
        "name": key.title(),
        "conditions": conditions or {"logic": "and", "conditions": []},
        "actions": actions,
        "priority": 100,
        "scope": "global",
        "is_active": True,
    }
    body.update(extra)
    return body


def act(type_, target, value=None, priority=100):
    return {"type": type_, "target": target, "value": value, "reason": f"{type_} {target}", "priority": priority}


def test_empty_groups():
    assert evaluate_group({"logic": "and", "conditions": []}, {}) is True
    assert evaluate_group({"logic": "or", "conditions": []}, {}) is False


def test_nested_groups():
    group = {
        "logic": "and",
        "conditions": [
            {"field": "entity_type", "operator": "equals", "value": "llc"},
            {
                "logic": "or",
                "conditions": [
                    {"field": "state", "operator": "equals", "value": "DE"},
                    {"field": "employees", "operator": "greater_than", "value": 5},
                ],
            },
        ],
    }
    assert evaluate_group(group, {"entity_type": "LLC", "state": "CA", "employees": 10})
    assert not evaluate_group(group, {"entity_type": "LLC", "state": "CA", "employees": 1})
    assert not evaluate_group(group, {"entity_type": "corporation", "state": "DE"})


def test_priority_order_and_first_writer_wins():
    rules = [
        rule("late", [act("set_field", "filing_speed", "standard")], priority=50),
        rule("early", [act("set_field", "filing_speed", "expedited")], priority=10),
        rule("same", [act("set_field", "filing_speed", "expedited")], priority=60),
    ]
    result = RuleEngine(rules).evaluate({})

    assert [m["key"] for m in result.matched_rules] == ["early", "late", "same"]
    assert result.fields["filing_speed"]["value"] == "expedited"
    assert result.fields["filing_speed"]["rule_key"] == "early"
    assert len(result.conflicts) == 1
    conflict = result.conflicts[0]
    assert conflict["kept_rule"] == "early"
    assert conflict["ignored_rule"] == "late"
    assert conflict["ignored_value"] == "standard"


def test_steps_dedupe_and_removal():
    rules = [
        rule("a", [act("add_step", "name_search", priority=2), act("add_step", "file_articles", priority=1)]),
        rule("b", [act("add_step", "file_articles"), act("add_step", "obtain_ein")]),
        rule("c", [act("remove_step", "name_search")]),
    ]
    result = RuleEngine(rules).evaluate({})

    assert [s["target"] for s in result.steps] == ["file_articles", "obtain_ein"]
    assert result.steps[0]["rule_key"] == "a"
    assert result.steps[0]["reason"] == "add_step file_articles"
    assert [s["target"] for s in result.removed_steps] == ["name_search"]


def test_set_flag_defaults_to_true():
    result = RuleEngine([rule("f", [act("set_flag", "needs_review")])]).evaluate({})
    assert result.flags["needs_review"]["value"] is True


def test_applicability_window_scope_and_targets():
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)
    rules = [
        rule("inactive", [act("add_task", "t1")], is_active=False),
        rule("future", [act("add_task", "t2")], effective_from="2026-01-01T00:00:00Z"),
        rule("expired", [act("add_task", "t3")], effective_until="2025-01-01T00:00:00Z"),
        rule("delaware", [act("add_task", "t4")], scope="state", scope_value="de"),
        rule("onboarding_only", [act("add_task", "t5")], applicable_workflows=["onboarding"]),
        rule("always", [act("add_task", "t6")]),
    ]
    engine = RuleEngine(rules)

    no_target = engine.evaluate({"state": "DE"}, now=now)
    assert sorted(t["target"] for t in no_target.tasks) == ["t4", "t5", "t6"]
    assert no_target.evaluated_count == 3

    formation = engine.evaluate({"state": "CA"}, workflow="formation", now=now)
    assert [t["target"] for t in formation.tasks] == ["t6"]


def test_workflow_scope_uses_requested_workflow():
    engine = RuleEngine([rule("wf", [act("add_task", "x")], scope="workflow", scope_value="formation")])
    assert engine.evaluate({}, workflow="formation").tasks
    assert not engine.evaluate({}).tasks


def test_explain_trace():
    r = rule(
        "explained",
        [act("add_step", "x")],
        conditions={
            "logic": "or",
            "conditions": [
                {"field": "state", "operator": "equals", "value": "DE"},
                {"field": "owners", "operator": "exists"},
            ],
        },
    )
    out = RuleEngine.explain(r, {"state": "de"})
    assert out["key"] == "explained"
    assert out["applicable"] is True
    assert out["matched"] is True

    first, second = out["trace"]["conditions"]
    assert first == {
        "field": "state",
        "operator": "equals",
        "expected": "DE",
        "actual": "de",
        "present": True,
        "result": True,
    }
    assert second["present"] is False
    assert second["result"] is False


def test_explain_condition_does_not_short_circuit():
    trace = explain_condition(
        {"logic": "and", "conditions": [{"field": "a", "operator": "exists"}, {"field": "b", "operator": "exists"}]},
        {},
    )
    assert trace["result"] is False
    assert len(trace["conditions"]) == 2


def test_default_rule_pack_for_new_delaware_llc():
    rules = load_rule_pack(Path(DEFAULT_RULES_FILE))
    assert len({r.key for r in rules}) == len(rules)

    ctx = build_rule_context(
        {"business_type": "llc", "formation_state": "de", "is_existing_business": False, "has_ein": False}
    )
    result = RuleEngine(rules).evaluate(ctx)

    steps = [s["target"] for s in result.steps]
    assert steps == ["file_articles_of_organization", "obtain_ein"]
    assert {d["target"] for d in result.documents} == {"articles_of_organization", "operating_agreement"}
    assert {t["target"] for t in result.tasks} == {"appoint_registered_agent", "calendar_delaware_franchise_tax"}
    assert result.flags["annual_report_required"]["value"] is True
    assert not result.warnings


def test_default_rule_pack_for_existing_sole_proprietor():
    rules = load_rule_pack(Path(DEFAULT_RULES_FILE))
    ctx = build_rule_context(
        {"business_type": "sole_proprietorship", "formation_state": "CA", "is_existing_business": True, "has_ein": True}
    )
    result = RuleEngine(rules).evaluate(ctx)

    assert result.steps == []
    assert [s["target"] for s in result.skipped_steps] == ["name_availability_search"]


def test_warnings_dedupe_on_target_value_and_reason():
    def warn(target, reason, value=None):
        return {"type": "add_warning", "target": target, "value": value, "reason": reason}

    rules = [
        rule("a", [warn(None, "Registered agent required"), warn(None, "Annual report due")]),
        rule("b", [warn(None, "Registered agent required"), warn("ein", "Annual report due")]),
        rule("c", [warn("ein", "Annual report due"), warn("ein", "Annual report due", value="high")]),
    ]
    result = RuleEngine(rules).evaluate({})

    assert [(w["target"], w["value"], w["reason"]) for w in result.warnings] == [
        (None, None, "Registered agent required"),
        (None, None, "Annual report due"),
        ("ein", None, "Annual report due"),
        ("ein", "high", "Annual report due"),
    ]
    assert result.warnings[0]["rule_key"] == "a"


def test_untargeted_approvals_are_kept_and_do_not_remove_steps():
    rules = [
        rule(
            "a",
            [
                act("add_step", "file_articles"),
                {"type": "require_approval", "value": "legal", "reason": "Legal review"},
                {"type": "require_approval", "value": "finance", "reason": "Finance review"},
                {"type": "remove_step", "reason": "no-op"},
            ],
        ),
    ]
    result = RuleEngine(rules).evaluate({})

    assert [a["value"] for a in result.approvals] == ["legal", "finance"]
    assert [s["target"] for s in result.steps] == ["file_articles"]
