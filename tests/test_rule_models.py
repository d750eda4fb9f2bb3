import pytest
from pydantic import ValidationError

from change_platform.core.rules.models import MAX_GROUP_DEPTH, RuleDefinition


def _rule(**overrides):
    body = {
        "key": "Formation.Test",
        "name": "  Test rule ",
        "tags": ["LLC", "llc", " Filing "],
        "actions": [{"type": "add_step", "target": "file", "reason": "because"}],
    }
    body.update(overrides)
    return body


def test_defaults_and_normalization():
    r = RuleDefinition.model_validate(_rule())
    assert r.key == "formation.test"
    assert r.name == "Test rule"
    assert r.tags == ["llc", "filing"]
    assert r.priority == 100
    assert r.scope.value == "global"
    assert r.conditions.logic.value == "and"
    assert r.conditions.conditions == []


def test_key_format_is_enforced():
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(key="bad key!"))


def test_actions_require_reason_and_at_least_one():
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(actions=[]))
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(actions=[{"type": "add_step", "target": "x"}]))


def test_scope_value_required_for_scoped_rules():
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(scope="state"))
    assert RuleDefinition.model_validate(_rule(scope="state", scope_value="DE")).scope_value == "DE"


def test_effective_window_must_be_ordered():
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(
            _rule(effective_from="2025-01-01T00:00:00Z", effective_until="2024-01-01T00:00:00Z")
        )


def test_nesting_depth_limit():
    group = {"logic": "and", "conditions": [{"field": "x", "operator": "exists"}]}
    for _ in range(MAX_GROUP_DEPTH):
        group = {"logic": "or", "conditions": [group]}
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(conditions=group))


def test_unknown_condition_keys_rejected():
    bad = {"logic": "and", "conditions": [{"field": "x", "operator": "equals", "value": 1, "oops": True}]}
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(conditions=bad))


def test_action_target_is_optional_except_for_fields_and_flags():
    r = RuleDefinition.model_validate(
        _rule(
            actions=[
                {"type": "add_warning", "reason": "heads up"},
                {"type": "require_approval", "value": "legal", "reason": "needs sign-off"},
            ]
        )
    )
    assert [a.target for a in r.actions] == [None, None]

    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(actions=[{"type": "set_field", "value": 1, "reason": "r"}]))
    with pytest.raises(ValidationError):
        RuleDefinition.model_validate(_rule(actions=[{"type": "set_flag", "reason": "r"}]))
