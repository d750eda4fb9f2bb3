from .engine import RuleEngine, RuleEvaluationResult
from .models import ActionType, ConditionOperator, RuleAction, RuleCondition, RuleConditionGroup, RuleDefinition, RuleScope

__all__ = [
    "ActionType",
    "ConditionOperator",
    "RuleAction",
    "RuleCondition",
    "RuleConditionGroup",
    "RuleDefinition",
    "RuleEngine",
    "RuleEvaluationResult",
    "RuleScope",
]
