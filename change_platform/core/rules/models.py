from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_GROUP_DEPTH = 10
DEFAULT_RULE_PRIORITY = 100

_KEY_RE = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class LogicOperator(str, Enum):
    AND = "and"
    OR = "or"


class ActionType(str, Enum):
    ADD_STEP = "add_step"
    REMOVE_STEP = "remove_step"
    REQUIRE_ARTIFACT = "require_artifact"
    ADD_TASK = "add_task"
    SET_FIELD = "set_field"
    REQUIRE_APPROVAL = "require_approval"
    ADD_DOCUMENT = "add_document"
    SET_FLAG = "set_flag"
    ADD_WARNING = "add_warning"
    SKIP_STEP = "skip_step"


class RuleScope(str, Enum):
    GLOBAL = "global"
    ARCHETYPE = "archetype"
    STATE = "state"
    ENTITY_TYPE = "entity_type"
    WORKFLOW = "workflow"


class RuleCondition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any = None
    case_sensitive: bool = False


class RuleConditionGroup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    logic: LogicOperator
    conditions: List[Union[RuleCondition, "RuleConditionGroup"]] = Field(default_factory=list)


RuleConditionGroup.model_rebuild()


def group_depth(group: RuleConditionGroup) -> int:
    nested = [group_depth(c) for c in group.conditions if isinstance(c, RuleConditionGroup)]
    return 1 + (max(nested) if nested else 0)


class RuleAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ActionType
    target: Optional[str] = Field(None, min_length=1)
    value: Any = None
    reason: str = Field(..., min_length=1, description="Shown to users to explain the requirement")
    priority: int = DEFAULT_RULE_PRIORITY

    @model_validator(mode="after")
    def _target_required(self) -> "RuleAction":
        # fields and flags are keyed by target
        if self.target is None and self.type in (ActionType.SET_FIELD, ActionType.SET_FLAG):
            raise ValueError(f"action '{self.type.value}' requires a target")
        return self


def _empty_group() -> RuleConditionGroup:
    return RuleConditionGroup(logic=LogicOperator.AND, conditions=[])


def _normalize_tags(tags: Optional[List[str]]) -> List[str]:
    out: List[str] = []
    for t in tags or []:
        v = str(t).strip().lower()
        if v and v not in out:
            out.append(v)
    return out


class RuleDefinition(BaseModel):
    """A rule as submitted by an administrator or loaded from a rule pack."""

    key: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    category: str = "general"
    tags: List[str] = Field(default_factory=list)
    conditions: RuleConditionGroup = Field(default_factory=_empty_group)
    actions: List[RuleAction] = Field(..., min_length=1)
    priority: int = DEFAULT_RULE_PRIORITY
    scope: RuleScope = RuleScope.GLOBAL
    scope_value: Optional[str] = None
    applicable_workflows: List[str] = Field(default_factory=list)
    applicable_phases: List[str] = Field(default_factory=list)
    applicable_steps: List[str] = Field(default_factory=list)
    is_active: bool = True
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None

    @field_validator("key")
    @classmethod
    def _key_format(cls, v: str) -> str:
        k = v.strip().lower()
        if not _KEY_RE.match(k):
            raise ValueError("key may only contain lowercase letters, digits, '_', '-' and '.'")
        return k

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("tags")
    @classmethod
    def _lower_tags(cls, v: List[str]) -> List[str]:
        return _normalize_tags(v)

    @model_validator(mode="after")
    def _check_shape(self) -> "RuleDefinition":
        if group_depth(self.conditions) > MAX_GROUP_DEPTH:
            raise ValueError(f"condition groups may be nested at most {MAX_GROUP_DEPTH} levels deep")
        if self.scope != RuleScope.GLOBAL and not (self.scope_value or "").strip():
            raise ValueError(f"scope_value is required for scope '{self.scope.value}'")
        if self.effective_from and self.effective_until and self.effective_until <= self.effective_from:
            raise ValueError("effective_until must be after effective_from")
        return self


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    conditions: Optional[RuleConditionGroup] = None
    actions: Optional[List[RuleAction]] = Field(None, min_length=1)
    priority: Optional[int] = None
    scope: Optional[RuleScope] = None
    scope_value: Optional[str] = None
    applicable_workflows: Optional[List[str]] = None
    applicable_phases: Optional[List[str]] = None
    applicable_steps: Optional[List[str]] = None
    is_active: Optional[bool] = None
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None
