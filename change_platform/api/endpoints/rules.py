from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_store, require_operational_permission
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.business import build_rule_context
from change_platform.core.iam.permissions import OperationalPermission
from change_platform.core.iam.resolver import IamContext
from change_platform.core.rules.models import RuleDefinition, RuleUpdate
from change_platform.core.rules.service import RuleService
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/admin/rules", tags=["admin-rules"])

_read = require_operational_permission(OperationalPermission.RULES_READ)
_write = require_operational_permission(OperationalPermission.RULES_WRITE)


class EvaluateRequest(BaseModel):
    """Either a raw context or a business profile to derive one from."""

    context: Dict[str, Any] = Field(default_factory=dict)
    business_profile: Optional[Dict[str, Any]] = None
    workflow: Optional[str] = None
    phase: Optional[str] = None
    step: Optional[str] = None


class ExplainRequest(BaseModel):
    context: Dict[str, Any] = Field(default_factory=dict)
    workflow: Optional[str] = None
    phase: Optional[str] = None
    step: Optional[str] = None


@router.get("", dependencies=[Depends(_read)])
def list_rules(
    category: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    scope: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RuleService(store).list(category=category, tag=tag, scope=scope, is_active=is_active, search=search))


@router.post("", status_code=201)
def create_rule(
    req: RuleDefinition,
    request: Request,
    ctx: IamContext = Depends(_write),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RuleService(store).create(req, actor=ctx, meta=request_meta(request)))


@router.post("/evaluate", dependencies=[Depends(_read)])
def evaluate_rules(req: EvaluateRequest, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    context = build_rule_context(req.business_profile, req.context) if req.business_profile else req.context
    result = RuleService(store).evaluate(context, workflow=req.workflow, phase=req.phase, step=req.step)
    return ok(result.to_dict())


@router.get("/{key}", dependencies=[Depends(_read)])
def get_rule(key: str, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    return ok(RuleService(store).get(key))


@router.put("/{key}")
def update_rule(
    key: str,
    req: RuleUpdate,
    request: Request,
    ctx: IamContext = Depends(_write),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(RuleService(store).update(key, req, actor=ctx, meta=request_meta(request)))


@router.delete("/{key}")
def delete_rule(
    key: str,
    request: Request,
    ctx: IamContext = Depends(_write),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    RuleService(store).delete(key, actor=ctx, meta=request_meta(request))
    return ok({"message": "Rule deleted successfully"})


@router.post("/{key}/explain", dependencies=[Depends(_read)])
def explain_rule(key: str, req: ExplainRequest, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    out = RuleService(store).explain(key, req.context, workflow=req.workflow, phase=req.phase, step=req.step)
    return ok(out)
