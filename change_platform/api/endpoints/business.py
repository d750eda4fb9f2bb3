from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_store, require_operational_permission, require_tenant_access
from change_platform.api.responses import ok
from change_platform.core.business import BUSINESS_TYPES, BusinessProfileService, build_rule_context
from change_platform.core.iam.permissions import OperationalPermission
from change_platform.core.iam.resolver import IamContext
from change_platform.core.rules.service import RuleService
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/app/tenants/{tenant_id}", tags=["business"])

_BUSINESS_TYPE_PATTERN = "^(" + "|".join(BUSINESS_TYPES) + ")$"


class BusinessProfileRequest(BaseModel):
    business_name: Optional[str] = Field(None, min_length=1, max_length=200)
    business_type: Optional[str] = Field(None, pattern=_BUSINESS_TYPE_PATTERN)
    formation_state: Optional[str] = Field(None, min_length=2, max_length=2)
    archetype: Optional[str] = Field(None, max_length=100)
    industry_code: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=254)
    phone: Optional[str] = Field(None, max_length=40)
    address: Optional[Dict[str, Any]] = None
    is_existing_business: Optional[bool] = None
    has_ein: Optional[bool] = None
    employee_count: Optional[int] = Field(None, ge=0)
    owners: Optional[List[Dict[str, Any]]] = None
    attributes: Optional[Dict[str, Any]] = None


@router.get(
    "/business-profile",
    dependencies=[Depends(require_operational_permission(OperationalPermission.BUSINESS_READ))],
)
def get_business_profile(
    tenant_id: str,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(BusinessProfileService(store).get(tenant_id))


@router.put(
    "/business-profile",
    dependencies=[Depends(require_operational_permission(OperationalPermission.BUSINESS_WRITE))],
)
def put_business_profile(
    tenant_id: str,
    req: BusinessProfileRequest,
    request: Request,
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    data = req.model_dump(exclude_unset=True)
    return ok(BusinessProfileService(store).upsert(tenant_id, data, ctx, request=request))


@router.get(
    "/requirements",
    dependencies=[Depends(require_operational_permission(OperationalPermission.WORKFLOW_READ))],
)
def get_requirements(
    tenant_id: str,
    workflow: Optional[str] = Query(None),
    phase: Optional[str] = Query(None),
    step: Optional[str] = Query(None),
    ctx: IamContext = Depends(require_tenant_access),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    profile = BusinessProfileService(store).get(tenant_id)
    result = RuleService(store).evaluate(
        build_rule_context(profile), workflow=workflow, phase=phase, step=step, source="requirements"
    )
    return ok(result.to_dict())
