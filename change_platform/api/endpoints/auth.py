from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from change_platform.api.deps import get_iam_context, get_store, get_token_payload
from change_platform.api.responses import ok
from change_platform.core.audit.iam_audit import request_meta
from change_platform.core.auth.service import AuthService
from change_platform.core.auth.tokens import TokenPayload
from change_platform.core.iam.resolver import IamContext
from change_platform.core.store import DocumentStore

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

MIN_PASSWORD = 8
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(..., min_length=MIN_PASSWORD, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    tenant_id: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=MIN_PASSWORD, max_length=128)


@router.post("/register", status_code=201)
def register(req: RegisterRequest, request: Request, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    out = AuthService(store).register(
        email=req.email,
        password=req.password,
        first_name=req.first_name,
        last_name=req.last_name,
        tenant_id=req.tenant_id,
        meta=request_meta(request),
    )
    return ok(out)


@router.post("/login")
def login(req: LoginRequest, request: Request, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    return ok(AuthService(store).login(req.email, req.password, meta=request_meta(request)))


@router.post("/refresh")
def refresh(req: RefreshRequest, store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    return ok({"tokens": AuthService(store).refresh(req.refresh_token)})


@router.get("/me")
def me(
    payload: TokenPayload = Depends(get_token_payload),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return ok(AuthService(store).get_current_user(payload.user_id))


@router.post("/change-password")
def change_password(
    req: ChangePasswordRequest,
    request: Request,
    ctx: IamContext = Depends(get_iam_context),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    AuthService(store).change_password(ctx.user_id, req.current_password, req.new_password, meta=request_meta(request))
    return ok({"message": "Password changed successfully"})


@router.post("/logout")
def logout(payload: TokenPayload = Depends(get_token_payload)) -> Dict[str, Any]:
    # Tokens are stateless; the client discards them.
    return ok({"message": "Logged out successfully"})
