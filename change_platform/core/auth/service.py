from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from change_platform.core.audit.iam_audit import (
    SYSTEM_ACTOR_EMAIL,
    SYSTEM_ACTOR_ID,
    ActorType,
    IamAuditAction,
    log_iam_action,
)
from change_platform.core.audit.service import AuditService
from change_platform.core.auth.passwords import hash_password, verify_password
from change_platform.core.auth.tokens import (
    TokenPayload,
    issue_tokens,
    verify_access_token,
    verify_refresh_token,
)
from change_platform.core.config import Settings, get_settings
from change_platform.core.errors import ApiErrorCode, ConflictError, NotFoundError, UnauthorizedError
from change_platform.core.iam.users import new_user_document, normalize_email, public_user
from change_platform.core.observability.metrics import LOGIN_ATTEMPTS_TOTAL
from change_platform.core.store import DocumentStore, utc_now_iso

log = logging.getLogger("change.auth")

INVALID_CREDENTIALS = "Invalid email or password"
AUTO_LOCK_REASON = "Too many failed login attempts"

Meta = Optional[Dict[str, Optional[str]]]


class AuthService:
    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = AuditService(store)

    @staticmethod
    def _payload(user: Dict[str, Any]) -> TokenPayload:
        return TokenPayload(
            user_id=user["id"],
            email=user["email"],
            role=user.get("role") or "",
            tenant_id=user.get("tenant_id"),
        )

    def _login_failed(self, email: str, reason: str, user: Optional[Dict[str, Any]], meta: Meta) -> None:
        LOGIN_ATTEMPTS_TOTAL.labels(outcome="failed").inc()
        log.info("login failed email=%s reason=%s", email, reason)
        log_iam_action(
            self.store,
            action=IamAuditAction.AUTH_LOGIN_FAILED,
            actor_id=user["id"] if user else "unknown",
            actor_email=email,
            tenant_id=user.get("tenant_id") if user else None,
            target_type="user",
            target_id=user["id"] if user else None,
            target_name=email,
            summary=f"Failed login for {email}: {reason}",
            metadata={"reason": reason},
            **(meta or {}),
        )

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        tenant_id: str,
        meta: Meta = None,
    ) -> Dict[str, Any]:
        addr = normalize_email(email)
        if self.store.users.find_one({"email": addr}):
            raise ConflictError("User with this email already exists", code=ApiErrorCode.ALREADY_EXISTS)

        tenant = self.store.tenants.get(tenant_id)
        if not tenant or not tenant.get("is_active", True):
            raise NotFoundError("Tenant", code=ApiErrorCode.TENANT_NOT_FOUND)

        user = self.store.users.insert(
            new_user_document(
                email=addr,
                password=password,
                first_name=first_name,
                last_name=last_name,
                tenant_id=tenant_id,
            )
        )
        self.audit.log(
            action="user_register",
            resource_type="user",
            resource_id=user["id"],
            tenant_id=tenant_id,
            user_id=user["id"],
            user_email=addr,
            **(meta or {}),
        )
        log.info("user registered id=%s tenant=%s", user["id"], tenant_id)
        return {"user": public_user(user), "tokens": issue_tokens(self._payload(user), self.settings)}

    def login(self, email: str, password: str, meta: Meta = None) -> Dict[str, Any]:
        addr = normalize_email(email)
        user = self.store.users.find_one({"email": addr})
        if not user:
            self._login_failed(addr, "unknown_email", None, meta)
            raise UnauthorizedError(INVALID_CREDENTIALS, code=ApiErrorCode.INVALID_CREDENTIALS)

        if not user.get("is_active", True):
            self._login_failed(addr, "account_deactivated", user, meta)
            raise UnauthorizedError("Account is deactivated")

        if user.get("locked_at"):
            self._login_failed(addr, "account_locked", user, meta)
            raise UnauthorizedError("Account is locked")

        if not verify_password(password, user.get("password_hash")):
            self._register_bad_password(user, meta)
            self._login_failed(addr, "invalid_password", user, meta)
            raise UnauthorizedError(INVALID_CREDENTIALS, code=ApiErrorCode.INVALID_CREDENTIALS)

        user = self.store.users.update(user["id"], {"last_login_at": utc_now_iso(), "failed_login_attempts": 0})
        LOGIN_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        log_iam_action(
            self.store,
            action=IamAuditAction.AUTH_LOGIN_SUCCESS,
            actor_id=user["id"],
            actor_email=addr,
            tenant_id=user.get("tenant_id"),
            target_type="user",
            target_id=user["id"],
            target_name=addr,
            summary=f"Successful login for {addr}",
            **(meta or {}),
        )
        self.audit.log(
            action="user_login",
            resource_type="user",
            resource_id=user["id"],
            tenant_id=user.get("tenant_id"),
            user_id=user["id"],
            user_email=addr,
            **(meta or {}),
        )
        return {"user": public_user(user), "tokens": issue_tokens(self._payload(user), self.settings)}

    def _register_bad_password(self, user: Dict[str, Any], meta: Meta) -> None:
        attempts = int(user.get("failed_login_attempts") or 0) + 1
        patch: Dict[str, Any] = {"failed_login_attempts": attempts}
        limit = self.settings.max_failed_logins
        lock = bool(limit) and attempts >= limit
        if lock:
            patch["locked_at"] = utc_now_iso()
            patch["lock_reason"] = AUTO_LOCK_REASON
        self.store.users.update(user["id"], patch)

        if lock:
            log.warning("user auto-locked id=%s attempts=%d", user["id"], attempts)
            log_iam_action(
                self.store,
                action=IamAuditAction.USER_LOCKED,
                actor_id=SYSTEM_ACTOR_ID,
                actor_email=SYSTEM_ACTOR_EMAIL,
                actor_type=ActorType.SYSTEM,
                tenant_id=user.get("tenant_id"),
                target_type="user",
                target_id=user["id"],
                target_name=user.get("email"),
                summary=f"Locked {user.get('email')} after {attempts} failed login attempts",
                metadata={"reason": AUTO_LOCK_REASON, "attempts": attempts},
                **(meta or {}),
            )

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        user_id = verify_refresh_token(refresh_token, self.settings)
        user = self.store.users.get(user_id)
        if not user or not user.get("is_active", True):
            raise UnauthorizedError("Invalid refresh token")
        if user.get("locked_at"):
            raise UnauthorizedError("Account is locked")
        return issue_tokens(self._payload(user), self.settings)

    def get_current_user(self, user_id: str) -> Dict[str, Any]:
        user = self.store.users.get(user_id)
        if not user:
            raise NotFoundError("User")
        return public_user(user)

    def change_password(self, user_id: str, current_password: str, new_password: str, meta: Meta = None) -> None:
        user = self.store.users.get(user_id)
        if not user:
            raise NotFoundError("User")
        if not verify_password(current_password, user.get("password_hash")):
            raise UnauthorizedError("Current password is incorrect", code=ApiErrorCode.INVALID_CREDENTIALS)
        self.store.users.update(
            user_id,
            {
                "password_hash": hash_password(new_password),
                "password_changed_at": utc_now_iso(),
                "must_change_password": False,
            },
        )
        self.audit.log(
            action="password_change",
            resource_type="user",
            resource_id=user_id,
            tenant_id=user.get("tenant_id"),
            user_id=user_id,
            user_email=user.get("email"),
            **(meta or {}),
        )

    def verify_token(self, token: str) -> TokenPayload:
        return verify_access_token(token, self.settings)
