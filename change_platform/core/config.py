from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

DEV_JWT_SECRET = "change-platform-dev-secret"
DEV_JWT_REFRESH_SECRET = "change-platform-dev-refresh-secret"

DEFAULT_DATA_DIR = Path(".change") / "data"
DEFAULT_AUDIT_PATH = Path(".change") / "audit.log"
DEFAULT_RULES_FILE = Path(__file__).resolve().parents[1] / "data" / "default_rules.yaml"


class ConfigError(RuntimeError):
    pass


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    env: str
    data_dir: Path
    jwt_secret: str
    jwt_refresh_secret: str
    jwt_expires_in: str
    jwt_refresh_expires_in: str
    bcrypt_rounds: int
    max_failed_logins: int
    cors_origins: List[str]
    rate_limit_enabled: bool
    rate_limit_rpm: int
    trust_proxy: bool
    security_headers_enabled: bool
    audit_path: Path
    log_level: str
    seed_admin_email: str
    seed_admin_password: str
    rules_file: Path

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"


def get_settings() -> Settings:
    """
    Runtime settings, read from CHANGE_* env vars on every call so tests can
    monkeypatch them per case.
    """
    env = _env_str("CHANGE_ENV", "dev").lower()

    cors_raw = _env_str("CHANGE_CORS_ORIGINS", "")
    cors = [o.strip() for o in cors_raw.split(",") if o.strip()] if cors_raw else ["*"]

    settings = Settings(
        env=env,
        data_dir=Path(_env_str("CHANGE_DATA_DIR", str(DEFAULT_DATA_DIR))),
        jwt_secret=_env_str("CHANGE_JWT_SECRET", DEV_JWT_SECRET),
        jwt_refresh_secret=_env_str("CHANGE_JWT_REFRESH_SECRET", DEV_JWT_REFRESH_SECRET),
        jwt_expires_in=_env_str("CHANGE_JWT_EXPIRES_IN", "1d"),
        jwt_refresh_expires_in=_env_str("CHANGE_JWT_REFRESH_EXPIRES_IN", "7d"),
        bcrypt_rounds=max(4, _env_int("CHANGE_BCRYPT_ROUNDS", 12)),
        max_failed_logins=max(0, _env_int("CHANGE_MAX_FAILED_LOGINS", 5)),
        cors_origins=cors,
        rate_limit_enabled=_env_bool("CHANGE_RATE_LIMIT_ENABLED", False),
        rate_limit_rpm=_env_int("CHANGE_RATE_LIMIT_RPM", 100),
        trust_proxy=_env_bool("CHANGE_TRUST_PROXY", False),
        security_headers_enabled=_env_bool("CHANGE_SECURITY_HEADERS_ENABLED", env == "prod"),
        audit_path=Path(_env_str("CHANGE_AUDIT_PATH", str(DEFAULT_AUDIT_PATH))),
        log_level=_env_str("CHANGE_LOG_LEVEL", "INFO").upper(),
        seed_admin_email=_env_str("CHANGE_SEED_ADMIN_EMAIL", "admin@change-platform.com").lower(),
        seed_admin_password=_env_str("CHANGE_SEED_ADMIN_PASSWORD", "Admin123!"),
        rules_file=Path(_env_str("CHANGE_RULES_FILE", str(DEFAULT_RULES_FILE))),
    )

    if settings.is_prod:
        # Prod must never sign tokens with the baked-in development secrets.
        if settings.jwt_secret == DEV_JWT_SECRET or settings.jwt_refresh_secret == DEV_JWT_REFRESH_SECRET:
            raise ConfigError("CHANGE_JWT_SECRET and CHANGE_JWT_REFRESH_SECRET must be set in prod")

    return settings


def configure_logging(level: str | None = None) -> None:
    lvl = (level or _env_str("CHANGE_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, lvl, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
