import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

from change_platform.core.config import DEFAULT_AUDIT_PATH

# 10MB per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_rotating_handler(audit_path: Path) -> logging.Handler:
    key = str(audit_path.resolve())
    if key not in _handler_cache:
        audit_path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.handlers.RotatingFileHandler(
            str(audit_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        h.setFormatter(logging.Formatter("%(message)s"))
        _handler_cache[key] = h
    return _handler_cache[key]


def http_audit_event(
    event_type: str,
    request_id: Optional[str],
    actor: Optional[str],
    tenant: Optional[str],
    method: Optional[str],
    path: Optional[str],
    status_code: Optional[int],
    client_ip: Optional[str] = None,
    duration_ms: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
    audit_path: Path = DEFAULT_AUDIT_PATH,
) -> None:
    """Append one JSON line describing an HTTP request to the rotating trail."""
    record: Dict[str, Any] = {
        "ts_ms": _now_ms(),
        "type": event_type,
        "request_id": request_id,
        "actor": actor,
        "tenant": tenant,
        "http": {
            "method": method,
            "path": path,
            "status": status_code,
            "client_ip": client_ip,
            "duration_ms": duration_ms,
        },
    }
    if extra:
        record["extra"] = extra

    line = json.dumps(record, separators=(",", ":"), ensure_ascii=False)

    handler = _get_rotating_handler(audit_path)
    handler.emit(
        logging.LogRecord(
            name="change.audit.http",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg=line,
            args=(),
            exc_info=None,
        )
    )
