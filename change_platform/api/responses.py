from __future__ import annotations

from typing import Any, Dict, List, Optional

from change_platform.core.store import utc_now_iso


def ok(data: Any = None, pagination: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"timestamp": utc_now_iso()}
    if pagination is not None:
        meta["pagination"] = pagination
    return {"success": True, "data": data, "meta": meta}


def error_body(
    code: str,
    message: str,
    request_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    validation_errors: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    if validation_errors:
        err["validation_errors"] = validation_errors
    return {
        "success": False,
        "error": err,
        "meta": {"timestamp": utc_now_iso(), "request_id": request_id},
    }
