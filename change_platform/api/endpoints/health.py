from __future__ import annotations

import os
import uuid

from fastapi import APIRouter
from starlette.responses import JSONResponse

from change_platform.core.config import ConfigError, get_settings

router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/live")
def liveness():
    return {"status": "alive"}


@router.get("/ready")
def readiness():
    """
    Readiness reflects ability to serve traffic: configuration must load and
    the data directory must be writable.
    """
    problems: list[str] = []

    try:
        settings = get_settings()
    except ConfigError as e:
        return JSONResponse(status_code=503, content={"status": "not_ready", "problems": [f"config:{e}"]})

    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        marker = settings.data_dir / f".ready-{uuid.uuid4().hex}"
        marker.write_text("ok", encoding="utf-8")
        os.remove(marker)
    except OSError as e:
        problems.append(f"data_dir_not_writable:{type(e).__name__}")

    if problems:
        return JSONResponse(status_code=503, content={"status": "not_ready", "problems": problems})

    return {"status": "ready", "env": settings.env}
