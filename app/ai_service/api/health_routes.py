"""
Health, readiness and liveness endpoints.

Each dependency check runs in a worker thread under a shared timeout.
"""

import asyncio
import os
import platform
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def run_check(check: Optional[Callable[[], None]], timeout: float) -> Dict[str, str]:
    """
    Run one blocking check. A check passes when it returns without raising.
    """
    if check is None:
        return {
            "status": UNHEALTHY,
            "message": "not configured",
            "timestamp": _timestamp(),
        }

    try:
        await asyncio.wait_for(asyncio.to_thread(check), timeout=timeout)
    except asyncio.TimeoutError:
        message = f"timed out after {timeout:g}s"
    except Exception as exc:
        message = str(exc) or exc.__class__.__name__
    else:
        return {"status": HEALTHY, "message": "ok", "timestamp": _timestamp()}

    return {"status": UNHEALTHY, "message": message, "timestamp": _timestamp()}


def _system_check() -> Dict[str, str]:
    return {
        "status": HEALTHY,
        "message": (
            f"python {platform.python_version()}, pid {os.getpid()}, "
            f"threads {threading.active_count()}"
        ),
        "timestamp": _timestamp(),
    }


async def _gather(checks: Dict[str, Optional[Callable[[], None]]], timeout: float):
    results = await asyncio.gather(*(run_check(c, timeout) for c in checks.values()))
    return dict(zip(checks, results))


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    state = request.app.state
    settings = state.settings

    checks = await _gather(
        {
            "database": state.database_check,
            "cache": state.cache_check,
            "ai": state.ai_check,
        },
        settings.HEALTH_CHECK_TIMEOUT_SECONDS,
    )
    checks["system"] = _system_check()

    healthy = all(c["status"] == HEALTHY for c in checks.values())
    if not healthy:
        logger.warning(
            "Health check failed",
            extra={
                "failing": [name for name, c in checks.items() if c["status"] != HEALTHY]
            },
        )

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": HEALTHY if healthy else UNHEALTHY,
            "service": settings.SERVICE_NAME,
            "version": settings.VERSION,
            "checks": checks,
        },
    )


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    state = request.app.state
    settings = state.settings

    checks = await _gather(
        {"database": state.database_check, "cache": state.cache_check},
        settings.HEALTH_CHECK_TIMEOUT_SECONDS,
    )
    is_ready = all(c["status"] == HEALTHY for c in checks.values())

    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "status": "ready" if is_ready else "not_ready",
            "service": settings.SERVICE_NAME,
            "checks": checks,
        },
    )


@router.get("/live")
async def live(request: Request) -> dict:
    return {
        "status": "alive",
        "service": request.app.state.settings.SERVICE_NAME,
        "timestamp": _timestamp(),
    }
