import asyncio
import logging
import time
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter()
logger = logging.getLogger(__name__)

DB_PING_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _ping_database(request: Request) -> dict[str, Any]:
    started = time.perf_counter()
    factory = getattr(request.app.state, "db_session_factory", None)
    ok = False
    if factory is None:
        detail: dict[str, Any] = {"message": "database session factory unavailable"}
    else:
        try:
            async with factory() as session:
                await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=DB_PING_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            detail = {"message": "database check timed out", "timeout_seconds": DB_PING_TIMEOUT_SECONDS}
        except Exception as exc:  # noqa: BLE001
            logger.warning("readyz_database_unreachable", extra={"extra": {"error": type(exc).__name__}})
            detail = {"message": "database check failed", "error": type(exc).__name__}
        else:
            ok = True
            detail = {"message": "database reachable"}
    return {
        "name": "db",
        "ok": ok,
        "ms": round((time.perf_counter() - started) * 1000, 2),
        "detail": detail,
    }


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [await _ping_database(request)]
    ready = all(check["ok"] for check in checks)
    return JSONResponse(status_code=200 if ready else 503, content={"ok": ready, "checks": checks})
