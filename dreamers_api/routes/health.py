import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..build_info import BuildInfoProvider
from ..config import EnvValidationError, load_config
from ..dependencies import get_build_info, get_request_logger, get_store
from ..logging_config import RequestLogger
from ..store import MongoStore

router = APIRouter(prefix="/api", tags=["health"])


def _env_status(request: Request) -> Dict[str, Any]:
    try:
        load_config(request.app.state.environ)
    except EnvValidationError as exc:
        return {"ok": False, "missing": exc.missing_keys}
    return {"ok": True}


async def _db_status(store: MongoStore, log: RequestLogger) -> Dict[str, Any]:
    try:
        latency_ms = await store.ping()
    except Exception as exc:
        log.warning("MongoDB health check failed", extra={"error": str(exc)})
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "pingMs": latency_ms}


@router.get("/healthz")
async def healthz(
    request: Request,
    store: MongoStore = Depends(get_store),
    build_info: BuildInfoProvider = Depends(get_build_info),
    log: RequestLogger = Depends(get_request_logger),
) -> JSONResponse:
    env_status = _env_status(request)
    db_status = await _db_status(store, log)
    payload = {
        "ok": env_status["ok"] and db_status["ok"],
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "db": db_status,
        "env": env_status,
        "build": build_info.get().as_dict(),
    }

    if not env_status["ok"]:
        log.error("environment validation failed", extra={"missing": env_status["missing"]})
    if not db_status["ok"]:
        log.error("database health check failed", extra={"error": db_status["error"]})

    status_code = 200 if payload["ok"] else 503
    if status_code == 200:
        log.debug("healthz ok", extra={"uptime": payload["uptime"], "ping_ms": db_status["pingMs"]})
    else:
        log.warning("healthz degraded", extra={"status": status_code})

    # Deploy metadata can change under a running process; re-read it next time.
    build_info.reset()
    return JSONResponse(payload, status_code=status_code)
