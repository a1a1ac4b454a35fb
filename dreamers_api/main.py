from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .build_info import BuildInfoProvider
from .config import AppConfig, load_config
from .logging_config import configure_logging
from .middleware import CorrelationIdMiddleware, SecurityPolicyMiddleware
from .routes import events as events_routes
from .routes import health as health_routes
from .routes import users as users_routes
from .store import MongoStore

logger = logging.getLogger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    body: Any = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse({"error": "Invalid request", "details": details}, status_code=400)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("api starting", extra={"app_env": app.state.config.app_env})
    try:
        yield
    finally:
        await app.state.store.close()


def create_app(
    config: Optional[AppConfig] = None,
    *,
    store: Optional[MongoStore] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    """Build the API with explicitly supplied services.

    ``environ`` defaults to the process environment and is what the health
    check re-validates and what build metadata is read from.
    """

    env = os.environ if environ is None else environ
    config = config or load_config(env)
    configure_logging(config.log_level)

    app = FastAPI(
        title="Happy Dreamers API",
        version="0.1.0",
        description="Tracks child sleep and feeding events",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.environ = env
    app.state.store = store or MongoStore(config)
    app.state.build_info = BuildInfoProvider(env)
    app.state.started_at = time.monotonic()

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(
        SecurityPolicyMiddleware,
        allowed_origins=config.allowed_origins,
        preview_pattern=config.preview_origin_pattern,
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(events_routes.router)
    app.include_router(health_routes.router)
    app.include_router(users_routes.router)

    return app
