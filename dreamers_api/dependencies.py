"""FastAPI dependencies exposing the services stored on ``app.state``."""
from __future__ import annotations

from fastapi import Request

from .build_info import BuildInfoProvider
from .config import AppConfig
from .logging_config import RequestLogger, create_request_logger, get_correlation_id
from .store import MongoStore


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_store(request: Request) -> MongoStore:
    return request.app.state.store


def get_build_info(request: Request) -> BuildInfoProvider:
    return request.app.state.build_info


def get_correlation(request: Request) -> str:
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = get_correlation_id(request.headers)
        request.state.correlation_id = correlation_id
    return correlation_id


def get_request_logger(request: Request) -> RequestLogger:
    return create_request_logger(
        get_correlation(request),
        {"method": request.method, "path": request.url.path},
    )
