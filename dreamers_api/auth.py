from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request

from .config import AppConfig
from .dependencies import get_config

logger = logging.getLogger(__name__)

SESSION_COOKIE = "next-auth.session-token"
SECURE_COOKIE_PREFIX = "__Secure-"


class SessionRole(str, Enum):
    USER = "user"
    PRO = "pro"
    ADMIN = "admin"


ROLE_PRIORITY: Dict[SessionRole, int] = {
    SessionRole.USER: 0,
    SessionRole.PRO: 1,
    SessionRole.ADMIN: 2,
}


def resolve_role(value: Any) -> SessionRole:
    try:
        return SessionRole(value)
    except ValueError:
        return SessionRole.USER


def compare_roles(granted: SessionRole, required: SessionRole) -> int:
    return ROLE_PRIORITY[granted] - ROLE_PRIORITY[required]


def has_sufficient_role(granted: SessionRole, required: SessionRole) -> bool:
    return compare_roles(granted, required) >= 0


@dataclass
class Session:
    user_id: str
    user_email: Optional[str]
    role: SessionRole


def session_cookie_name(config: AppConfig) -> str:
    prefix = SECURE_COOKIE_PREFIX if config.is_production else ""
    return f"{prefix}{SESSION_COOKIE}"


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def decode_session_token(token: str, secret: str) -> Optional[Session]:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_aud": False, "require": ["sub"]},
        )
    except jwt.PyJWTError as exc:
        logger.info("session token rejected", extra={"reason": str(exc)})
        return None
    email = payload.get("email")
    return Session(
        user_id=str(payload["sub"]),
        user_email=email if isinstance(email, str) else None,
        role=resolve_role(payload.get("role")),
    )


async def get_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    config: AppConfig = Depends(get_config),
) -> Optional[Session]:
    token = _parse_bearer_token(authorization) or request.cookies.get(
        session_cookie_name(config)
    )
    if not token:
        return None
    return decode_session_token(token, config.nextauth_secret)


def require_role(required: SessionRole) -> Callable[..., Any]:
    """Dependency factory rejecting requests without a sufficient session role."""

    async def dependency(session: Optional[Session] = Depends(get_session)) -> Session:
        if session is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not has_sufficient_role(session.role, required):
            raise HTTPException(status_code=403, detail="Forbidden")
        return session

    return dependency
