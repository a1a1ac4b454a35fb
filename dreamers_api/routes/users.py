import hashlib
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..auth import Session, SessionRole, require_role, resolve_role
from ..config import AppConfig
from ..dependencies import get_config, get_request_logger, get_store
from ..events import to_iso_string
from ..logging_config import RequestLogger
from ..store import MongoStore

router = APIRouter(prefix="/api", tags=["users"])

DEBUG_USER_LIMIT = 50


def redact_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return hashlib.sha256(email.lower().encode("utf-8")).hexdigest()[:12]


@router.get("/users/debug")
async def debug_users(
    session: Session = Depends(require_role(SessionRole.ADMIN)),
    config: AppConfig = Depends(get_config),
    store: MongoStore = Depends(get_store),
    log: RequestLogger = Depends(get_request_logger),
) -> Dict[str, Any]:
    """List a sample of users with hashed emails; hidden unless debug endpoints are on."""

    if not config.enable_debug_endpoints:
        raise HTTPException(status_code=404, detail="Not Found")

    try:
        users = await store.find(
            "users",
            {},
            projection={"email": 1, "role": 1, "createdAt": 1},
            limit=DEBUG_USER_LIMIT,
        )
    except Exception as exc:
        log.exception("failed to list users")
        raise HTTPException(status_code=500, detail="Internal Server Error") from exc

    sanitized = [
        {
            "id": str(user["_id"]),
            "role": resolve_role(user.get("role")).value,
            "emailHash": redact_email(user.get("email")),
            "createdAt": to_iso_string(user.get("createdAt")),
        }
        for user in users
    ]
    return {"users": sanitized, "count": len(sanitized)}
