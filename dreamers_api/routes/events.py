from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..auth import Session, SessionRole, require_role
from ..dependencies import get_request_logger, get_store
from ..events import (
    MAX_EVENTS,
    build_list_filter,
    build_update_operation,
    ensure_child_exists,
    invalid_event_error,
    merge_patch,
    parse_date_param,
    parse_event_payload,
    parse_object_id,
    parse_patch_payload,
    resolve_validation_context,
    serialize_event,
    serialize_events,
)
from ..logging_config import RequestLogger
from ..schemas import EVENT_TYPE_VALUES
from ..store import MongoStore
from ..validation import validate_event

router = APIRouter(prefix="/api", tags=["events"])

INTERNAL_ERROR = "Internal Server Error"


async def _read_json(request: Request, log: RequestLogger) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        log.warning("invalid json payload", extra={"reason": str(exc)})
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc


@router.get("/children/{child_id}/events")
async def list_events(
    child_id: str,
    from_: Optional[str] = Query(None, alias="from", description="Start of range (ISO)"),
    to: Optional[str] = Query(None, description="End of range (ISO)"),
    type: Optional[str] = Query(None, description="Event type filter"),
    session: Session = Depends(require_role(SessionRole.PRO)),
    store: MongoStore = Depends(get_store),
    log: RequestLogger = Depends(get_request_logger),
) -> Dict[str, Any]:
    """Return a child's events ordered by start time, capped at MAX_EVENTS."""

    child_oid = parse_object_id(child_id, "childId")
    start = parse_date_param(from_, "from")
    end = parse_date_param(to, "to")
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="from must be earlier than to")
    if type and type not in EVENT_TYPE_VALUES:
        raise HTTPException(status_code=400, detail="Invalid event type")

    try:
        await ensure_child_exists(store, child_oid, log)
        documents = await store.find(
            "events",
            build_list_filter(child_oid, event_type=type, start=start, end=end),
            sort=[("startTime", 1), ("_id", 1)],
            limit=MAX_EVENTS,
        )
    except HTTPException:
        raise
    except Exception as exc:
        log.exception("failed to fetch child events")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc

    events = serialize_events(documents)
    log.info(
        "child events retrieved",
        extra={
            "child_id": child_id,
            "count": len(events),
            "filters": {"from": from_, "to": to, "type": type},
        },
    )
    return {"events": events, "count": len(events), "limit": MAX_EVENTS}


@router.post("/children/{child_id}/events", status_code=201)
async def create_event(
    child_id: str,
    request: Request,
    session: Session = Depends(require_role(SessionRole.PRO)),
    store: MongoStore = Depends(get_store),
    log: RequestLogger = Depends(get_request_logger),
) -> Dict[str, Any]:
    child_oid = parse_object_id(child_id, "childId")
    payload = await _read_json(request, log)
    candidate = parse_event_payload(payload, child_oid)

    try:
        await ensure_child_exists(store, child_oid, log)
        context = await resolve_validation_context(
            store, child_oid, candidate.get("parentEventId")
        )
        result = validate_event(candidate, context)
        if not result.ok:
            raise invalid_event_error(result)

        inserted_id = await store.insert_one("events", result.event.to_document())
        if inserted_id is None:
            log.error("failed to insert child event", extra={"child_id": child_id})
            raise HTTPException(status_code=500, detail="Failed to persist event")

        inserted = await store.find_one("events", {"_id": inserted_id})
        if inserted is None:
            log.error("inserted event not found", extra={"event_id": str(inserted_id)})
            raise HTTPException(status_code=500, detail="Failed to load inserted event")
    except HTTPException:
        raise
    except Exception as exc:
        log.exception("failed to create child event")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc

    log.info(
        "child event created",
        extra={"child_id": child_id, "event_id": str(inserted_id), "type": inserted.get("type")},
    )
    return {"event": serialize_event(inserted)}


@router.patch("/children/{child_id}/events/{event_id}")
async def update_event(
    child_id: str,
    event_id: str,
    request: Request,
    session: Session = Depends(require_role(SessionRole.PRO)),
    store: MongoStore = Depends(get_store),
    log: RequestLogger = Depends(get_request_logger),
) -> Dict[str, Any]:
    """Apply a partial update, re-validating the full merged event."""

    child_oid = parse_object_id(child_id, "childId")
    event_oid = parse_object_id(event_id, "eventId")
    payload = await _read_json(request, log)
    patch = parse_patch_payload(payload)
    scope = {"_id": event_oid, "childId": child_oid}

    try:
        await ensure_child_exists(store, child_oid, log)

        existing = await store.find_one("events", scope)
        if existing is None:
            log.warning("event not found", extra={"child_id": child_id, "event_id": event_id})
            raise HTTPException(status_code=404, detail="Event not found")

        candidate = merge_patch(existing, patch)
        context = await resolve_validation_context(
            store, child_oid, candidate.get("parentEventId")
        )
        result = validate_event(candidate, context)
        if not result.ok:
            raise invalid_event_error(result)

        matched = await store.update_one("events", scope, build_update_operation(patch, result.event))
        if matched == 0:
            log.warning(
                "event not found during update",
                extra={"child_id": child_id, "event_id": event_id},
            )
            raise HTTPException(status_code=404, detail="Event not found")

        updated = await store.find_one("events", scope)
        if updated is None:
            log.error("updated event not found", extra={"child_id": child_id, "event_id": event_id})
            raise HTTPException(status_code=500, detail="Failed to load updated event")
    except HTTPException:
        raise
    except Exception as exc:
        log.exception("failed to patch child event")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR) from exc

    log.info("child event updated", extra={"child_id": child_id, "event_id": event_id})
    return {"event": serialize_event(updated)}
