"""Event payload parsing, PATCH merging and serialization."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .logging_config import RequestLogger
from .schemas import EVENT_TYPE_VALUES, EventRecord, EventType, utcnow
from .store import MongoStore
from .validation import EventValidationContext, NightBlockContext, ValidationResult

MAX_EVENTS = 500

# (attribute on EventPatch, document key)
PATCH_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("type", "type"),
    ("start_time", "startTime"),
    ("end_time", "endTime"),
    ("parent_event_id", "parentEventId"),
    ("source", "source"),
    ("meta", "meta"),
)
ALLOWED_PATCH_FIELDS = frozenset(key for _, key in PATCH_FIELDS)

PARENT_PROJECTION = {"_id": 1, "startTime": 1, "endTime": 1}


def parse_object_id(value: Any, label: str) -> ObjectId:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return ObjectId(value)


def parse_iso_datetime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def coerce_to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, str) and value.strip():
        return parse_iso_datetime(value)
    return None


def to_iso_string(value: Any) -> Optional[str]:
    """Render stored dates as ISO-8601 UTC with millisecond precision."""

    if isinstance(value, str) and value.strip():
        parsed = parse_iso_datetime(value)
        if parsed is None:
            return value
        value = parsed
    if isinstance(value, datetime):
        moment = coerce_to_datetime(value)
        return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
            "+00:00", "Z"
        )
    return None


def sanitize_meta(meta: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(meta, dict):
        return None
    sanitized = dict(meta)
    caregiver_id = sanitized.get("caregiverId")
    if isinstance(caregiver_id, ObjectId):
        sanitized["caregiverId"] = str(caregiver_id)
    return sanitized


def serialize_event(document: Mapping[str, Any]) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": str(document["_id"]),
        "childId": str(document["childId"]),
        "type": document.get("type"),
        "startTime": to_iso_string(document.get("startTime")),
        "source": document.get("source") or "manual",
        "createdAt": to_iso_string(document.get("createdAt")),
        "updatedAt": to_iso_string(document.get("updatedAt")),
    }
    end_time = to_iso_string(document.get("endTime"))
    if end_time:
        body["endTime"] = end_time
    if document.get("parentEventId"):
        body["parentEventId"] = str(document["parentEventId"])
    meta = sanitize_meta(document.get("meta"))
    if meta is not None:
        body["meta"] = meta
    return body


def parse_event_payload(payload: Any, child_id: ObjectId) -> Dict[str, Any]:
    """Build the candidate document for a new event from a request body."""

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be an object")

    candidate: Dict[str, Any] = {"childId": child_id}
    for key in ("type", "startTime"):
        if key in payload:
            candidate[key] = payload[key]
    for key in ("endTime", "source"):
        if payload.get(key) is not None:
            candidate[key] = payload[key]

    parent_raw = payload.get("parentEventId")
    if parent_raw is not None:
        if not isinstance(parent_raw, str) or not ObjectId.is_valid(parent_raw):
            raise HTTPException(
                status_code=400, detail="parentEventId must be a valid ObjectId"
            )
        candidate["parentEventId"] = ObjectId(parent_raw)

    meta_raw = payload.get("meta")
    if meta_raw is not None:
        if not isinstance(meta_raw, dict):
            raise HTTPException(status_code=400, detail="meta must be an object")
        candidate["meta"] = dict(meta_raw)

    return candidate


class EventPatch(BaseModel):
    """Fields submitted in a PATCH body; ``model_fields_set`` tracks presence."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    type: Optional[EventType] = None
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    parent_event_id: Optional[ObjectId] = Field(default=None, alias="parentEventId")
    source: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    def has(self, attribute: str) -> bool:
        return attribute in self.model_fields_set


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=message)


def parse_patch_payload(payload: Any) -> EventPatch:
    if not isinstance(payload, dict):
        raise _bad_request("Payload must be an object")
    if not payload:
        raise _bad_request("Payload must not be empty")

    unknown = [key for key in payload if key not in ALLOWED_PATCH_FIELDS]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail={"error": "Unsupported fields in payload", "fields": unknown},
        )

    changes: Dict[str, Any] = {}

    if "type" in payload:
        raw_type = payload["type"]
        if not isinstance(raw_type, str) or raw_type not in EVENT_TYPE_VALUES:
            raise _bad_request("Invalid event type")
        changes["type"] = EventType(raw_type)

    if "startTime" in payload:
        raw_start = payload["startTime"]
        if not isinstance(raw_start, str):
            raise _bad_request("startTime must be an ISO string")
        start_time = parse_iso_datetime(raw_start)
        if start_time is None:
            raise _bad_request("startTime must be a valid ISO date")
        changes["start_time"] = start_time

    if "endTime" in payload:
        raw_end = payload["endTime"]
        if raw_end is None:
            changes["end_time"] = None
        elif isinstance(raw_end, str):
            end_time = parse_iso_datetime(raw_end)
            if end_time is None:
                raise _bad_request("endTime must be a valid ISO date")
            changes["end_time"] = end_time
        else:
            raise _bad_request("endTime must be null or an ISO string")

    if "parentEventId" in payload:
        raw_parent = payload["parentEventId"]
        if raw_parent is None:
            changes["parent_event_id"] = None
        elif isinstance(raw_parent, str) and ObjectId.is_valid(raw_parent):
            changes["parent_event_id"] = ObjectId(raw_parent)
        else:
            raise _bad_request("parentEventId must be a valid ObjectId or null")

    if "source" in payload:
        raw_source = payload["source"]
        if not isinstance(raw_source, str) or not raw_source.strip():
            raise _bad_request("source must be a non-empty string")
        changes["source"] = raw_source

    if "meta" in payload:
        raw_meta = payload["meta"]
        if raw_meta is None:
            changes["meta"] = None
        elif isinstance(raw_meta, dict):
            changes["meta"] = dict(raw_meta)
        else:
            raise _bad_request("meta must be an object or null")

    return EventPatch(**changes)


def merge_patch(
    existing: Mapping[str, Any],
    patch: EventPatch,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Overlay a patch on a stored event, producing the full candidate record.

    Fields cleared by the patch are left out of the candidate entirely.
    """

    moment = now or utcnow()
    current = dict(existing)
    if not isinstance(current.get("meta"), dict):
        current.pop("meta", None)

    candidate: Dict[str, Any] = {"childId": current["childId"]}
    for attribute, key in PATCH_FIELDS:
        value = getattr(patch, attribute) if patch.has(attribute) else current.get(key)
        if value is not None:
            candidate[key] = value
    candidate["createdAt"] = coerce_to_datetime(current.get("createdAt")) or moment
    candidate["updatedAt"] = moment
    return candidate


def build_update_operation(patch: EventPatch, event: EventRecord) -> Dict[str, Any]:
    """``$set`` the patched fields that survived validation, ``$unset`` the cleared ones."""

    document = event.to_document()
    set_doc: Dict[str, Any] = {"updatedAt": event.updated_at or utcnow()}
    unset_doc: Dict[str, str] = {}
    for attribute, key in PATCH_FIELDS:
        if not patch.has(attribute):
            continue
        if key in document:
            set_doc[key] = document[key]
        else:
            unset_doc[key] = ""

    operation: Dict[str, Any] = {"$set": set_doc}
    if unset_doc:
        operation["$unset"] = unset_doc
    return operation


def invalid_event_error(result: ValidationResult) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"error": "Invalid event payload", "details": result.messages},
    )


async def ensure_child_exists(
    store: MongoStore, child_id: ObjectId, log: RequestLogger
) -> None:
    child = await store.find_one("children", {"_id": child_id}, projection={"_id": 1})
    if child is None:
        log.warning("child not found", extra={"child_id": str(child_id)})
        raise HTTPException(status_code=404, detail="Child not found")


async def resolve_validation_context(
    store: MongoStore,
    child_id: ObjectId,
    parent_event_id: Any,
) -> EventValidationContext:
    """Look up the night block a candidate links to, scoped to the same child."""

    if not isinstance(parent_event_id, ObjectId):
        return EventValidationContext()

    parent = await store.find_one(
        "events",
        {"_id": parent_event_id, "childId": child_id},
        projection=PARENT_PROJECTION,
    )
    if parent is None:
        raise HTTPException(
            status_code=400, detail="parentEventId not found for the provided child"
        )

    start_time = coerce_to_datetime(parent.get("startTime"))
    if start_time is None:
        raise HTTPException(
            status_code=500, detail="Parent event is missing a valid startTime"
        )

    return EventValidationContext(
        active_night_block=NightBlockContext(
            event_id=parent["_id"],
            start_time=start_time,
            end_time=coerce_to_datetime(parent.get("endTime")),
        )
    )


def build_list_filter(
    child_id: ObjectId,
    *,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"childId": child_id}
    if event_type:
        query["type"] = event_type
    if start or end:
        window: Dict[str, datetime] = {}
        if start:
            window["$gte"] = start
        if end:
            window["$lte"] = end
        query["startTime"] = window
    return query


def parse_date_param(raw: Optional[str], label: str) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    trimmed = raw.strip()
    if not trimmed:
        raise _bad_request(f"{label} must not be empty")
    parsed = parse_iso_datetime(trimmed)
    if parsed is None:
        raise _bad_request(f"{label} must be a valid ISO date")
    return parsed


def serialize_events(documents: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_event(document) for document in documents]
