"""Pydantic schemas for the stored documents."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
)


def _coerce_object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError("Invalid ObjectId")


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


PyObjectId = Annotated[ObjectId, BeforeValidator(_coerce_object_id)]
UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class DocumentModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )


class EventType(str, Enum):
    SLEEP_START = "sleep_start"
    SLEEP_END = "sleep_end"
    NIGHT_WAKE = "night_wake"
    FEEDING_BOTTLE = "feeding_bottle"
    FEEDING_BREAST = "feeding_breast"
    FEEDING_SOLIDS = "feeding_solids"
    MEDICATION = "medication"
    EXTRA = "extra"


EVENT_TYPE_VALUES = tuple(item.value for item in EventType)


class EventSource(str, Enum):
    MANUAL = "manual"
    IMPORTED = "imported"
    SENSOR = "sensor"


class FeedingDetails(DocumentModel):
    volume_ml: Optional[float] = Field(
        default=None, alias="volumeMl", ge=0, allow_inf_nan=False
    )
    formula: Optional[TrimmedStr] = None
    side: Optional[Literal["left", "right"]] = None


class EventMeta(DocumentModel):
    notes: Optional[TrimmedStr] = None
    caregiver_id: Optional[PyObjectId] = Field(default=None, alias="caregiverId")
    duration_minutes: Optional[float] = Field(
        default=None, alias="durationMinutes", ge=0, allow_inf_nan=False
    )
    feeding: Optional[FeedingDetails] = None
    night_feeding: Optional[bool] = Field(default=None, alias="nightFeeding")


class EventRecord(DocumentModel):
    """A child event as it is stored in the ``events`` collection."""

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    child_id: PyObjectId = Field(..., alias="childId")
    type: EventType
    start_time: UtcDatetime = Field(..., alias="startTime")
    end_time: Optional[UtcDatetime] = Field(default=None, alias="endTime")
    parent_event_id: Optional[PyObjectId] = Field(default=None, alias="parentEventId")
    source: EventSource = Field(default=EventSource.MANUAL, validate_default=True)
    meta: Optional[EventMeta] = None
    created_at: UtcDatetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: Optional[UtcDatetime] = Field(default=None, alias="updatedAt")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="python")


class UserRole(str, Enum):
    """Roles stored on user records."""

    PARENT = "parent"
    COACH = "coach"
    ADMIN = "admin"


class UserProfile(DocumentModel):
    first_name: Optional[NonEmptyStr] = Field(default=None, alias="firstName")
    last_name: Optional[NonEmptyStr] = Field(default=None, alias="lastName")
    timezone: Optional[NonEmptyStr] = None


class User(DocumentModel):
    id: PyObjectId = Field(..., alias="_id")
    email: EmailStr
    role: UserRole
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: Optional[UtcDatetime] = Field(default=None, alias="updatedAt")
    profile: Optional[UserProfile] = None


class PlanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class PlanTarget(DocumentModel):
    key: NonEmptyStr
    description: Optional[NonEmptyStr] = None
    metric: Optional[TrimmedStr] = None
    target_value: Optional[float] = Field(
        default=None, alias="targetValue", ge=0, allow_inf_nan=False
    )
    unit: Optional[TrimmedStr] = None


class Plan(DocumentModel):
    id: PyObjectId = Field(..., alias="_id")
    child_id: PyObjectId = Field(..., alias="childId")
    status: PlanStatus
    targets: List[PlanTarget] = Field(..., min_length=1)
    from_: UtcDatetime = Field(..., alias="from")
    to: Optional[UtcDatetime] = None
    notes: Optional[TrimmedStr] = None
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: Optional[UtcDatetime] = Field(default=None, alias="updatedAt")


class Child(DocumentModel):
    id: PyObjectId = Field(..., alias="_id")
    parent_id: PyObjectId = Field(..., alias="parentId")
    first_name: NonEmptyStr = Field(..., alias="firstName")
    last_name: Optional[TrimmedStr] = Field(default=None, alias="lastName")
    birth_date: UtcDatetime = Field(..., alias="birthDate")
    timezone: TrimmedStr = "UTC"
    active_plan_id: Optional[PyObjectId] = Field(default=None, alias="activePlanId")
    tags: List[NonEmptyStr] = Field(default_factory=list)
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: Optional[UtcDatetime] = Field(default=None, alias="updatedAt")
    meta: Optional[Dict[str, Any]] = None


class TranscriptSource(str, Enum):
    ZOOM = "zoom"
    MANUAL = "manual"
    UPLOAD = "upload"


class TranscriptMeta(DocumentModel):
    language: Optional[TrimmedStr] = None
    duration_seconds: Optional[float] = Field(
        default=None, alias="durationSeconds", ge=0, allow_inf_nan=False
    )
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class Transcript(DocumentModel):
    id: PyObjectId = Field(..., alias="_id")
    child_id: PyObjectId = Field(..., alias="childId")
    source: TranscriptSource
    text: NonEmptyStr
    meta: Optional[TranscriptMeta] = None
    created_at: UtcDatetime = Field(..., alias="createdAt")
    updated_at: Optional[UtcDatetime] = Field(default=None, alias="updatedAt")
