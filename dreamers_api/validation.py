"""Consistency rules for child events.

Validation happens in two passes over one complete candidate record. The
shape pass (``EventRecord``) checks types, enumerations and unknown keys. When
the shape is sound, every rule in ``EVENT_RULES`` runs and all violations are
collected; nothing short-circuits between rules.

Night wakes are checked against the *active night block*: the parent event the
wake links to, resolved by the caller for the same child. A wake without that
context is always rejected.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Sequence

from bson import ObjectId
from pydantic import ValidationError

from .schemas import EventRecord, EventType


@dataclass(frozen=True)
class NightBlockContext:
    event_id: ObjectId
    start_time: datetime
    end_time: Optional[datetime] = None

    def contains(self, moment: datetime) -> bool:
        if moment < self.start_time:
            return False
        if self.end_time is not None and moment > self.end_time:
            return False
        return True


@dataclass(frozen=True)
class EventValidationContext:
    active_night_block: Optional[NightBlockContext] = None


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class ValidationResult:
    event: Optional[EventRecord] = None
    violations: List[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.event is not None and not self.violations

    @property
    def messages(self) -> List[str]:
        return [str(violation) for violation in self.violations]


Rule = Callable[[EventRecord, EventValidationContext], List[Violation]]


def check_temporal_consistency(
    event: EventRecord, context: EventValidationContext
) -> List[Violation]:
    if event.end_time is not None and event.end_time <= event.start_time:
        return [Violation("endTime", "endTime must be after startTime")]
    return []


def check_night_feeding(event: EventRecord, context: EventValidationContext) -> List[Violation]:
    if event.type != EventType.FEEDING_SOLIDS:
        return []
    if event.meta is not None and event.meta.night_feeding:
        return [
            Violation(
                "meta.nightFeeding",
                "feeding_solids can never be marked as a night feeding",
            )
        ]
    return []


def check_night_wake_within_block(
    event: EventRecord, context: EventValidationContext
) -> List[Violation]:
    if event.type != EventType.NIGHT_WAKE:
        return []

    block = context.active_night_block
    if block is None:
        return [Violation("type", "night_wake requires an active night block")]

    if event.parent_event_id is None:
        return [
            Violation("parentEventId", "night_wake requires parentEventId linked to the night block")
        ]

    violations: List[Violation] = []
    if event.parent_event_id != block.event_id:
        violations.append(
            Violation("parentEventId", "night_wake must be linked to the active night block")
        )
    if not block.contains(event.start_time):
        violations.append(
            Violation("startTime", "night_wake must occur within the active night block window")
        )
    return violations


EVENT_RULES: Sequence[Rule] = (
    check_temporal_consistency,
    check_night_feeding,
    check_night_wake_within_block,
)


def _shape_violations(error: ValidationError) -> List[Violation]:
    violations = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue["loc"]) or "event"
        violations.append(Violation(path, issue["msg"]))
    return violations


def validate_event(
    candidate: Mapping[str, Any],
    context: Optional[EventValidationContext] = None,
    *,
    rules: Sequence[Rule] = EVENT_RULES,
) -> ValidationResult:
    """Validate a full candidate event document against every rule."""

    try:
        event = EventRecord.model_validate(dict(candidate))
    except ValidationError as exc:
        return ValidationResult(violations=_shape_violations(exc))

    resolved_context = context or EventValidationContext()
    violations: List[Violation] = []
    for rule in rules:
        violations.extend(rule(event, resolved_context))
    return ValidationResult(event=event, violations=violations)
