"""Event ingest: turn an untrusted candidate into a validated ActivityEvent.

Nothing here mutates state.  A candidate is rejected with
ValidationError when:

  - an id field is blank
  - ``type`` is not video|article|coding|quiz
  - ``time_spent_seconds`` is negative
  - ``details`` does not decode as the variant for ``type``
  - ``occurred_at`` carries no timezone
  - the course/concept/topic triple is not in the course structure
  - the topic is declared with a different kind than ``type``

The structure lookup runs under a timeout; if it expires the event is
aborted with CollaboratorTimeoutError before anything is written.
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from progress_engine.models.activity import (
    ActivityDetails,
    ActivityEvent,
    ActivityType,
    ArticleDetails,
    CodingDetails,
    QuizDetails,
    VideoDetails,
)
from progress_engine.models.course import CourseStructure
from progress_engine.repos.catalog_repo import CourseStructureLookup
from progress_engine.services.errors import CollaboratorTimeoutError, ValidationError

_DETAIL_ADAPTERS: dict[ActivityType, TypeAdapter] = {
    ActivityType.VIDEO: TypeAdapter(VideoDetails),
    ActivityType.ARTICLE: TypeAdapter(ArticleDetails),
    ActivityType.CODING: TypeAdapter(CodingDetails),
    ActivityType.QUIZ: TypeAdapter(QuizDetails),
}


@dataclass(frozen=True, slots=True)
class EventCandidate:
    """Loosely typed event as it arrives from a client."""

    user_id: str
    course_id: str
    concept_id: str
    topic_id: str
    type: str
    completed: bool = False
    time_spent_seconds: int = 0
    occurred_at: datetime.datetime | None = None
    event_id: str | None = None
    details: Mapping[str, object] | None = None


def _decode_details(kind: ActivityType, raw: Mapping[str, object] | None) -> ActivityDetails | None:
    if raw is None:
        return None
    declared = raw.get("kind", kind.value)
    if declared != kind.value:
        raise ValidationError(f"details of kind {declared!r} do not match event type {kind.value!r}")
    try:
        details = _DETAIL_ADAPTERS[kind].validate_python({**raw, "kind": kind.value})
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid {kind.value} details: {exc.errors()[0]['msg']}") from None

    for name in ("watch_percentage", "read_percentage", "score"):
        value = getattr(details, name, None)
        if value is not None and not 0 <= value <= 100:
            raise ValidationError(f"{name} must be within 0..100 (got {value})")
    if isinstance(details, CodingDetails) and (details.attempts < 0 or details.hints_used < 0):
        raise ValidationError("coding attempts and hints_used must be >= 0")
    return details


def normalize(candidate: EventCandidate, *, now: datetime.datetime) -> ActivityEvent:
    """Shape checks that need no collaborator."""
    for name in ("user_id", "course_id", "concept_id", "topic_id"):
        if not str(getattr(candidate, name) or "").strip():
            raise ValidationError(f"{name} is required")

    try:
        kind = ActivityType(candidate.type)
    except ValueError:
        raise ValidationError(
            f"type must be one of {', '.join(t.value for t in ActivityType)} (got {candidate.type!r})"
        ) from None

    if candidate.time_spent_seconds < 0:
        raise ValidationError("time_spent_seconds must be >= 0")

    occurred_at = candidate.occurred_at or now
    if occurred_at.tzinfo is None or occurred_at.utcoffset() is None:
        raise ValidationError("occurred_at must carry a timezone offset")

    if candidate.event_id is not None and not candidate.event_id.strip():
        raise ValidationError("event_id must not be blank")

    return ActivityEvent(
        user_id=candidate.user_id.strip(),
        course_id=candidate.course_id.strip(),
        concept_id=candidate.concept_id.strip(),
        topic_id=candidate.topic_id.strip(),
        type=kind,
        completed=bool(candidate.completed),
        time_spent_seconds=int(candidate.time_spent_seconds),
        occurred_at=occurred_at.astimezone(datetime.UTC),
        event_id=candidate.event_id,
        details=_decode_details(kind, candidate.details),
    )


class EventIngest:
    def __init__(self, lookup: CourseStructureLookup, *, timeout_seconds: float) -> None:
        self._lookup = lookup
        self._timeout = timeout_seconds

    async def structure_for(self, course_id: str) -> CourseStructure | None:
        try:
            return await asyncio.wait_for(self._lookup.get_structure(course_id), self._timeout)
        except TimeoutError:
            raise CollaboratorTimeoutError(
                f"course structure lookup for {course_id!r} exceeded {self._timeout}s"
            ) from None

    async def resolve(
        self, candidate: EventCandidate, *, now: datetime.datetime
    ) -> tuple[ActivityEvent, CourseStructure]:
        """Validate and return the event with the structure it was checked against."""
        event = normalize(candidate, now=now)

        structure = await self.structure_for(event.course_id)
        if structure is None:
            raise ValidationError(f"unknown course {event.course_id!r}")
        concept = structure.concept(event.concept_id)
        if concept is None:
            raise ValidationError(
                f"concept {event.concept_id!r} is not part of course {event.course_id!r}"
            )
        topic = concept.topic(event.topic_id)
        if topic is None:
            raise ValidationError(
                f"topic {event.topic_id!r} is not part of concept {event.concept_id!r}"
            )
        if topic.kind != event.type:
            raise ValidationError(
                f"topic {event.topic_id!r} is a {topic.kind.value}, not a {event.type.value}"
            )
        return event, structure

    async def validate(
        self, candidate: EventCandidate, *, now: datetime.datetime | None = None
    ) -> ActivityEvent:
        event, _ = await self.resolve(candidate, now=now or datetime.datetime.now(datetime.UTC))
        return event
