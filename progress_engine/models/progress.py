from __future__ import annotations

import datetime
from dataclasses import dataclass, field

from progress_engine.models.ledger import AppliedEvent


@dataclass(frozen=True, slots=True)
class TopicProgress:
    topic_id: str
    completed: bool = False
    time_spent_seconds: int = 0
    completed_at: datetime.datetime | None = None


@dataclass(frozen=True, slots=True)
class ConceptProgress:
    concept_id: str
    total_topics: int
    topics_progress: tuple[TopicProgress, ...] = ()
    progress: float = 0.0  # 0-100, completed/total topics
    completed: bool = False
    completed_at: datetime.datetime | None = None

    def topic(self, topic_id: str) -> TopicProgress | None:
        for tp in self.topics_progress:
            if tp.topic_id == topic_id:
                return tp
        return None

    @property
    def completed_topics(self) -> int:
        return sum(1 for tp in self.topics_progress if tp.completed)

    @property
    def time_spent_seconds(self) -> int:
        return sum(tp.time_spent_seconds for tp in self.topics_progress)


@dataclass(frozen=True, slots=True)
class CourseProgress:
    """Projection of a learner's activity in one course.

    Owned by the (user_id, course_id) pair.  ``applied_events`` maps
    each applied event_id to its payload fingerprint so a retried event
    is recognised and skipped.  Entries past the retention window are
    dropped the next time the document changes.
    """

    user_id: str
    course_id: str
    concepts_progress: tuple[ConceptProgress, ...] = ()
    overall_progress: float = 0.0
    status: str = "not_started"  # not_started|in_progress|completed
    enrolled_at: datetime.datetime | None = None
    last_accessed_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
    applied_events: dict[str, AppliedEvent] = field(default_factory=dict)

    def concept(self, concept_id: str) -> ConceptProgress | None:
        for cp in self.concepts_progress:
            if cp.concept_id == concept_id:
                return cp
        return None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def time_spent_seconds(self) -> int:
        return sum(cp.time_spent_seconds for cp in self.concepts_progress)

    @property
    def completed_concept_ids(self) -> frozenset[str]:
        return frozenset(cp.concept_id for cp in self.concepts_progress if cp.completed)

    @staticmethod
    def new(
        *, user_id: str, course_id: str, enrolled_at: datetime.datetime | None = None
    ) -> CourseProgress:
        return CourseProgress(user_id=user_id, course_id=course_id, enrolled_at=enrolled_at)


@dataclass(frozen=True, slots=True)
class UpdatedProgressSnapshot:
    """What one application of an event changed."""

    progress: CourseProgress
    concept_id: str
    duplicate: bool = False
    topic_newly_completed: bool = False
    concept_newly_completed: bool = False
    course_newly_completed: bool = False


@dataclass(frozen=True, slots=True)
class PathProgress:
    user_id: str
    path_id: str
    step_progress: dict[str, float] = field(default_factory=dict)
    # step id -> locked|not_started|in_progress|completed
    step_status: dict[str, str] = field(default_factory=dict)
    completed_steps: frozenset[str] = frozenset()
    current_step: str | None = None
    overall_progress: float = 0.0
    status: str = "active"  # active|completed
    enrolled_at: datetime.datetime | None = None
    last_accessed_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
