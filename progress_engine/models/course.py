from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from progress_engine.models.activity import ActivityType


@dataclass(frozen=True, slots=True)
class TopicRef:
    topic_id: str
    kind: ActivityType
    position: int = 0


@dataclass(frozen=True, slots=True)
class ConceptStructure:
    concept_id: str
    topics: tuple[TopicRef, ...] = ()
    title: str = ""

    @property
    def topic_count(self) -> int:
        return len(self.topics)

    def topic(self, topic_id: str) -> TopicRef | None:
        for t in self.topics:
            if t.topic_id == topic_id:
                return t
        return None

    def count_of(self, kind: ActivityType) -> int:
        return sum(1 for t in self.topics if t.kind == kind)


@dataclass(frozen=True, slots=True)
class CourseStructure:
    """Read-only tree of a course: concept -> ordered topics.

    Supplied by the course catalog; the engine never mutates it.
    """

    course_id: str
    concepts: tuple[ConceptStructure, ...] = ()
    title: str = ""
    category: str = ""

    def concept(self, concept_id: str) -> ConceptStructure | None:
        for c in self.concepts:
            if c.concept_id == concept_id:
                return c
        return None

    @property
    def topic_count(self) -> int:
        return sum(c.topic_count for c in self.concepts)


class StepKind(StrEnum):
    COURSE = "course"
    CONCEPT = "concept"
    TOPIC = "topic"


@dataclass(frozen=True, slots=True)
class CompletionCriteria:
    """Extra bars a step must clear besides reaching 100% progress.

    ``minimum_score`` is a percentage compared with the average latest
    quiz score over the step's concepts.  ``mastery_threshold`` is on a
    0-10 scale and compared with their mean mastery score divided by 10.
    """

    minimum_score: float | None = None
    mastery_threshold: float | None = None

    def __post_init__(self) -> None:
        if self.minimum_score is not None and not 0 <= self.minimum_score <= 100:
            raise ValueError(f"minimum_score must be within 0..100 (got {self.minimum_score})")
        if self.mastery_threshold is not None and not 0 <= self.mastery_threshold <= 10:
            raise ValueError(
                f"mastery_threshold must be within 0..10 (got {self.mastery_threshold})"
            )


@dataclass(frozen=True, slots=True)
class PathStep:
    step_id: str
    order: int
    kind: StepKind
    course_id: str
    concept_id: str | None = None
    topic_id: str | None = None
    title: str = ""
    prerequisites: tuple[str, ...] = ()  # step ids that must be completed first
    completion_criteria: CompletionCriteria = field(default_factory=CompletionCriteria)


@dataclass(frozen=True, slots=True)
class LearningPath:
    path_id: str
    title: str
    steps: tuple[PathStep, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        orders = [s.order for s in self.steps]
        if orders != sorted(orders) or len(set(orders)) != len(orders):
            raise ValueError(f"path {self.path_id}: steps must be in strictly ascending order")
        earlier: set[str] = set()
        for s in self.steps:
            if s.kind in (StepKind.CONCEPT, StepKind.TOPIC) and not s.concept_id:
                raise ValueError(
                    f"path {self.path_id}: {s.kind.value} step {s.step_id} needs a concept_id"
                )
            if s.kind == StepKind.TOPIC and not s.topic_id:
                raise ValueError(f"path {self.path_id}: topic step {s.step_id} needs a topic_id")
            for prerequisite in s.prerequisites:
                if prerequisite not in earlier:
                    raise ValueError(
                        f"path {self.path_id}: step {s.step_id} requires {prerequisite!r}, "
                        "which is not an earlier step"
                    )
            earlier.add(s.step_id)

    @property
    def course_ids(self) -> frozenset[str]:
        return frozenset(s.course_id for s in self.steps)
