from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal


class ActivityType(StrEnum):
    VIDEO = "video"
    ARTICLE = "article"
    CODING = "coding"
    QUIZ = "quiz"


@dataclass(frozen=True, slots=True)
class VideoDetails:
    watch_percentage: float = 0.0
    kind: Literal["video"] = "video"


@dataclass(frozen=True, slots=True)
class ArticleDetails:
    read_percentage: float = 0.0
    kind: Literal["article"] = "article"


@dataclass(frozen=True, slots=True)
class CodingDetails:
    attempts: int = 1
    hints_used: int = 0
    solved: bool = False
    kind: Literal["coding"] = "coding"


@dataclass(frozen=True, slots=True)
class QuizDetails:
    score: float = 0.0  # percentage
    questions_answered: int = 0
    kind: Literal["quiz"] = "quiz"


ActivityDetails = VideoDetails | ArticleDetails | CodingDetails | QuizDetails


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One learner action on one topic.  Immutable, append-only.

    ``event_id`` is the caller's idempotency identity: an event carrying
    an id that was already applied to the same course progress is
    skipped instead of adding its time a second time.
    """

    user_id: str
    course_id: str
    concept_id: str
    topic_id: str
    type: ActivityType
    completed: bool
    time_spent_seconds: int
    occurred_at: datetime.datetime
    event_id: str | None = None
    details: ActivityDetails | None = None

    def fingerprint(self) -> str:
        """Stable digest of the payload, used to detect event_id reuse."""
        return "|".join(
            (
                self.user_id,
                self.course_id,
                self.concept_id,
                self.topic_id,
                self.type.value,
                str(self.completed),
                str(self.time_spent_seconds),
                repr(self.details),
            )
        )

    @property
    def quiz_score(self) -> float | None:
        if isinstance(self.details, QuizDetails):
            return self.details.score
        return None

    @property
    def solved(self) -> bool:
        """Coding outcome: explicit details win over the completed flag."""
        if isinstance(self.details, CodingDetails):
            return self.details.solved
        return self.completed
