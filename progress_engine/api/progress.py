"""Progress event ingestion and progress reads.

  POST /v1/progress/events
    → validate against the course structure
    → apply to course / path progress, history, streak, rollups
    → evaluate achievements, invalidate the cached summary
    → 202 Accepted with what changed

  GET /v1/progress/{user_id}/courses/{course_id}          (read-through cache)
  GET /v1/progress/{user_id}/courses/{course_id}/concepts/{concept_id}/mastery
  GET /v1/progress/{user_id}/paths/{path_id}
"""

from __future__ import annotations

import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict

from progress_engine.api.dependencies import engine_errors, get_engine
from progress_engine.services.engine import LearningEngine
from progress_engine.services.ingest import EventCandidate

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class FromAttrs(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ActivityEventIn(BaseModel):
    user_id: str
    course_id: str
    concept_id: str
    topic_id: str
    type: str  # video|article|coding|quiz
    completed: bool = False
    time_spent_seconds: int = 0
    occurred_at: datetime.datetime | None = None
    event_id: str | None = None
    details: dict[str, Any] | None = None


class TopicProgressOut(FromAttrs):
    topic_id: str
    completed: bool
    time_spent_seconds: int
    completed_at: datetime.datetime | None


class ConceptProgressOut(FromAttrs):
    concept_id: str
    total_topics: int
    progress: float
    completed: bool
    completed_at: datetime.datetime | None
    topics_progress: list[TopicProgressOut]


class CourseProgressOut(FromAttrs):
    user_id: str
    course_id: str
    overall_progress: float
    status: str
    enrolled_at: datetime.datetime | None
    last_accessed_at: datetime.datetime | None
    completed_at: datetime.datetime | None
    concepts_progress: list[ConceptProgressOut]


class MasteryOut(FromAttrs):
    score: int
    label: str
    color: str
    completion_ratio: float
    average_quiz_score: float | None
    problem_solve_ratio: float | None


class StreakOut(FromAttrs):
    user_id: str
    current_streak: int
    longest_streak: int
    last_active_date: datetime.date | None


class RewardOut(FromAttrs):
    experience_points: int
    badge: str | None
    title: str | None


class UnlockedOut(FromAttrs):
    achievement_id: str
    title: str
    step: int | None
    reward: RewardOut
    unlocked_at: datetime.datetime


class IngestOut(BaseModel):
    event_id: str | None
    duplicate: bool
    course_id: str
    concept_id: str
    overall_progress: float
    concept_progress: float
    concept_completed: bool
    course_completed: bool
    mastery: MasteryOut
    streak: StreakOut
    unlocked: list[UnlockedOut]
    completed_paths: list[str]


class PathProgressOut(FromAttrs):
    user_id: str
    path_id: str
    step_progress: dict[str, float]
    step_status: dict[str, str]
    completed_steps: list[str]
    current_step: str | None
    overall_progress: float
    status: str
    enrolled_at: datetime.datetime | None
    last_accessed_at: datetime.datetime | None
    completed_at: datetime.datetime | None


Engine = Annotated[LearningEngine, Depends(get_engine)]


@router.post(
    "/events",
    response_model=IngestOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_event(body: ActivityEventIn, engine: Engine) -> IngestOut:
    with engine_errors():
        result = await engine.ingest(EventCandidate(**body.model_dump()))

    concept = result.progress.concept(result.event.concept_id)
    return IngestOut(
        event_id=result.event.event_id,
        duplicate=result.duplicate,
        course_id=result.event.course_id,
        concept_id=result.event.concept_id,
        overall_progress=result.progress.overall_progress,
        concept_progress=concept.progress if concept is not None else 0.0,
        concept_completed=result.concept_completed,
        course_completed=result.course_completed,
        mastery=MasteryOut.model_validate(result.mastery),
        streak=StreakOut.model_validate(result.streak),
        unlocked=[UnlockedOut.model_validate(u) for u in result.unlocked],
        completed_paths=list(result.completed_paths),
    )


@router.get("/{user_id}/courses/{course_id}", response_model=CourseProgressOut)
async def get_course_progress(user_id: str, course_id: str, engine: Engine) -> CourseProgressOut:
    with engine_errors():
        progress = await engine.course_progress(user_id, course_id)
    return CourseProgressOut.model_validate(progress)


@router.get(
    "/{user_id}/courses/{course_id}/concepts/{concept_id}/mastery",
    response_model=MasteryOut,
)
async def get_concept_mastery(
    user_id: str, course_id: str, concept_id: str, engine: Engine
) -> MasteryOut:
    with engine_errors():
        mastery = await engine.concept_mastery(user_id, course_id, concept_id)
    return MasteryOut.model_validate(mastery)


@router.get("/{user_id}/paths/{path_id}", response_model=PathProgressOut)
async def get_path_progress(user_id: str, path_id: str, engine: Engine) -> PathProgressOut:
    with engine_errors():
        progress = await engine.path_progress(user_id, path_id)
    return PathProgressOut.model_validate(progress)
