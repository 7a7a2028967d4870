"""Course and learning-path enrollment.

  POST /v1/courses/{course_id}/enroll   → 201 new CourseProgress
                                          200 if already enrolled
  POST /v1/paths/{path_id}/enroll       → same, for PathProgress

Enrolling is idempotent: the second call returns the existing record.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from progress_engine.api.dependencies import engine_errors
from progress_engine.api.progress import CourseProgressOut, Engine, PathProgressOut

router = APIRouter(tags=["enrollment"])


class EnrollIn(BaseModel):
    user_id: str


@router.post(
    "/v1/courses/{course_id}/enroll",
    response_model=CourseProgressOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: str, body: EnrollIn, response: Response, engine: Engine
) -> CourseProgressOut:
    with engine_errors():
        progress, created = await engine.enroll(body.user_id, course_id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return CourseProgressOut.model_validate(progress)


@router.post(
    "/v1/paths/{path_id}/enroll",
    response_model=PathProgressOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_path(
    path_id: str, body: EnrollIn, response: Response, engine: Engine
) -> PathProgressOut:
    with engine_errors():
        progress, created = await engine.enroll_path(body.user_id, path_id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return PathProgressOut.model_validate(progress)
