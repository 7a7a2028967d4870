"""Mock test submission and statistics.

  POST /v1/assessments/{test_id}/attempts
    → next attempt number for (user, test), max_attempts enforced
    → grade: exact-set objective answers, all-cases-pass coding
    → over the test's duration: status time_expired, never passed
    → percentile against every earlier attempt on the test
    → best score into the learning history, achievements evaluated
    → 201 with the graded attempt

  GET /v1/assessments/{test_id}/stats
    → attempts, average score, learner pass rate, per-question correct rate
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from progress_engine.api.dependencies import engine_errors
from progress_engine.api.progress import Engine, FromAttrs, UnlockedOut
from progress_engine.models.assessment import QuestionResponse, TestCaseResult

router = APIRouter(prefix="/v1/assessments", tags=["assessments"])


class TestCaseResultIn(BaseModel):
    test_case_id: str
    passed: bool


class ResponseIn(BaseModel):
    question_id: str
    selected_answers: list[int] = Field(default_factory=list)
    test_case_results: list[TestCaseResultIn] = Field(default_factory=list)
    time_spent_seconds: int = 0


class AttemptIn(BaseModel):
    user_id: str
    responses: list[ResponseIn]
    time_spent_seconds: int = 0


class GradedResponseOut(FromAttrs):
    question_id: str
    question_type: str
    is_correct: bool
    points_earned: int
    max_points: int


class PerformanceOut(FromAttrs):
    key: str
    attempted: int
    correct: int
    accuracy: float


class AnalysisOut(FromAttrs):
    topic_performance: list[PerformanceOut]
    difficulty_performance: list[PerformanceOut]
    strengths: list[str]
    weaknesses: list[str]


class AttemptOut(FromAttrs):
    user_id: str
    mock_test_id: str
    attempt_number: int
    total_score: float
    total_points: int
    max_points: int
    passed: bool
    percentile: float
    submitted_at: datetime.datetime
    time_spent_seconds: int
    status: str
    responses: list[GradedResponseOut]
    analysis: AnalysisOut


class AttemptResultOut(BaseModel):
    attempt: AttemptOut
    unlocked: list[UnlockedOut]


@router.post(
    "/{test_id}/attempts",
    response_model=AttemptResultOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_attempt(test_id: str, body: AttemptIn, engine: Engine) -> AttemptResultOut:
    responses = [
        QuestionResponse(
            question_id=r.question_id,
            selected_answers=frozenset(r.selected_answers),
            test_case_results=tuple(
                TestCaseResult(t.test_case_id, t.passed) for t in r.test_case_results
            ),
            time_spent_seconds=r.time_spent_seconds,
        )
        for r in body.responses
    ]
    with engine_errors():
        result = await engine.submit_attempt(
            body.user_id, test_id, responses, time_spent_seconds=body.time_spent_seconds
        )
    return AttemptResultOut(
        attempt=AttemptOut.model_validate(result.attempt),
        unlocked=[UnlockedOut.model_validate(u) for u in result.unlocked],
    )


class QuestionStatsOut(FromAttrs):
    question_id: str
    attempts: int
    correct_rate: float


class MockTestStatsOut(FromAttrs):
    test_id: str
    total_attempts: int
    average_score: float
    pass_rate: float
    questions: list[QuestionStatsOut]


@router.get("/{test_id}/stats", response_model=MockTestStatsOut)
async def get_stats(test_id: str, engine: Engine) -> MockTestStatsOut:
    with engine_errors():
        stats = await engine.mock_test_stats(test_id)
    return MockTestStatsOut.model_validate(stats)
