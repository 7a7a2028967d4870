"""Mock test grading.

Scoring is binary per question, no partial credit:

  mcq / multiple_select / true_false   correct iff the selected option set
                                       equals the answer key exactly
  coding                               correct iff every declared test case,
                                       hidden or visible, has a passing
                                       result; a missing result is a failure

    total_score = 100 × Σ points_earned / Σ points
    percentile  = 100 × (# prior attempts scoring strictly lower) / (# prior)

Percentile is a snapshot taken at submission; earlier attempts are not
re-ranked when later ones arrive.

A timed test (duration_seconds > 0) still grades an attempt that ran
over, but stores it as ``time_expired`` and never as passed.
"""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from collections.abc import Sequence

from progress_engine.core.metrics import ATTEMPTS_GRADED
from progress_engine.models.assessment import (
    AttemptAnalysis,
    AttemptSubmission,
    GradedResponse,
    MockTest,
    MockTestAttempt,
    MockTestStats,
    Performance,
    Question,
    QuestionResponse,
    QuestionStats,
    QuestionType,
)
from progress_engine.repos.attempt_repo import AttemptRepo
from progress_engine.repos.catalog_repo import CourseCatalog
from progress_engine.services.concurrency import SerializedWriter
from progress_engine.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STRENGTH_ACCURACY = 80.0
WEAKNESS_ACCURACY = 50.0


def grade_response(question: Question, response: QuestionResponse | None) -> GradedResponse:
    if response is None:
        correct = False
    elif question.type == QuestionType.CODING:
        passed = {r.test_case_id for r in response.test_case_results if r.passed}
        correct = all(tc.test_case_id in passed for tc in question.test_cases)
    else:
        correct = response.selected_answers == question.correct_answers
    return GradedResponse(
        question_id=question.question_id,
        question_type=question.type,
        is_correct=correct,
        points_earned=question.points if correct else 0,
        max_points=question.points,
    )


def percentile_of(score: float, prior_scores: Sequence[float]) -> float:
    if not prior_scores:
        return 100.0
    lower = sum(1 for s in prior_scores if s < score)
    return 100.0 * lower / len(prior_scores)


def _performance(groups: dict[str, list[bool]]) -> tuple[Performance, ...]:
    return tuple(
        Performance(key=key, attempted=len(results), correct=sum(results))
        for key, results in sorted(groups.items())
    )


def analyze(test: MockTest, graded: Sequence[GradedResponse]) -> AttemptAnalysis:
    by_topic: dict[str, list[bool]] = defaultdict(list)
    by_difficulty: dict[str, list[bool]] = defaultdict(list)
    for g in graded:
        question = test.question(g.question_id)
        if question is None:
            continue
        by_topic[question.topic or "general"].append(g.is_correct)
        by_difficulty[question.difficulty].append(g.is_correct)

    topics = _performance(by_topic)
    return AttemptAnalysis(
        topic_performance=topics,
        difficulty_performance=_performance(by_difficulty),
        strengths=tuple(p.key for p in topics if p.accuracy >= STRENGTH_ACCURACY),
        weaknesses=tuple(p.key for p in topics if p.accuracy < WEAKNESS_ACCURACY),
    )


def grade_attempt(
    submission: AttemptSubmission, test: MockTest, prior_scores: Sequence[float]
) -> MockTestAttempt:
    responses: dict[str, QuestionResponse] = {}
    for r in submission.responses:
        if test.question(r.question_id) is None:
            raise ValidationError(f"question {r.question_id!r} is not part of test {test.test_id!r}")
        if r.question_id in responses:
            raise ValidationError(f"question {r.question_id!r} answered more than once")
        responses[r.question_id] = r

    graded = [grade_response(q, responses.get(q.question_id)) for q in test.questions]
    earned = sum(g.points_earned for g in graded)
    max_points = test.max_points
    total_score = 100.0 * earned / max_points if max_points else 0.0
    expired = 0 < test.duration_seconds < submission.time_spent_seconds

    return MockTestAttempt(
        user_id=submission.user_id,
        mock_test_id=test.test_id,
        attempt_number=submission.attempt_number,
        responses=tuple(graded),
        total_score=total_score,
        total_points=earned,
        max_points=max_points,
        passed=not expired and total_score >= test.passing_score,
        percentile=percentile_of(total_score, prior_scores),
        submitted_at=submission.submitted_at,
        time_spent_seconds=submission.time_spent_seconds,
        status="time_expired" if expired else "completed",
        analysis=analyze(test, graded),
    )


def summarize_attempts(test: MockTest, attempts: Sequence[MockTestAttempt]) -> MockTestStats:
    if not attempts:
        return MockTestStats(test_id=test.test_id)
    learners = {a.user_id for a in attempts}
    passers = {a.user_id for a in attempts if a.passed}
    correct: dict[str, int] = defaultdict(int)
    for a in attempts:
        for g in a.responses:
            correct[g.question_id] += g.is_correct
    return MockTestStats(
        test_id=test.test_id,
        total_attempts=len(attempts),
        average_score=sum(a.total_score for a in attempts) / len(attempts),
        pass_rate=100.0 * len(passers) / len(learners),
        questions=tuple(
            QuestionStats(
                question_id=q.question_id,
                attempts=len(attempts),
                correct_rate=100.0 * correct[q.question_id] / len(attempts),
            )
            for q in test.questions
        ),
    )


class AssessmentService:
    def __init__(
        self, catalog: CourseCatalog, attempts: AttemptRepo, writer: SerializedWriter
    ) -> None:
        self._catalog = catalog
        self._attempts = attempts
        self._writer = writer

    async def submit(
        self,
        user_id: str,
        test_id: str,
        responses: Sequence[QuestionResponse],
        *,
        submitted_at: datetime.datetime,
        time_spent_seconds: int = 0,
    ) -> MockTestAttempt:
        """Grade and store the user's next attempt on ``test_id``."""
        test = await self._catalog.get_mock_test(test_id)
        if test is None:
            raise NotFoundError(f"mock test {test_id!r} not found")
        if time_spent_seconds < 0:
            raise ValidationError("time_spent_seconds must be >= 0")

        async def attempt() -> MockTestAttempt:
            mine = await self._attempts.list_for_user(test_id, user_id)
            if test.max_attempts and len(mine) >= test.max_attempts:
                raise ValidationError(
                    f"attempt limit reached for {test_id!r} ({test.max_attempts})"
                )
            prior = [a.total_score for a in await self._attempts.list_for_test(test_id)]
            submission = AttemptSubmission(
                user_id=user_id,
                mock_test_id=test_id,
                attempt_number=max((a.attempt_number for a in mine), default=0) + 1,
                responses=tuple(responses),
                submitted_at=submitted_at,
                time_spent_seconds=time_spent_seconds,
            )
            graded = grade_attempt(submission, test, prior)
            await self._attempts.add(graded)
            return graded

        graded = await self._writer.run(f"attempt:{test_id}:{user_id}", "mock_test_attempt", attempt)
        ATTEMPTS_GRADED.labels(passed=str(graded.passed).lower()).inc()
        logger.info(
            "Graded attempt %d on %s: %.1f%% passed=%s",
            graded.attempt_number,
            test_id,
            graded.total_score,
            graded.passed,
            extra={"user_id": user_id, "attempt": graded.attempt_number},
        )
        return graded

    async def stats(self, test_id: str) -> MockTestStats:
        test = await self._catalog.get_mock_test(test_id)
        if test is None:
            raise NotFoundError(f"mock test {test_id!r} not found")
        return summarize_attempts(test, await self._attempts.list_for_test(test_id))
