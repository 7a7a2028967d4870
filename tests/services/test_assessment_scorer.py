from __future__ import annotations

import asyncio
import datetime
from dataclasses import replace

import pytest

from progress_engine.models.assessment import (
    AttemptSubmission,
    MockTest,
    Question,
    QuestionResponse,
    QuestionType,
    TestCase,
    TestCaseResult,
)
from progress_engine.repos.attempt_repo import AttemptRepo
from progress_engine.repos.catalog_repo import InMemoryCourseCatalog
from progress_engine.repos.document_store import InMemoryDocumentStore
from progress_engine.services.assessment_scorer import (
    AssessmentService,
    grade_attempt,
    grade_response,
    percentile_of,
    summarize_attempts,
)
from progress_engine.services.concurrency import SerializedWriter
from progress_engine.services.errors import NotFoundError, ValidationError

AT = datetime.datetime(2026, 3, 2, 9, 0, tzinfo=datetime.UTC)

MULTI = Question(
    "m1", QuestionType.MULTIPLE_SELECT, points=10, topic="loops", correct_answers=frozenset({0, 2})
)
CODE = Question(
    "c1",
    QuestionType.CODING,
    points=20,
    topic="functions",
    difficulty="Hard",
    test_cases=(TestCase("a"), TestCase("b", is_hidden=True)),
)
TF = Question("t1", QuestionType.TRUE_FALSE, points=10, topic="", correct_answers=frozenset({1}))

TEST = MockTest(
    test_id="mock", title="Mock", questions=(MULTI, CODE, TF), passing_score=60.0, max_attempts=2
)


def _submit(*responses: QuestionResponse) -> AttemptSubmission:
    return AttemptSubmission(
        user_id="u1",
        mock_test_id="mock",
        attempt_number=1,
        responses=responses,
        submitted_at=AT,
    )


# ---- grading rules ----


def test_multiple_select_requires_exact_set() -> None:
    partial = QuestionResponse("m1", selected_answers=frozenset({0}))
    exact = QuestionResponse("m1", selected_answers=frozenset({0, 2}))
    extra = QuestionResponse("m1", selected_answers=frozenset({0, 1, 2}))
    assert grade_response(MULTI, partial).is_correct is False
    assert grade_response(MULTI, exact).points_earned == 10
    assert grade_response(MULTI, extra).is_correct is False


def test_coding_requires_every_case_including_hidden() -> None:
    visible_only = QuestionResponse("c1", test_case_results=(TestCaseResult("a", True),))
    all_pass = QuestionResponse(
        "c1", test_case_results=(TestCaseResult("a", True), TestCaseResult("b", True))
    )
    hidden_fail = QuestionResponse(
        "c1", test_case_results=(TestCaseResult("a", True), TestCaseResult("b", False))
    )
    assert grade_response(CODE, visible_only).is_correct is False
    assert grade_response(CODE, all_pass).is_correct is True
    assert grade_response(CODE, hidden_fail).is_correct is False


def test_unanswered_question_scores_zero() -> None:
    graded = grade_response(TF, None)
    assert graded.is_correct is False
    assert graded.points_earned == 0
    assert graded.max_points == 10


# ---- percentile ----


def test_percentile_counts_strictly_lower() -> None:
    assert percentile_of(70.0, [50.0, 70.0, 90.0, 60.0]) == 50.0


def test_first_attempt_percentile_is_100() -> None:
    assert percentile_of(10.0, []) == 100.0


# ---- whole attempt ----


def test_grade_attempt_totals_and_analysis() -> None:
    attempt = grade_attempt(
        _submit(
            QuestionResponse("m1", selected_answers=frozenset({0, 2})),
            QuestionResponse("t1", selected_answers=frozenset({1})),
        ),
        TEST,
        prior_scores=[80.0],
    )
    assert attempt.total_points == 20
    assert attempt.max_points == 40
    assert attempt.total_score == 50.0
    assert attempt.passed is False
    assert attempt.percentile == 0.0
    assert attempt.analysis.strengths == ("general", "loops")
    assert attempt.analysis.weaknesses == ("functions",)
    by_difficulty = {p.key: p.correct for p in attempt.analysis.difficulty_performance}
    assert by_difficulty == {"Hard": 0, "Medium": 2}


def test_grade_attempt_rejects_unknown_question() -> None:
    with pytest.raises(ValidationError, match="not part of test"):
        grade_attempt(_submit(QuestionResponse("zzz")), TEST, [])


def test_grade_attempt_rejects_duplicate_answer() -> None:
    with pytest.raises(ValidationError, match="more than once"):
        grade_attempt(_submit(QuestionResponse("m1"), QuestionResponse("m1")), TEST, [])


PERFECT = (
    QuestionResponse("m1", selected_answers=frozenset({0, 2})),
    QuestionResponse(
        "c1", test_case_results=(TestCaseResult("a", True), TestCaseResult("b", True))
    ),
    QuestionResponse("t1", selected_answers=frozenset({1})),
)


@pytest.mark.parametrize(
    "time_spent, status, passed",
    [(600, "completed", True), (601, "time_expired", False)],
)
def test_overrunning_the_duration_expires_the_attempt(time_spent, status, passed) -> None:
    timed = replace(TEST, duration_seconds=600)
    submission = replace(_submit(*PERFECT), time_spent_seconds=time_spent)
    attempt = grade_attempt(submission, timed, [])
    assert attempt.total_score == 100.0
    assert attempt.status == status
    assert attempt.passed is passed


def test_untimed_test_never_expires() -> None:
    submission = replace(_submit(*PERFECT), time_spent_seconds=86_400)
    attempt = grade_attempt(submission, TEST, [])
    assert attempt.status == "completed"
    assert attempt.passed is True


def test_summarize_without_attempts() -> None:
    stats = summarize_attempts(TEST, [])
    assert stats.total_attempts == 0
    assert stats.questions == ()



# ---- service ----


def _service() -> AssessmentService:
    catalog = InMemoryCourseCatalog()
    catalog.add_mock_test(TEST)
    return AssessmentService(
        catalog, AttemptRepo(InMemoryDocumentStore()), SerializedWriter(max_retries=3)
    )


def test_service_numbers_attempts_and_enforces_limit() -> None:
    service = _service()

    async def scenario():
        first = await service.submit("u1", "mock", [], submitted_at=AT)
        second = await service.submit(
            "u1", "mock", [QuestionResponse("t1", selected_answers=frozenset({1}))], submitted_at=AT
        )
        with pytest.raises(ValidationError, match="attempt limit"):
            await service.submit("u1", "mock", [], submitted_at=AT)
        other = await service.submit("u2", "mock", [], submitted_at=AT)
        return first, second, other

    first, second, other = asyncio.run(scenario())
    assert (first.attempt_number, second.attempt_number) == (1, 2)
    assert second.percentile == 100.0  # 25% beats the earlier 0%
    assert other.attempt_number == 1
    # u2 scored 0 against prior [0, 25]: nothing strictly lower
    assert other.percentile == 0.0


def test_service_unknown_test_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_service().submit("u1", "nope", [], submitted_at=AT))


def test_service_stats_per_test_and_question() -> None:
    service = _service()

    async def scenario():
        await service.submit(
            "u1", "mock", [QuestionResponse("t1", selected_answers=frozenset({1}))], submitted_at=AT
        )
        await service.submit("u1", "mock", list(PERFECT), submitted_at=AT)
        await service.submit("u2", "mock", [], submitted_at=AT)
        return await service.stats("mock")

    stats = asyncio.run(scenario())
    assert stats.total_attempts == 3
    assert stats.average_score == pytest.approx((25.0 + 100.0 + 0.0) / 3)
    # u1 passed on the second try, u2 never did
    assert stats.pass_rate == 50.0
    rates = {q.question_id: q.correct_rate for q in stats.questions}
    assert rates == pytest.approx({"m1": 100 / 3, "c1": 100 / 3, "t1": 200 / 3})


def test_service_stats_unknown_test_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_service().stats("nope"))
