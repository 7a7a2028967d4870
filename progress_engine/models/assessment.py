from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum


class QuestionType(StrEnum):
    MCQ = "mcq"
    MULTIPLE_SELECT = "multiple_select"
    TRUE_FALSE = "true_false"
    CODING = "coding"


@dataclass(frozen=True, slots=True)
class TestCase:
    test_case_id: str
    is_hidden: bool = False

    __test__ = False  # not a pytest class


@dataclass(frozen=True, slots=True)
class Question:
    question_id: str
    type: QuestionType
    points: int
    topic: str = ""
    difficulty: str = "Medium"  # Easy|Medium|Hard
    correct_answers: frozenset[int] = frozenset()  # option indexes
    test_cases: tuple[TestCase, ...] = ()


@dataclass(frozen=True, slots=True)
class MockTest:
    test_id: str
    title: str
    questions: tuple[Question, ...]
    passing_score: float = 60.0  # percentage
    max_attempts: int = 0  # 0 means unlimited
    duration_seconds: int = 0  # 0 means untimed

    def question(self, question_id: str) -> Question | None:
        for q in self.questions:
            if q.question_id == question_id:
                return q
        return None

    @property
    def max_points(self) -> int:
        return sum(q.points for q in self.questions)


@dataclass(frozen=True, slots=True)
class TestCaseResult:
    test_case_id: str
    passed: bool

    __test__ = False


@dataclass(frozen=True, slots=True)
class QuestionResponse:
    question_id: str
    selected_answers: frozenset[int] = frozenset()
    test_case_results: tuple[TestCaseResult, ...] = ()
    time_spent_seconds: int = 0


@dataclass(frozen=True, slots=True)
class AttemptSubmission:
    user_id: str
    mock_test_id: str
    attempt_number: int
    responses: tuple[QuestionResponse, ...]
    submitted_at: datetime.datetime
    time_spent_seconds: int = 0


@dataclass(frozen=True, slots=True)
class GradedResponse:
    question_id: str
    question_type: QuestionType
    is_correct: bool
    points_earned: int
    max_points: int


@dataclass(frozen=True, slots=True)
class Performance:
    key: str  # topic name or difficulty
    attempted: int
    correct: int

    @property
    def accuracy(self) -> float:
        return 100.0 * self.correct / self.attempted if self.attempted else 0.0


@dataclass(frozen=True, slots=True)
class AttemptAnalysis:
    topic_performance: tuple[Performance, ...] = ()
    difficulty_performance: tuple[Performance, ...] = ()
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MockTestAttempt:
    """A graded attempt.  Immutable once stored."""

    user_id: str
    mock_test_id: str
    attempt_number: int
    responses: tuple[GradedResponse, ...]
    total_score: float  # percentage
    total_points: int
    max_points: int
    passed: bool
    percentile: float
    submitted_at: datetime.datetime
    time_spent_seconds: int = 0
    status: str = "completed"  # completed|abandoned|time_expired
    analysis: AttemptAnalysis = AttemptAnalysis()


@dataclass(frozen=True, slots=True)
class QuestionStats:
    question_id: str
    attempts: int
    correct_rate: float  # percentage


@dataclass(frozen=True, slots=True)
class MockTestStats:
    """Aggregate over every stored attempt on one mock test."""

    test_id: str
    total_attempts: int = 0
    average_score: float = 0.0
    pass_rate: float = 0.0  # percentage of learners with a passing attempt
    questions: tuple[QuestionStats, ...] = ()
