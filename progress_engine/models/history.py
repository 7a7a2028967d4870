from __future__ import annotations

import datetime
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class QuizScore:
    score: float
    attempted_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class ProblemStats:
    attempted: int = 0
    solved: int = 0

    @property
    def solve_ratio(self) -> float | None:
        if self.attempted == 0:
            return None
        return self.solved / self.attempted


@dataclass(frozen=True, slots=True)
class ConceptHistory:
    quiz_scores: dict[str, QuizScore] = field(default_factory=dict)  # quiz topic -> latest
    problems: dict[str, bool] = field(default_factory=dict)  # problem topic -> solved

    def latest_quiz_scores(self) -> list[float]:
        return [q.score for q in self.quiz_scores.values()]

    def problem_stats(self) -> ProblemStats:
        return ProblemStats(
            attempted=len(self.problems),
            solved=sum(1 for solved in self.problems.values() if solved),
        )


@dataclass(frozen=True, slots=True)
class LearningHistory:
    """Per-user quiz and problem outcomes, the input feed of mastery.

    Every update is idempotent: quiz entries keep the most recent attempt
    by timestamp, problem entries only ever flip from unsolved to solved,
    and mock test entries keep the best score.
    """

    user_id: str
    concepts: dict[str, ConceptHistory] = field(default_factory=dict)
    mock_test_best: dict[str, float] = field(default_factory=dict)

    def concept(self, concept_id: str) -> ConceptHistory:
        return self.concepts.get(concept_id, ConceptHistory())

    @property
    def problems_solved(self) -> int:
        return sum(c.problem_stats().solved for c in self.concepts.values())

    def quizzes_passed(self, pass_score: float) -> int:
        return sum(
            1
            for c in self.concepts.values()
            for q in c.quiz_scores.values()
            if q.score >= pass_score
        )

    @property
    def best_score(self) -> float:
        scores = [q.score for c in self.concepts.values() for q in c.quiz_scores.values()]
        scores.extend(self.mock_test_best.values())
        return max(scores, default=0.0)
