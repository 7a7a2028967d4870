"""Concept mastery: a 0-100 blend of completion, quiz scores and problem solving.

    40%  topic completion          (ConceptProgress.progress)
    30%  average quiz score        (latest score per quiz)
    30%  coding solve ratio        (solved / attempted)

A component with no data behind it (no quiz taken, no problem tried) is
left out and the remaining weights are scaled back up to 100%, so a
concept without coding problems can still reach "Mastered".
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from progress_engine.models.history import ProblemStats
from progress_engine.models.mastery import MasteryScore
from progress_engine.models.progress import ConceptProgress

COMPLETION_WEIGHT = 0.4
QUIZ_WEIGHT = 0.3
PROBLEM_WEIGHT = 0.3


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def compute_mastery(
    concept_progress: ConceptProgress | None,
    quiz_scores: Sequence[float],
    problem_stats: ProblemStats,
) -> MasteryScore:
    completion = concept_progress.progress if concept_progress is not None else 0.0
    components: list[tuple[float, float]] = [(COMPLETION_WEIGHT, completion)]

    average_quiz = sum(quiz_scores) / len(quiz_scores) if quiz_scores else None
    if average_quiz is not None:
        components.append((QUIZ_WEIGHT, average_quiz))

    solve_ratio = problem_stats.solve_ratio
    if solve_ratio is not None:
        components.append((PROBLEM_WEIGHT, 100.0 * solve_ratio))

    blended = sum(w * v for w, v in components) / sum(w for w, _ in components)
    score = min(100, max(0, round_half_up(blended)))
    label, color = MasteryScore.band_for(score)
    return MasteryScore(
        score=score,
        label=label,
        color=color,
        completion_ratio=completion / 100.0,
        average_quiz_score=average_quiz,
        problem_solve_ratio=solve_ratio,
    )
