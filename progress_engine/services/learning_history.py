"""Folding events and attempts into a LearningHistory.

All three updates are idempotent, so replaying an event after a retry
leaves the history exactly as the first application did.
"""

from __future__ import annotations

from dataclasses import replace

from progress_engine.models.activity import ActivityEvent, ActivityType
from progress_engine.models.history import ConceptHistory, LearningHistory, QuizScore


def record_event(history: LearningHistory, event: ActivityEvent) -> tuple[LearningHistory, bool]:
    """Return the updated history and whether a problem became solved."""
    if event.type == ActivityType.QUIZ and event.quiz_score is not None:
        concept = history.concept(event.concept_id)
        current = concept.quiz_scores.get(event.topic_id)
        if current is not None and current.attempted_at >= event.occurred_at:
            return history, False
        scores = dict(concept.quiz_scores)
        scores[event.topic_id] = QuizScore(event.quiz_score, event.occurred_at)
        return _with_concept(history, event.concept_id, replace(concept, quiz_scores=scores)), False

    if event.type == ActivityType.CODING:
        concept = history.concept(event.concept_id)
        was_solved = concept.problems.get(event.topic_id)
        solved = bool(was_solved) or event.solved
        if was_solved is not None and was_solved == solved:
            return history, False
        problems = dict(concept.problems)
        problems[event.topic_id] = solved
        updated = _with_concept(history, event.concept_id, replace(concept, problems=problems))
        return updated, solved and not was_solved

    return history, False


def record_mock_score(history: LearningHistory, test_id: str, score: float) -> LearningHistory:
    best = history.mock_test_best.get(test_id)
    if best is not None and best >= score:
        return history
    return replace(history, mock_test_best={**history.mock_test_best, test_id: score})


def _with_concept(
    history: LearningHistory, concept_id: str, concept: ConceptHistory
) -> LearningHistory:
    return replace(history, concepts={**history.concepts, concept_id: concept})
