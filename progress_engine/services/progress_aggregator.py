"""Pure progress roll-ups: topic → concept → course, and course → path.

Nothing in this module does I/O.  The engine loads the documents, calls
these functions, and saves what they return.

Weighting rule, used at the course level and again at the path level:

    overall = Σ(progress_i × topics_i) / Σ topics_i

so a concept (or path step) with more topics moves the total more.
Concepts the learner has not touched still count, with progress 0.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import replace

from progress_engine.models.activity import ActivityEvent
from progress_engine.models.course import (
    CompletionCriteria,
    CourseStructure,
    LearningPath,
    PathStep,
    StepKind,
)
from progress_engine.models.history import LearningHistory
from progress_engine.models.ledger import AppliedEvent
from progress_engine.models.progress import (
    ConceptProgress,
    CourseProgress,
    PathProgress,
    TopicProgress,
    UpdatedProgressSnapshot,
)
from progress_engine.services.errors import NotFoundError
from progress_engine.services.event_ledger import check_reuse, prune
from progress_engine.services.mastery import compute_mastery


def _weighted_mean(pairs: list[tuple[float, int]]) -> float:
    total = sum(weight for _, weight in pairs)
    if total == 0:
        return 0.0
    return sum(value * weight for value, weight in pairs) / total


def course_overall(progress: CourseProgress, structure: CourseStructure) -> float:
    pairs = []
    for concept in structure.concepts:
        cp = progress.concept(concept.concept_id)
        pairs.append((cp.progress if cp is not None else 0.0, concept.topic_count))
    return _weighted_mean(pairs)


def apply_event(
    progress: CourseProgress | None,
    structure: CourseStructure,
    event: ActivityEvent,
    now: datetime.datetime,
    *,
    retain_since: datetime.datetime | None = None,
) -> UpdatedProgressSnapshot:
    """Fold one event into the learner's course progress.

    Completion is monotonic: a completed topic stays completed no matter
    what later events say.  Time always accumulates, except for an event
    whose ``event_id`` this document has already applied, which comes
    back unchanged with ``duplicate=True``.  Applied ids recorded before
    ``retain_since`` are forgotten when the document is rewritten.
    """
    if structure.course_id != event.course_id:
        raise NotFoundError(f"structure {structure.course_id!r} is not course {event.course_id!r}")
    concept_def = structure.concept(event.concept_id)
    if concept_def is None:
        raise NotFoundError(f"concept {event.concept_id!r} not in course {event.course_id!r}")
    if concept_def.topic(event.topic_id) is None:
        raise NotFoundError(f"topic {event.topic_id!r} not in concept {event.concept_id!r}")

    if progress is None:
        progress = CourseProgress.new(
            user_id=event.user_id, course_id=event.course_id, enrolled_at=now
        )

    if event.event_id is not None and check_reuse(
        progress.applied_events.get(event.event_id), event
    ):
        return UpdatedProgressSnapshot(
            progress=progress, concept_id=event.concept_id, duplicate=True
        )

    # topic
    concept = progress.concept(event.concept_id) or ConceptProgress(
        concept_id=event.concept_id, total_topics=concept_def.topic_count
    )
    topic = concept.topic(event.topic_id) or TopicProgress(topic_id=event.topic_id)
    topic_newly_completed = event.completed and not topic.completed
    topic = replace(
        topic,
        completed=topic.completed or event.completed,
        time_spent_seconds=topic.time_spent_seconds + event.time_spent_seconds,
        completed_at=now if topic_newly_completed else topic.completed_at,
    )
    by_topic = {tp.topic_id: tp for tp in concept.topics_progress}
    by_topic[topic.topic_id] = topic
    ordered = [by_topic.pop(ref.topic_id) for ref in concept_def.topics if ref.topic_id in by_topic]
    ordered.extend(by_topic.values())

    # concept
    declared = {ref.topic_id for ref in concept_def.topics}
    total = concept_def.topic_count
    done = sum(1 for tp in ordered if tp.completed and tp.topic_id in declared)
    concept_pct = 100.0 * done / total if total else 0.0
    concept_completed = concept_pct >= 100
    concept_newly_completed = concept_completed and not concept.completed
    concept = replace(
        concept,
        total_topics=total,
        topics_progress=tuple(ordered),
        progress=concept_pct,
        completed=concept_completed,
        completed_at=(
            (concept.completed_at or now) if concept_completed else None
        ),
    )

    by_concept = {cp.concept_id: cp for cp in progress.concepts_progress}
    by_concept[concept.concept_id] = concept
    concepts = [
        by_concept.pop(c.concept_id) for c in structure.concepts if c.concept_id in by_concept
    ]
    concepts.extend(by_concept.values())

    # course
    progress = replace(progress, concepts_progress=tuple(concepts))
    overall = course_overall(progress, structure)
    course_completed = structure.topic_count > 0 and overall >= 100
    course_newly_completed = course_completed and not progress.completed
    applied = prune(progress.applied_events, retain_since)
    if event.event_id is not None:
        applied[event.event_id] = AppliedEvent(event.fingerprint(), now)

    progress = replace(
        progress,
        overall_progress=overall,
        status="completed" if course_completed else "in_progress",
        last_accessed_at=now,
        completed_at=(progress.completed_at or now) if course_completed else None,
        applied_events=applied,
    )
    return UpdatedProgressSnapshot(
        progress=progress,
        concept_id=event.concept_id,
        topic_newly_completed=topic_newly_completed,
        concept_newly_completed=concept_newly_completed,
        course_newly_completed=course_newly_completed,
    )


def compute_path_progress(
    path: LearningPath,
    path_progress: PathProgress,
    course_progresses: Mapping[str, CourseProgress],
    structures: Mapping[str, CourseStructure],
    now: datetime.datetime,
    history: LearningHistory | None = None,
) -> PathProgress:
    """Recompute a PathProgress from the learner's course progress records.

    A course step takes the course's overall progress, a concept step the
    concept's progress, and a topic step is 0 or 100.  Courses without a
    record count as 0.

    A step is completed once it reaches 100%, meets its completion
    criteria, and every prerequisite step is completed.  A step with an
    unfinished prerequisite is reported as ``locked``.
    """
    history = history or LearningHistory(user_id=path_progress.user_id)
    step_progress: dict[str, float] = {}
    step_status: dict[str, str] = {}
    completed: set[str] = set()
    pairs: list[tuple[float, int]] = []
    for step in path.steps:
        structure = structures.get(step.course_id)
        if structure is None:
            raise NotFoundError(f"path {path.path_id}: course {step.course_id!r} has no structure")
        cp = course_progresses.get(step.course_id)
        value, weight, scope = _step_value(path, step, structure, cp)
        step_progress[step.step_id] = value
        pairs.append((value, weight))

        if not all(p in completed for p in step.prerequisites):
            step_status[step.step_id] = "locked"
        elif value >= 100 and _criteria_met(step.completion_criteria, scope, cp, history):
            completed.add(step.step_id)
            step_status[step.step_id] = "completed"
        else:
            step_status[step.step_id] = "in_progress" if value > 0 else "not_started"

    current_step = next((s.step_id for s in path.steps if s.step_id not in completed), None)
    all_done = bool(path.steps) and current_step is None
    return replace(
        path_progress,
        step_progress=step_progress,
        step_status=step_status,
        completed_steps=frozenset(completed),
        current_step=current_step,
        overall_progress=_weighted_mean(pairs),
        status="completed" if all_done else "active",
        last_accessed_at=now,
        completed_at=(path_progress.completed_at or now) if all_done else None,
    )


def _step_value(
    path: LearningPath,
    step: PathStep,
    structure: CourseStructure,
    cp: CourseProgress | None,
) -> tuple[float, int, tuple[str, ...]]:
    """(progress, weight, concept ids the step covers)."""
    if step.kind == StepKind.COURSE:
        value = cp.overall_progress if cp is not None else 0.0
        return value, structure.topic_count, tuple(c.concept_id for c in structure.concepts)

    concept_def = structure.concept(step.concept_id or "")
    if concept_def is None:
        raise NotFoundError(
            f"path {path.path_id}: concept {step.concept_id!r} not in course {step.course_id!r}"
        )
    concept = cp.concept(concept_def.concept_id) if cp is not None else None
    if step.kind == StepKind.CONCEPT:
        value = concept.progress if concept is not None else 0.0
        return value, concept_def.topic_count, (concept_def.concept_id,)

    if concept_def.topic(step.topic_id or "") is None:
        raise NotFoundError(
            f"path {path.path_id}: topic {step.topic_id!r} not in concept {step.concept_id!r}"
        )
    topic = concept.topic(step.topic_id or "") if concept is not None else None
    value = 100.0 if topic is not None and topic.completed else 0.0
    return value, 1, (concept_def.concept_id,)


def _criteria_met(
    criteria: CompletionCriteria,
    concept_ids: tuple[str, ...],
    cp: CourseProgress | None,
    history: LearningHistory,
) -> bool:
    if criteria.minimum_score is not None:
        scores = [s for cid in concept_ids for s in history.concept(cid).latest_quiz_scores()]
        if not scores or sum(scores) / len(scores) < criteria.minimum_score:
            return False
    if criteria.mastery_threshold is not None:
        masteries = [
            compute_mastery(
                cp.concept(cid) if cp is not None else None,
                history.concept(cid).latest_quiz_scores(),
                history.concept(cid).problem_stats(),
            ).score
            for cid in concept_ids
        ]
        if not masteries or sum(masteries) / len(masteries) / 10 < criteria.mastery_threshold:
            return False
    return True
