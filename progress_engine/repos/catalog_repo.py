"""Read-only reference data: course structures, learning paths, mock tests.

The engine consumes these through the CourseCatalog Protocol.  The
in-memory catalog is what dev and tests run against; a deployment with a
content service plugs in another implementation of the same methods.
"""

from __future__ import annotations

from typing import Protocol

from progress_engine.models.activity import ActivityType
from progress_engine.models.assessment import MockTest, Question, QuestionType, TestCase
from progress_engine.models.course import (
    ConceptStructure,
    CourseStructure,
    LearningPath,
    PathStep,
    StepKind,
    TopicRef,
)


class CourseStructureLookup(Protocol):
    async def get_structure(self, course_id: str) -> CourseStructure | None: ...


class CourseCatalog(CourseStructureLookup, Protocol):
    async def get_path(self, path_id: str) -> LearningPath | None: ...
    async def get_mock_test(self, test_id: str) -> MockTest | None: ...


class InMemoryCourseCatalog:
    def __init__(self) -> None:
        self._courses: dict[str, CourseStructure] = {}
        self._paths: dict[str, LearningPath] = {}
        self._tests: dict[str, MockTest] = {}

    async def get_structure(self, course_id: str) -> CourseStructure | None:
        return self._courses.get(course_id)

    async def get_path(self, path_id: str) -> LearningPath | None:
        return self._paths.get(path_id)

    async def get_mock_test(self, test_id: str) -> MockTest | None:
        return self._tests.get(test_id)

    def add_course(self, structure: CourseStructure) -> None:
        self._courses[structure.course_id] = structure

    def add_path(self, path: LearningPath) -> None:
        unknown = path.course_ids - self._courses.keys()
        if unknown:
            raise ValueError(f"path {path.path_id} references unknown courses {sorted(unknown)}")
        self._paths[path.path_id] = path

    def add_mock_test(self, test: MockTest) -> None:
        self._tests[test.test_id] = test


def _topics(*kinds: ActivityType, prefix: str) -> tuple[TopicRef, ...]:
    return tuple(
        TopicRef(topic_id=f"{prefix}-{kind.value}-{i}", kind=kind, position=i)
        for i, kind in enumerate(kinds, start=1)
    )


V, A, C, Q = ActivityType.VIDEO, ActivityType.ARTICLE, ActivityType.CODING, ActivityType.QUIZ


def seed_sample_catalog(catalog: InMemoryCourseCatalog) -> None:
    """Seed a small Python track for development and testing.

    python-basics/variables: 3 videos, 2 articles, 1 quiz
    python-basics/loops:     1 video, 2 coding problems, 1 quiz
    python-basics/functions: 1 article, 1 coding problem
    """
    catalog.add_course(
        CourseStructure(
            course_id="python-basics",
            title="Python Basics",
            category="programming",
            concepts=(
                ConceptStructure(
                    "variables", _topics(V, V, V, A, A, Q, prefix="variables"), "Variables"
                ),
                ConceptStructure("loops", _topics(V, C, C, Q, prefix="loops"), "Loops"),
                ConceptStructure("functions", _topics(A, C, prefix="functions"), "Functions"),
            ),
        )
    )
    catalog.add_course(
        CourseStructure(
            course_id="data-structures",
            title="Data Structures",
            category="computer-science",
            concepts=(
                ConceptStructure("arrays", _topics(V, A, C, C, prefix="arrays"), "Arrays"),
                ConceptStructure("hashing", _topics(V, C, Q, prefix="hashing"), "Hashing"),
            ),
        )
    )
    catalog.add_path(
        LearningPath(
            path_id="python-developer",
            title="Python Developer",
            steps=(
                PathStep("step-1", 1, StepKind.COURSE, "python-basics", title="Python Basics"),
                PathStep(
                    "step-2",
                    2,
                    StepKind.CONCEPT,
                    "data-structures",
                    "arrays",
                    title="Arrays",
                    prerequisites=("step-1",),
                ),
            ),
        )
    )
    catalog.add_mock_test(
        MockTest(
            test_id="python-mock-1",
            title="Python Basics Mock Test",
            passing_score=60.0,
            max_attempts=3,
            duration_seconds=1800,
            questions=(
                Question(
                    "q1",
                    QuestionType.MCQ,
                    points=5,
                    topic="variables",
                    difficulty="Easy",
                    correct_answers=frozenset({2}),
                ),
                Question(
                    "q2",
                    QuestionType.CODING,
                    points=15,
                    topic="loops",
                    difficulty="Hard",
                    test_cases=(TestCase("t1"), TestCase("t2", is_hidden=True)),
                ),
            ),
        )
    )
