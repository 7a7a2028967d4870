from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class MasteryLabel(StrEnum):
    STARTED = "Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    MASTERED = "Mastered"


# (lower bound inclusive, label, display color), highest band first
MASTERY_BANDS: tuple[tuple[int, MasteryLabel, str], ...] = (
    (80, MasteryLabel.MASTERED, "green"),
    (60, MasteryLabel.COMPLETED, "blue"),
    (40, MasteryLabel.IN_PROGRESS, "yellow"),
    (0, MasteryLabel.STARTED, "orange"),
)


@dataclass(frozen=True, slots=True)
class MasteryScore:
    """Derived score for one concept.  Never persisted."""

    score: int  # 0-100
    label: MasteryLabel
    color: str
    completion_ratio: float
    average_quiz_score: float | None = None
    problem_solve_ratio: float | None = None

    @staticmethod
    def band_for(score: int) -> tuple[MasteryLabel, str]:
        for lower, label, color in MASTERY_BANDS:
            if score >= lower:
                return label, color
        return MasteryLabel.STARTED, "orange"
