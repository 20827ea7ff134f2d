"""Practice progress and achievement models."""

from datetime import date
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ProgressMetric = Literal["questions_answered", "day_streak", "answer_streak", "total_xp"]


class UserProgress(BaseModel):
    """Cumulative practice statistics for one user."""

    total_xp: int = Field(default=0, ge=0)
    day_streak: int = Field(default=0, ge=0)
    questions_answered: int = Field(default=0, ge=0)
    correct_answers: int = Field(default=0, ge=0)
    answer_streak: int = Field(default=0, ge=0)
    last_question_date: date | None = None
    questions_answered_today: int = Field(default=0, ge=0)
    last_valid_streak_date: date | None = None
    achievements: list[str] = Field(default_factory=list)
    collected_achievements: list[str] = Field(default_factory=list)
    answered_question_ids: list[str] = Field(default_factory=list)

    @property
    def accuracy(self) -> float:
        """Share of answered questions that were correct (0-1)."""
        if self.questions_answered == 0:
            return 0.0
        return self.correct_answers / self.questions_answered


class Achievement(BaseModel):
    """Catalog entry: unlocked once ``progress.<metric> >= threshold``."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    icon: str = ""
    xp_reward: int = Field(default=0, ge=0)
    metric: ProgressMetric
    threshold: int = Field(ge=0)

    def is_satisfied(self, progress: UserProgress) -> bool:
        return getattr(progress, self.metric) >= self.threshold


class AchievementState(StrEnum):
    """Two-phase reward lifecycle of a single achievement."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"  # reward not yet credited
    COLLECTED = "collected"


class AchievementStatus(BaseModel):
    """An achievement annotated with the user's state for it."""

    id: str
    name: str
    description: str
    icon: str
    xp_reward: int
    state: AchievementState

    @property
    def unlocked(self) -> bool:
        return self.state != AchievementState.LOCKED


class PracticeResult(BaseModel):
    """Outcome of a single recorded answer."""

    xp_gained: int
    new_achievements: list[Achievement] = Field(default_factory=list)


class CollectResult(BaseModel):
    """Outcome of crediting achievement or bonus XP."""

    xp_gained: int = 0
    new_achievements: list[Achievement] = Field(default_factory=list)
