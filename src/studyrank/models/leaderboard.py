"""Leaderboard, profile row and preference models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, SerializeAsAny, field_validator

from studyrank.models.progress import UserProgress


class Metric(StrEnum):
    """Ranking metrics, named after their profile columns."""

    TOTAL_XP = "total_xp"
    DAY_STREAK = "day_streak"


class ProfileRow(BaseModel):
    """A profile record as read from the remote profile store.

    Nullable store columns are normalized here so callers never see
    ``None`` counters or lists.
    """

    user_id: str
    username: str | None = None
    total_xp: int = 0
    day_streak: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    answer_streak: int = 0
    last_question_date: date | None = None
    questions_answered_today: int = 0
    last_valid_streak_date: date | None = None
    achievements: list[str] = Field(default_factory=list)
    collected_achievements: list[str] = Field(default_factory=list)
    answered_question_ids: list[str] = Field(default_factory=list)

    @field_validator(
        "total_xp",
        "day_streak",
        "questions_answered",
        "correct_answers",
        "answer_streak",
        "questions_answered_today",
        mode="before",
    )
    @classmethod
    def _null_counter_is_zero(cls, value):
        return 0 if value is None else value

    @field_validator(
        "achievements", "collected_achievements", "answered_question_ids", mode="before"
    )
    @classmethod
    def _null_list_is_empty(cls, value):
        return [] if value is None else value

    def to_progress(self) -> UserProgress:
        """Rebuild engine progress from the stored statistics."""
        return UserProgress.model_validate(
            self.model_dump(exclude={"user_id", "username"})
        )


class UserPreferences(BaseModel):
    """Per-user social privacy flags."""

    user_id: str
    block_leaderboard_invites: bool = False
    hide_from_global_leaderboard: bool = False
    updated_at: datetime | None = None


class LeaderboardEntry(BaseModel):
    """One ranked row of a leaderboard."""

    user_id: str
    username: str | None = None
    total_xp: int = 0
    day_streak: int = 0
    rank: int = 0

    def metric_value(self, metric: Metric) -> int:
        return getattr(self, metric.value)


class LeaderboardMember(LeaderboardEntry):
    """A ranked private leaderboard member."""

    joined_at: datetime | None = None


class PrivateLeaderboard(BaseModel):
    id: str
    owner_id: str
    name: str
    description: str | None = None
    max_members: int = 50
    member_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Membership(BaseModel):
    """A membership row: who joined which leaderboard, and when."""

    user_id: str
    joined_at: datetime


class RankWindow(BaseModel):
    """A user's rank and the slice of the ranking around it.

    ``hidden`` is True when the user opted out of global ranking; their rank
    exists but is withheld, which differs from not being ranked at all.
    ``error`` is set when the ranking could not be read, so ``rank`` is
    unknown rather than absent.
    """

    rank: int | None = None
    entries: list[SerializeAsAny[LeaderboardEntry]] = Field(default_factory=list)
    hidden: bool = False
    error: str | None = None


class OperationResult(BaseModel):
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(success=True)

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


class CreateLeaderboardResult(BaseModel):
    leaderboard: PrivateLeaderboard | None = None
    error: str | None = None
