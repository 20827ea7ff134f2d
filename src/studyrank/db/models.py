"""ORM models backing the remote profile and membership stores."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from studyrank.db.base import Base, TimestampMixin, utcnow

JSONType = JSON


class ProfileModel(TimestampMixin, Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_username", "username", unique=True),
        Index("ix_profiles_total_xp", "total_xp"),
        Index("ix_profiles_day_streak", "day_streak"),
    )

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Anonymous identities have no username
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    total_xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    day_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    questions_answered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    answer_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_question_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    questions_answered_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_valid_streak_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    achievements: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    collected_achievements: Mapped[list[str]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    answered_question_ids: Mapped[list[str]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    preferences: Mapped[Optional["UserPreferencesModel"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", uselist=False
    )


class UserPreferencesModel(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.user_id", ondelete="CASCADE"), primary_key=True
    )
    block_leaderboard_invites: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hide_from_global_leaderboard: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    profile: Mapped[ProfileModel] = relationship(back_populates="preferences")


class PrivateLeaderboardModel(TimestampMixin, Base):
    __tablename__ = "private_leaderboards"
    __table_args__ = (
        CheckConstraint("max_members > 0", name="ck_private_leaderboards_max_members"),
        Index("ix_private_leaderboards_owner", "owner_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_members: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    members: Mapped[list["LeaderboardMemberModel"]] = relationship(
        back_populates="leaderboard", cascade="all, delete-orphan", passive_deletes=True
    )


class LeaderboardMemberModel(Base):
    __tablename__ = "leaderboard_members"
    __table_args__ = (
        UniqueConstraint("leaderboard_id", "user_id", name="uq_leaderboard_member"),
        Index("ix_leaderboard_members_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    leaderboard_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("private_leaderboards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    leaderboard: Mapped[PrivateLeaderboardModel] = relationship(back_populates="members")


__all__ = [
    "LeaderboardMemberModel",
    "PrivateLeaderboardModel",
    "ProfileModel",
    "UserPreferencesModel",
]
