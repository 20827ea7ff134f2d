"""Remote profile store: contract and SQLAlchemy implementation."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from studyrank.db.models import ProfileModel, UserPreferencesModel
from studyrank.db.session import get_session_factory, session_scope
from studyrank.errors import StoreError
from studyrank.models.leaderboard import Metric, ProfileRow, UserPreferences

logger = structlog.get_logger()

PROFILE_FIELDS = frozenset(ProfileRow.model_fields) - {"user_id"}
PREFERENCE_FIELDS = frozenset({"block_leaderboard_invites", "hide_from_global_leaderboard"})


class ProfileStore(Protocol):
    """Operations the engines need from the remote profile store."""

    async def read_profile(self, user_id: str) -> ProfileRow | None: ...

    async def read_profiles(self, user_ids: Iterable[str]) -> list[ProfileRow]: ...

    async def write_profile(self, user_id: str, fields: dict[str, Any]) -> None: ...

    async def set_username(self, user_id: str, username: str) -> bool: ...

    async def query_ranked(self, metric: Metric, limit: int, offset: int = 0) -> list[ProfileRow]: ...

    async def resolve_username(self, username: str) -> ProfileRow | None: ...

    async def get_preferences(self, user_id: str) -> UserPreferences: ...

    async def update_preferences(self, user_id: str, fields: dict[str, bool]) -> None: ...

    async def list_hidden_user_ids(self) -> set[str]: ...


def _to_row(model: ProfileModel) -> ProfileRow:
    return ProfileRow(
        user_id=model.user_id,
        username=model.username,
        total_xp=model.total_xp,
        day_streak=model.day_streak,
        questions_answered=model.questions_answered,
        correct_answers=model.correct_answers,
        answer_streak=model.answer_streak,
        last_question_date=model.last_question_date,
        questions_answered_today=model.questions_answered_today,
        last_valid_streak_date=model.last_valid_streak_date,
        achievements=model.achievements,
        collected_achievements=model.collected_achievements,
        answered_question_ids=model.answered_question_ids,
    )


def _public_profiles():
    # Anonymous identities (no username) never appear in shared views
    return select(ProfileModel).where(ProfileModel.username.is_not(None))


def _get_or_create_profile(session: Session, user_id: str) -> ProfileModel:
    model = session.get(ProfileModel, user_id)
    if model is None:
        model = ProfileModel(user_id=user_id)
        session.add(model)
    return model


class SqlProfileStore:
    """Profile store on the ``profiles`` and ``user_preferences`` tables.

    Every call runs in its own session on a worker thread so the event loop
    is never blocked by a database round-trip. ``SQLAlchemyError`` is
    re-raised as ``StoreError`` so engines handle a single failure type.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory or get_session_factory()

    async def read_profile(self, user_id: str) -> ProfileRow | None:
        return await asyncio.to_thread(self._read_profile, user_id)

    async def read_profiles(self, user_ids: Iterable[str]) -> list[ProfileRow]:
        ids = list(user_ids)
        if not ids:
            return []
        return await asyncio.to_thread(self._read_profiles, ids)

    async def write_profile(self, user_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
        await asyncio.to_thread(self._write_profile, user_id, fields)
        logger.debug("profile_written", user_id=user_id, fields=sorted(fields))

    async def set_username(self, user_id: str, username: str) -> bool:
        """Claim ``username`` for ``user_id``. Returns False if another user holds it."""
        return await asyncio.to_thread(self._set_username, user_id, username)

    async def query_ranked(self, metric: Metric, limit: int, offset: int = 0) -> list[ProfileRow]:
        return await asyncio.to_thread(self._query_ranked, Metric(metric), limit, offset)

    async def resolve_username(self, username: str) -> ProfileRow | None:
        return await asyncio.to_thread(self._resolve_username, username)

    async def get_preferences(self, user_id: str) -> UserPreferences:
        return await asyncio.to_thread(self._get_preferences, user_id)

    async def update_preferences(self, user_id: str, fields: dict[str, bool]) -> None:
        unknown = set(fields) - PREFERENCE_FIELDS
        if unknown:
            raise ValueError(f"Unknown preference fields: {sorted(unknown)}")
        await asyncio.to_thread(self._update_preferences, user_id, fields)

    async def list_hidden_user_ids(self) -> set[str]:
        return await asyncio.to_thread(self._list_hidden_user_ids)

    # -- Blocking helpers (run on a worker thread) -------------------------

    def _read_profile(self, user_id: str) -> ProfileRow | None:
        try:
            with session_scope(self._session_factory, commit=False) as session:
                model = session.get(ProfileModel, user_id)
                return _to_row(model) if model is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read profile {user_id}") from exc

    def _read_profiles(self, user_ids: list[str]) -> list[ProfileRow]:
        stmt = _public_profiles().where(ProfileModel.user_id.in_(user_ids))
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return [_to_row(m) for m in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to read profiles") from exc

    def _write_profile(self, user_id: str, fields: dict[str, Any]) -> None:
        try:
            with session_scope(self._session_factory) as session:
                model = _get_or_create_profile(session, user_id)
                for key, value in fields.items():
                    setattr(model, key, value)
                model.last_seen_at = datetime.now(timezone.utc)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to write profile {user_id}") from exc

    def _set_username(self, user_id: str, username: str) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                _get_or_create_profile(session, user_id).username = username
        except IntegrityError:
            return False
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to set username for {user_id}") from exc
        return True

    def _query_ranked(self, metric: Metric, limit: int, offset: int) -> list[ProfileRow]:
        column = getattr(ProfileModel, metric.value)
        stmt = (
            _public_profiles()
            .order_by(column.desc(), ProfileModel.user_id.asc())
            .offset(offset)
            .limit(limit)
        )
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return [_to_row(m) for m in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to query ranking by {metric}") from exc

    def _resolve_username(self, username: str) -> ProfileRow | None:
        stmt = _public_profiles().where(ProfileModel.username == username.strip())
        try:
            with session_scope(self._session_factory, commit=False) as session:
                model = session.execute(stmt).scalar_one_or_none()
                return _to_row(model) if model is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to resolve username {username}") from exc

    def _get_preferences(self, user_id: str) -> UserPreferences:
        try:
            with session_scope(self._session_factory, commit=False) as session:
                model = session.get(UserPreferencesModel, user_id)
                if model is None:
                    return UserPreferences(user_id=user_id)
                return UserPreferences(
                    user_id=model.user_id,
                    block_leaderboard_invites=model.block_leaderboard_invites,
                    hide_from_global_leaderboard=model.hide_from_global_leaderboard,
                    updated_at=model.updated_at,
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read preferences for {user_id}") from exc

    def _update_preferences(self, user_id: str, fields: dict[str, bool]) -> None:
        try:
            with session_scope(self._session_factory) as session:
                _get_or_create_profile(session, user_id)
                session.flush()
                model = session.get(UserPreferencesModel, user_id)
                if model is None:
                    model = UserPreferencesModel(user_id=user_id)
                    session.add(model)
                for key, value in fields.items():
                    setattr(model, key, value)
                model.updated_at = datetime.now(timezone.utc)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update preferences for {user_id}") from exc

    def _list_hidden_user_ids(self) -> set[str]:
        stmt = select(UserPreferencesModel.user_id).where(
            UserPreferencesModel.hide_from_global_leaderboard.is_(True)
        )
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return set(session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise StoreError("Failed to list hidden users") from exc
