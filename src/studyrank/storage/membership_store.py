"""Private leaderboard membership store: contract and SQLAlchemy implementation."""

import asyncio
from typing import Protocol

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from studyrank.db.models import LeaderboardMemberModel, PrivateLeaderboardModel
from studyrank.db.session import get_session_factory, session_scope
from studyrank.errors import StoreError
from studyrank.models.leaderboard import Membership, PrivateLeaderboard

logger = structlog.get_logger()


class MembershipStore(Protocol):
    """Operations the leaderboard engine needs for private groups."""

    async def get_leaderboard(self, leaderboard_id: str) -> PrivateLeaderboard | None: ...

    async def create_leaderboard(
        self, owner_id: str, name: str, description: str | None, max_members: int
    ) -> PrivateLeaderboard: ...

    async def list_members(self, leaderboard_id: str) -> list[Membership]: ...

    async def is_member(self, leaderboard_id: str, user_id: str) -> bool: ...

    async def count_members(self, leaderboard_id: str) -> int: ...

    async def add_member(self, leaderboard_id: str, user_id: str) -> None: ...

    async def remove_member(self, leaderboard_id: str, user_id: str) -> None: ...

    async def set_owner(self, leaderboard_id: str, owner_id: str) -> None: ...

    async def delete_leaderboard(self, leaderboard_id: str) -> None: ...

    async def list_leaderboards_for_user(self, user_id: str) -> list[PrivateLeaderboard]: ...


def _member_count(session: Session, leaderboard_id: str) -> int:
    stmt = select(func.count(LeaderboardMemberModel.id)).where(
        LeaderboardMemberModel.leaderboard_id == leaderboard_id
    )
    return session.execute(stmt).scalar_one()


def _to_domain(model: PrivateLeaderboardModel, member_count: int) -> PrivateLeaderboard:
    return PrivateLeaderboard(
        id=model.id,
        owner_id=model.owner_id,
        name=model.name,
        description=model.description,
        max_members=model.max_members,
        member_count=member_count,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SqlMembershipStore:
    """Membership store on ``private_leaderboards`` and ``leaderboard_members``.

    Like ``SqlProfileStore``, each call runs its session on a worker thread.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory or get_session_factory()

    async def get_leaderboard(self, leaderboard_id: str) -> PrivateLeaderboard | None:
        return await asyncio.to_thread(self._get_leaderboard, leaderboard_id)

    async def create_leaderboard(
        self, owner_id: str, name: str, description: str | None, max_members: int
    ) -> PrivateLeaderboard:
        created = await asyncio.to_thread(
            self._create_leaderboard, owner_id, name, description, max_members
        )
        logger.info("leaderboard_created", leaderboard_id=created.id, owner_id=owner_id)
        return created

    async def list_members(self, leaderboard_id: str) -> list[Membership]:
        return await asyncio.to_thread(self._list_members, leaderboard_id)

    async def is_member(self, leaderboard_id: str, user_id: str) -> bool:
        return await asyncio.to_thread(self._is_member, leaderboard_id, user_id)

    async def count_members(self, leaderboard_id: str) -> int:
        return await asyncio.to_thread(self._count_members, leaderboard_id)

    async def add_member(self, leaderboard_id: str, user_id: str) -> None:
        await asyncio.to_thread(self._add_member, leaderboard_id, user_id)

    async def remove_member(self, leaderboard_id: str, user_id: str) -> None:
        await asyncio.to_thread(self._remove_member, leaderboard_id, user_id)

    async def set_owner(self, leaderboard_id: str, owner_id: str) -> None:
        await asyncio.to_thread(self._set_owner, leaderboard_id, owner_id)

    async def delete_leaderboard(self, leaderboard_id: str) -> None:
        await asyncio.to_thread(self._delete_leaderboard, leaderboard_id)

    async def list_leaderboards_for_user(self, user_id: str) -> list[PrivateLeaderboard]:
        return await asyncio.to_thread(self._list_leaderboards_for_user, user_id)

    # -- Blocking helpers (run on a worker thread) -------------------------

    def _get_leaderboard(self, leaderboard_id: str) -> PrivateLeaderboard | None:
        try:
            with session_scope(self._session_factory, commit=False) as session:
                model = session.get(PrivateLeaderboardModel, leaderboard_id)
                if model is None:
                    return None
                return _to_domain(model, _member_count(session, leaderboard_id))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read leaderboard {leaderboard_id}") from exc

    def _create_leaderboard(
        self, owner_id: str, name: str, description: str | None, max_members: int
    ) -> PrivateLeaderboard:
        try:
            with session_scope(self._session_factory) as session:
                model = PrivateLeaderboardModel(
                    owner_id=owner_id,
                    name=name,
                    description=description,
                    max_members=max_members,
                )
                session.add(model)
                session.flush()
                # Owner membership commits in the same transaction as the group
                session.add(LeaderboardMemberModel(leaderboard_id=model.id, user_id=owner_id))
                session.flush()
                return _to_domain(model, 1)
        except SQLAlchemyError as exc:
            raise StoreError("Failed to create leaderboard") from exc

    def _list_members(self, leaderboard_id: str) -> list[Membership]:
        stmt = (
            select(LeaderboardMemberModel)
            .where(LeaderboardMemberModel.leaderboard_id == leaderboard_id)
            .order_by(LeaderboardMemberModel.joined_at.asc(), LeaderboardMemberModel.id.asc())
        )
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return [
                    Membership(user_id=m.user_id, joined_at=m.joined_at)
                    for m in session.execute(stmt).scalars()
                ]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list members of {leaderboard_id}") from exc

    def _is_member(self, leaderboard_id: str, user_id: str) -> bool:
        stmt = select(LeaderboardMemberModel.id).where(
            LeaderboardMemberModel.leaderboard_id == leaderboard_id,
            LeaderboardMemberModel.user_id == user_id,
        )
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return session.execute(stmt).first() is not None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to check membership in {leaderboard_id}") from exc

    def _count_members(self, leaderboard_id: str) -> int:
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return _member_count(session, leaderboard_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to count members of {leaderboard_id}") from exc

    def _add_member(self, leaderboard_id: str, user_id: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.add(LeaderboardMemberModel(leaderboard_id=leaderboard_id, user_id=user_id))
        except IntegrityError as exc:
            raise StoreError(f"{user_id} could not be added to {leaderboard_id}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to add member to {leaderboard_id}") from exc

    def _remove_member(self, leaderboard_id: str, user_id: str) -> None:
        stmt = delete(LeaderboardMemberModel).where(
            LeaderboardMemberModel.leaderboard_id == leaderboard_id,
            LeaderboardMemberModel.user_id == user_id,
        )
        try:
            with session_scope(self._session_factory) as session:
                session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to remove member from {leaderboard_id}") from exc

    def _set_owner(self, leaderboard_id: str, owner_id: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                model = session.get(PrivateLeaderboardModel, leaderboard_id)
                if model is None:
                    raise StoreError(f"Leaderboard {leaderboard_id} disappeared")
                model.owner_id = owner_id
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to transfer ownership of {leaderboard_id}") from exc

    def _delete_leaderboard(self, leaderboard_id: str) -> None:
        stmt = delete(PrivateLeaderboardModel).where(PrivateLeaderboardModel.id == leaderboard_id)
        try:
            with session_scope(self._session_factory) as session:
                session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete leaderboard {leaderboard_id}") from exc

    def _list_leaderboards_for_user(self, user_id: str) -> list[PrivateLeaderboard]:
        counts = (
            select(
                LeaderboardMemberModel.leaderboard_id,
                func.count(LeaderboardMemberModel.id).label("member_count"),
            )
            .group_by(LeaderboardMemberModel.leaderboard_id)
            .subquery()
        )
        stmt = (
            select(PrivateLeaderboardModel, counts.c.member_count)
            .join(
                LeaderboardMemberModel,
                LeaderboardMemberModel.leaderboard_id == PrivateLeaderboardModel.id,
            )
            .join(counts, counts.c.leaderboard_id == PrivateLeaderboardModel.id)
            .where(LeaderboardMemberModel.user_id == user_id)
            .order_by(PrivateLeaderboardModel.updated_at.desc())
        )
        try:
            with session_scope(self._session_factory, commit=False) as session:
                return [_to_domain(model, count) for model, count in session.execute(stmt)]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list leaderboards for {user_id}") from exc
