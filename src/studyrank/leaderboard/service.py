"""Leaderboard ranking engine: global and private rankings, group administration."""

import structlog

from studyrank.config import Settings, get_settings
from studyrank.errors import GENERIC_ERROR, StoreError
from studyrank.leaderboard.preferences import PreferencesService
from studyrank.leaderboard.ranking import (
    assign_dense_ranks,
    entry_from_row,
    exclude_hidden,
    rank_window,
    sort_by_metric,
)
from studyrank.models.leaderboard import (
    CreateLeaderboardResult,
    LeaderboardEntry,
    LeaderboardMember,
    Metric,
    OperationResult,
    PrivateLeaderboard,
    RankWindow,
)
from studyrank.storage.membership_store import MembershipStore
from studyrank.storage.profile_store import ProfileStore

logger = structlog.get_logger()


class LeaderboardService:
    """Stateless ranking queries and private-group commands.

    Expected failures (not found, permission, capacity, validation) come back
    as values; store failures are logged and reported with a generic message
    or an empty result. Nothing raises across this boundary.

    Args:
        profile_store: Remote profile store (stats, usernames, preferences).
        membership_store: Private leaderboard and membership rows.
        settings: Capacity, window and over-fetch configuration.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        membership_store: MembershipStore,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.profile_store = profile_store
        self.membership_store = membership_store
        self.preferences = PreferencesService(profile_store)

    # -- Global rankings -------------------------------------------------

    async def get_global_leaderboard(
        self, metric: Metric = Metric.TOTAL_XP, limit: int = 100, offset: int = 0
    ) -> list[LeaderboardEntry]:
        """Top ``limit`` visible users by ``metric``, ranked from ``offset + 1``."""
        metric = Metric(metric)
        try:
            return await self._global_ranking(metric, limit, offset)
        except StoreError as e:
            logger.error("global_leaderboard_failed", metric=metric.value, error=str(e))
            return []

    async def _global_ranking(
        self, metric: Metric, limit: int, offset: int
    ) -> list[LeaderboardEntry]:
        hidden = await self.profile_store.list_hidden_user_ids()
        # Hidden users are filtered after the query, so fetch extra rows
        fetch_limit = limit * self.settings.global_overfetch_factor if hidden else limit
        rows = await self.profile_store.query_ranked(metric, fetch_limit, offset)
        visible = exclude_hidden((entry_from_row(r) for r in rows), hidden)
        return assign_dense_ranks(visible[:limit], offset=offset)

    async def get_global_leaderboard_by_xp(
        self, limit: int = 100, offset: int = 0
    ) -> list[LeaderboardEntry]:
        return await self.get_global_leaderboard(Metric.TOTAL_XP, limit, offset)

    async def get_global_leaderboard_by_streak(
        self, limit: int = 100, offset: int = 0
    ) -> list[LeaderboardEntry]:
        return await self.get_global_leaderboard(Metric.DAY_STREAK, limit, offset)

    async def get_user_rank(self, user_id: str, metric: Metric = Metric.TOTAL_XP) -> RankWindow:
        """The user's global rank and up to two neighbours on each side."""
        if await self.preferences.check_if_user_hides_from_global(user_id):
            return RankWindow(hidden=True)

        metric = Metric(metric)
        try:
            entries = await self._global_ranking(
                metric, limit=self.settings.full_ranking_limit, offset=0
            )
        except StoreError as e:
            logger.error("global_rank_failed", user_id=user_id, metric=metric.value, error=str(e))
            return RankWindow(error=GENERIC_ERROR)
        rank, window = rank_window(entries, user_id, self.settings.rank_window_radius)
        return RankWindow(rank=rank, entries=window)

    async def get_user_global_rank_by_xp(self, user_id: str) -> RankWindow:
        return await self.get_user_rank(user_id, Metric.TOTAL_XP)

    async def get_user_global_rank_by_streak(self, user_id: str) -> RankWindow:
        return await self.get_user_rank(user_id, Metric.DAY_STREAK)

    # -- Private rankings ------------------------------------------------

    async def get_private_leaderboards_for_user(self, user_id: str) -> list[PrivateLeaderboard]:
        try:
            return await self.membership_store.list_leaderboards_for_user(user_id)
        except StoreError as e:
            logger.error("user_leaderboards_failed", user_id=user_id, error=str(e))
            return []

    async def get_private_leaderboard_members(
        self, leaderboard_id: str, metric: Metric = Metric.TOTAL_XP
    ) -> list[LeaderboardMember]:
        """All members ranked by ``metric``. Visibility preferences do not apply."""
        metric = Metric(metric)
        try:
            return await self._private_ranking(leaderboard_id, metric)
        except StoreError as e:
            logger.error("private_leaderboard_members_failed", leaderboard_id=leaderboard_id, error=str(e))
            return []

    async def _private_ranking(self, leaderboard_id: str, metric: Metric) -> list[LeaderboardMember]:
        memberships = await self.membership_store.list_members(leaderboard_id)
        if not memberships:
            return []
        profiles = await self.profile_store.read_profiles(m.user_id for m in memberships)

        by_user = {p.user_id: p for p in profiles}
        members = [
            LeaderboardMember(
                **entry_from_row(by_user[m.user_id]).model_dump(),
                joined_at=m.joined_at,
            )
            for m in memberships
            if m.user_id in by_user
        ]
        # Memberships arrive oldest first, so equal scores rank by join time
        return assign_dense_ranks(sort_by_metric(members, metric))

    async def get_user_rank_in_private_leaderboard(
        self, leaderboard_id: str, user_id: str, metric: Metric = Metric.TOTAL_XP
    ) -> RankWindow:
        try:
            members = await self._private_ranking(leaderboard_id, Metric(metric))
        except StoreError as e:
            logger.error(
                "private_rank_failed", leaderboard_id=leaderboard_id, user_id=user_id, error=str(e)
            )
            return RankWindow(error=GENERIC_ERROR)
        rank, window = rank_window(members, user_id, self.settings.rank_window_radius)
        return RankWindow(rank=rank, entries=window)

    # -- Group administration --------------------------------------------

    async def create_private_leaderboard(
        self, name: str, description: str | None, owner_id: str
    ) -> CreateLeaderboardResult:
        if not name or not name.strip():
            return CreateLeaderboardResult(error="Leaderboard name is required")
        if len(name) > self.settings.leaderboard_name_max_length:
            return CreateLeaderboardResult(error="Leaderboard name is too long")

        try:
            leaderboard = await self.membership_store.create_leaderboard(
                owner_id=owner_id,
                name=name.strip(),
                description=(description or "").strip() or None,
                max_members=self.settings.leaderboard_max_members,
            )
        except StoreError as e:
            logger.error("leaderboard_create_failed", owner_id=owner_id, error=str(e))
            return CreateLeaderboardResult(error=GENERIC_ERROR)
        return CreateLeaderboardResult(leaderboard=leaderboard)

    async def add_member_to_leaderboard(
        self, leaderboard_id: str, username: str, added_by_user_id: str
    ) -> OperationResult:
        """Add the user called ``username``; the requester must be a member."""
        try:
            leaderboard = await self.membership_store.get_leaderboard(leaderboard_id)
            if leaderboard is None:
                return OperationResult.fail("Leaderboard not found")

            if not await self.membership_store.is_member(leaderboard_id, added_by_user_id):
                return OperationResult.fail("You must be a member to add others")

            profile = await self.profile_store.resolve_username(username)
            if profile is None:
                return OperationResult.fail("User not found")
            if not profile.username:
                return OperationResult.fail("Cannot add anonymous users")

            if await self.preferences.check_if_user_blocks_invites(profile.user_id):
                return OperationResult.fail("This user has blocked leaderboard invites")

            count = await self.membership_store.count_members(leaderboard_id)
            if count >= leaderboard.max_members:
                return OperationResult.fail(
                    f"Leaderboard is full (max {leaderboard.max_members} members)"
                )

            if await self.membership_store.is_member(leaderboard_id, profile.user_id):
                return OperationResult.fail("User is already a member")

            await self.membership_store.add_member(leaderboard_id, profile.user_id)
        except StoreError as e:
            logger.error("leaderboard_add_member_failed", leaderboard_id=leaderboard_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)

        logger.info(
            "leaderboard_member_added",
            leaderboard_id=leaderboard_id,
            user_id=profile.user_id,
            added_by=added_by_user_id,
        )
        return OperationResult.ok()

    async def remove_member_from_leaderboard(
        self, leaderboard_id: str, user_id: str, removed_by_user_id: str
    ) -> OperationResult:
        """Owner-only removal. The owner can never remove themselves."""
        try:
            leaderboard = await self.membership_store.get_leaderboard(leaderboard_id)
            if leaderboard is None:
                return OperationResult.fail("Leaderboard not found")
            if leaderboard.owner_id != removed_by_user_id:
                return OperationResult.fail("Only the owner can remove members")
            if user_id == leaderboard.owner_id:
                return OperationResult.fail("Cannot remove owner. Transfer ownership first.")

            await self.membership_store.remove_member(leaderboard_id, user_id)
        except StoreError as e:
            logger.error("leaderboard_remove_member_failed", leaderboard_id=leaderboard_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)

        logger.info("leaderboard_member_removed", leaderboard_id=leaderboard_id, user_id=user_id)
        return OperationResult.ok()

    async def transfer_ownership(
        self, leaderboard_id: str, new_owner_id: str, current_owner_id: str
    ) -> OperationResult:
        try:
            leaderboard = await self.membership_store.get_leaderboard(leaderboard_id)
            if leaderboard is None:
                return OperationResult.fail("Leaderboard not found")
            if leaderboard.owner_id != current_owner_id:
                return OperationResult.fail("You are not the owner")
            if not await self.membership_store.is_member(leaderboard_id, new_owner_id):
                return OperationResult.fail("New owner must be an existing member")

            await self.membership_store.set_owner(leaderboard_id, new_owner_id)
        except StoreError as e:
            logger.error("leaderboard_transfer_failed", leaderboard_id=leaderboard_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)

        logger.info(
            "leaderboard_ownership_transferred",
            leaderboard_id=leaderboard_id,
            previous_owner=current_owner_id,
            new_owner=new_owner_id,
        )
        return OperationResult.ok()

    async def delete_private_leaderboard(self, leaderboard_id: str, owner_id: str) -> OperationResult:
        try:
            leaderboard = await self.membership_store.get_leaderboard(leaderboard_id)
            if leaderboard is None:
                return OperationResult.fail("Leaderboard not found")
            if leaderboard.owner_id != owner_id:
                return OperationResult.fail("Only the owner can delete the leaderboard")

            await self.membership_store.delete_leaderboard(leaderboard_id)
        except StoreError as e:
            logger.error("leaderboard_delete_failed", leaderboard_id=leaderboard_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)

        logger.info("leaderboard_deleted", leaderboard_id=leaderboard_id)
        return OperationResult.ok()
