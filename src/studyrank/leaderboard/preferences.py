"""Per-user leaderboard privacy preferences."""

import structlog

from studyrank.errors import GENERIC_ERROR, StoreError
from studyrank.models.leaderboard import OperationResult, UserPreferences
from studyrank.storage.profile_store import ProfileStore

logger = structlog.get_logger()


class PreferencesService:
    def __init__(self, profile_store: ProfileStore):
        self.profile_store = profile_store

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        """Preferences for ``user_id``; defaults if never set, None on store failure."""
        try:
            return await self.profile_store.get_preferences(user_id)
        except StoreError as e:
            logger.error("preferences_read_failed", user_id=user_id, error=str(e))
            return None

    async def update_user_preferences(
        self,
        user_id: str,
        block_leaderboard_invites: bool | None = None,
        hide_from_global_leaderboard: bool | None = None,
    ) -> OperationResult:
        fields = {}
        if block_leaderboard_invites is not None:
            fields["block_leaderboard_invites"] = block_leaderboard_invites
        if hide_from_global_leaderboard is not None:
            fields["hide_from_global_leaderboard"] = hide_from_global_leaderboard
        try:
            await self.profile_store.update_preferences(user_id, fields)
        except StoreError as e:
            logger.error("preferences_update_failed", user_id=user_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)
        logger.info("preferences_updated", user_id=user_id, **fields)
        return OperationResult.ok()

    async def check_if_user_blocks_invites(self, user_id: str) -> bool:
        preferences = await self.get_user_preferences(user_id)
        return preferences.block_leaderboard_invites if preferences else False

    async def check_if_user_hides_from_global(self, user_id: str) -> bool:
        preferences = await self.get_user_preferences(user_id)
        return preferences.hide_from_global_leaderboard if preferences else False
