"""Public usernames: the handle other users rank and invite by."""

import re

import structlog

from studyrank.errors import GENERIC_ERROR, StoreError
from studyrank.models.leaderboard import OperationResult
from studyrank.storage.profile_store import ProfileStore

logger = structlog.get_logger()

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9]{4,20}")
INVALID_USERNAME = "Username must be 4-20 characters and use only letters and numbers"
USERNAME_TAKEN = "This username is already taken"


class UsernameService:
    """Claims usernames. A profile without one stays out of shared rankings."""

    def __init__(self, profile_store: ProfileStore):
        self.profile_store = profile_store

    async def update_username(self, user_id: str, username: str) -> OperationResult:
        username = username.strip()
        if not USERNAME_PATTERN.fullmatch(username):
            return OperationResult.fail(INVALID_USERNAME)

        try:
            claimed = await self.profile_store.set_username(user_id, username)
        except StoreError as e:
            logger.error("username_update_failed", user_id=user_id, error=str(e))
            return OperationResult.fail(GENERIC_ERROR)
        if not claimed:
            return OperationResult.fail(USERNAME_TAKEN)

        logger.info("username_updated", user_id=user_id, username=username)
        return OperationResult.ok()
