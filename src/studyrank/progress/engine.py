"""Progress & streak engine: XP, day streaks, answer streaks, achievements."""

from collections.abc import Callable
from datetime import date

import structlog

from studyrank.config import Settings, get_settings
from studyrank.errors import StoreError
from studyrank.models.progress import (
    Achievement,
    AchievementState,
    AchievementStatus,
    CollectResult,
    PracticeResult,
    UserProgress,
)
from studyrank.progress.achievements import (
    DEFAULT_CATALOG,
    achievement_state,
    describe_catalog,
    evaluate_unlocks,
)
from studyrank.progress.debounce import DebouncedWriter
from studyrank.progress.streak import count_question, credit_day, validate_streak
from studyrank.storage.profile_store import ProfileStore
from studyrank.storage.progress_cache import LocalProgressCache

logger = structlog.get_logger()


class ProgressEngine:
    """Owns one user's in-memory progress and every transition on it.

    The in-memory state is authoritative for the session. Each mutation is
    mirrored synchronously to the local cache and, when a profile store and
    user id are configured, to the remote store through a debounced writer.
    Persistence failures are logged and swallowed.

    Args:
        cache: Device-local progress cache.
        settings: Application settings (thresholds, XP values, capacity).
        catalog: Achievement catalog, evaluated in order.
        profile_store: Remote profile store; None keeps progress local only.
        user_id: Remote user id the progress belongs to.
        clock: Returns today's calendar date.
    """

    def __init__(
        self,
        cache: LocalProgressCache,
        settings: Settings | None = None,
        catalog: tuple[Achievement, ...] = DEFAULT_CATALOG,
        profile_store: ProfileStore | None = None,
        user_id: str | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.settings = settings or get_settings()
        self.cache = cache
        self.catalog = catalog
        self.profile_store = profile_store
        self.user_id = user_id
        self._clock = clock
        self._progress = UserProgress()
        self._answered_ids: set[str] = set()
        self._catalog_by_id = {a.id: a for a in catalog}
        self._remote_behind = False
        self._writer = DebouncedWriter(
            self._write_remote, delay_seconds=self.settings.remote_save_delay_seconds
        )

    async def initialize(self) -> None:
        """Load cached progress and break any streak that lapsed meanwhile."""
        saved = self.cache.get()
        self._progress = saved if saved is not None else UserProgress()
        self._answered_ids = set(self._progress.answered_question_ids)
        trimmed = self._trim_answered_ids()

        today = self._clock()
        day_streak_before = self._progress.day_streak
        if validate_streak(self._progress, today) or trimmed:
            if self._progress.day_streak != day_streak_before:
                logger.info(
                    "day_streak_lapsed",
                    user_id=self.user_id,
                    previous_streak=day_streak_before,
                )
            self._persist()

    async def sync_from_remote(self) -> None:
        """Adopt the remote profile as the source of truth, then initialize.

        A pending snapshot is pushed first so the row read back already
        contains this session's progress.
        """
        if self.profile_store is not None and self.user_id is not None:
            await self._writer.flush()
            if self._remote_behind:
                # The remote row predates progress that failed to upload
                logger.warning("remote_progress_stale", user_id=self.user_id)
            else:
                try:
                    row = await self.profile_store.read_profile(self.user_id)
                except StoreError as e:
                    logger.warning(
                        "remote_progress_read_failed", user_id=self.user_id, error=str(e)
                    )
                    row = None
                if row is not None:
                    self._save_local(row.to_progress())
        await self.initialize()

    async def record_practice(
        self, is_correct: bool, question_id: str | None = None
    ) -> PracticeResult:
        """Record one answered question and return the XP and unlocks it earned."""
        progress = self._progress
        today = self._clock()

        if count_question(progress, today, self.settings.daily_question_threshold):
            credit_day(progress, today)
            logger.info("day_streak_credited", user_id=self.user_id, day_streak=progress.day_streak)

        if question_id and is_correct and question_id not in self._answered_ids:
            self._answered_ids.add(question_id)
            progress.answered_question_ids.append(question_id)
            self._trim_answered_ids()

        progress.questions_answered += 1
        if is_correct:
            progress.correct_answers += 1
            progress.answer_streak += 1
        else:
            progress.answer_streak = 0

        xp_gained = self.settings.xp_per_correct if is_correct else self.settings.xp_per_incorrect
        progress.total_xp += xp_gained

        new_achievements = self._check_achievements()
        self._persist()
        return PracticeResult(xp_gained=xp_gained, new_achievements=new_achievements)

    async def collect_achievement_xp(self, achievement_id: str) -> CollectResult:
        """Credit the reward of an unlocked, uncollected achievement.

        Unknown, locked, reward-less or already collected ids are a no-op.
        """
        achievement = self._catalog_by_id.get(achievement_id)
        if achievement is None:
            return CollectResult()
        if achievement_state(self._progress, achievement) != AchievementState.UNLOCKED:
            return CollectResult()

        self._progress.total_xp += achievement.xp_reward
        self._progress.collected_achievements.append(achievement_id)
        logger.info(
            "achievement_collected",
            user_id=self.user_id,
            achievement_id=achievement_id,
            xp_reward=achievement.xp_reward,
        )
        # The reward itself may cross an XP threshold
        new_achievements = self._check_achievements()
        self._persist()
        return CollectResult(xp_gained=achievement.xp_reward, new_achievements=new_achievements)

    async def add_bonus_xp(self, amount: int) -> CollectResult:
        """Credit XP earned outside the quiz loop (e.g. social bonuses)."""
        if amount <= 0:
            return CollectResult()
        self._progress.total_xp += amount
        new_achievements = self._check_achievements()
        self._persist()
        return CollectResult(xp_gained=amount, new_achievements=new_achievements)

    def get_progress(self) -> UserProgress:
        return self._progress.model_copy(deep=True)

    def get_achievements(self) -> list[AchievementStatus]:
        return describe_catalog(self._progress, self.catalog)

    def get_answered_question_ids(self) -> list[str]:
        return list(self._progress.answered_question_ids)

    def has_answered_question(self, question_id: str) -> bool:
        return question_id in self._answered_ids

    def reset(self) -> None:
        """Return to the zero state. The remote store is left untouched."""
        self._writer.cancel()
        self._progress = UserProgress()
        self._answered_ids = set()
        try:
            self.cache.clear()
        except OSError as e:
            logger.warning("progress_cache_clear_failed", error=str(e))
        logger.info("progress_reset", user_id=self.user_id)

    async def flush(self) -> None:
        """Push any pending remote write now."""
        await self._writer.flush()

    def close(self) -> None:
        self._writer.cancel()

    def _check_achievements(self) -> list[Achievement]:
        unlocked = evaluate_unlocks(self._progress, self.catalog)
        for achievement in unlocked:
            logger.info("achievement_unlocked", user_id=self.user_id, achievement_id=achievement.id)
        return unlocked

    def _trim_answered_ids(self) -> bool:
        ids = self._progress.answered_question_ids
        overflow = len(ids) - self.settings.max_answered_questions
        if overflow <= 0:
            return False
        for evicted in ids[:overflow]:
            self._answered_ids.discard(evicted)
        del ids[:overflow]
        return True

    def _persist(self) -> None:
        self._save_local(self._progress)
        if self.profile_store is not None and self.user_id is not None:
            self._writer.schedule(self._progress.model_dump())

    def _save_local(self, progress: UserProgress) -> None:
        try:
            self.cache.set(progress)
        except OSError as e:
            logger.warning("progress_cache_write_failed", path=str(self.cache.path), error=str(e))

    async def _write_remote(self, fields: dict) -> None:
        try:
            await self.profile_store.write_profile(self.user_id, fields)
        except StoreError as e:
            self._remote_behind = True
            logger.warning("remote_progress_write_failed", user_id=self.user_id, error=str(e))
        else:
            self._remote_behind = False
