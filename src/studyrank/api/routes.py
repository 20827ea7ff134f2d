"""REST API routes for practice progress and leaderboards."""

import functools
from collections import OrderedDict

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from studyrank.config import get_settings
from studyrank.leaderboard.preferences import PreferencesService
from studyrank.leaderboard.service import LeaderboardService
from studyrank.leaderboard.usernames import UsernameService
from studyrank.models.leaderboard import (
    CreateLeaderboardResult,
    LeaderboardEntry,
    LeaderboardMember,
    Metric,
    OperationResult,
    PrivateLeaderboard,
    RankWindow,
    UserPreferences,
)
from studyrank.models.progress import (
    Achievement,
    AchievementStatus,
    CollectResult,
    PracticeResult,
    UserProgress,
)
from studyrank.progress.achievements import load_catalog
from studyrank.progress.engine import ProgressEngine
from studyrank.storage.membership_store import MembershipStore, SqlMembershipStore
from studyrank.storage.profile_store import ProfileStore, SqlProfileStore
from studyrank.storage.progress_cache import LocalProgressCache

logger = structlog.get_logger()
router = APIRouter(prefix="/api")

# One engine per active user, least recently used first
_progress_engines: OrderedDict[str, ProgressEngine] = OrderedDict()


class PracticeRequest(BaseModel):
    is_correct: bool
    question_id: str | None = None


class BonusRequest(BaseModel):
    amount: int = Field(gt=0)


class CreateLeaderboardRequest(BaseModel):
    owner_id: str
    name: str
    description: str | None = None


class AddMemberRequest(BaseModel):
    username: str
    requester_id: str


class TransferOwnershipRequest(BaseModel):
    new_owner_id: str
    requester_id: str


class UsernameUpdateRequest(BaseModel):
    username: str


class PreferencesUpdateRequest(BaseModel):
    block_leaderboard_invites: bool | None = None
    hide_from_global_leaderboard: bool | None = None


@functools.lru_cache
def get_catalog() -> tuple[Achievement, ...]:
    return load_catalog(get_settings().achievements_file)


def get_profile_store() -> ProfileStore:
    return SqlProfileStore()


def get_membership_store() -> MembershipStore:
    return SqlMembershipStore()


def get_leaderboard_service(
    profile_store: ProfileStore = Depends(get_profile_store),
    membership_store: MembershipStore = Depends(get_membership_store),
) -> LeaderboardService:
    return LeaderboardService(profile_store, membership_store, settings=get_settings())


async def get_progress_engine(
    user_id: str, profile_store: ProfileStore = Depends(get_profile_store)
) -> ProgressEngine:
    engine = _progress_engines.get(user_id)
    if engine is not None:
        _progress_engines.move_to_end(user_id)
        return engine

    settings = get_settings()
    engine = ProgressEngine(
        LocalProgressCache(settings.progress_cache_dir / f"{user_id}.json"),
        settings=settings,
        catalog=get_catalog(),
        profile_store=profile_store,
        user_id=user_id,
    )
    await engine.sync_from_remote()
    _progress_engines[user_id] = engine
    logger.info("progress_engine_started", user_id=user_id)
    await _evict_idle_engines(settings.max_live_progress_engines)
    return engine


async def _evict_idle_engines(max_engines: int) -> None:
    """Drop least recently used engines until at most ``max_engines`` remain."""
    while len(_progress_engines) > max_engines:
        user_id, engine = _progress_engines.popitem(last=False)
        await engine.flush()
        engine.close()
        logger.info("progress_engine_evicted", user_id=user_id)


async def flush_progress_engines() -> None:
    """Push pending remote writes for every live engine."""
    for engine in list(_progress_engines.values()):
        await engine.flush()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


# -- Progress ---------------------------------------------------------------


@router.get("/users/{user_id}/progress")
async def get_progress(engine: ProgressEngine = Depends(get_progress_engine)) -> UserProgress:
    return engine.get_progress()


@router.post("/users/{user_id}/practice")
async def record_practice(
    body: PracticeRequest, engine: ProgressEngine = Depends(get_progress_engine)
) -> PracticeResult:
    return await engine.record_practice(body.is_correct, body.question_id)


@router.get("/users/{user_id}/achievements")
async def get_achievements(
    engine: ProgressEngine = Depends(get_progress_engine),
) -> list[AchievementStatus]:
    return engine.get_achievements()


@router.post("/users/{user_id}/achievements/{achievement_id}/collect")
async def collect_achievement_xp(
    achievement_id: str, engine: ProgressEngine = Depends(get_progress_engine)
) -> CollectResult:
    return await engine.collect_achievement_xp(achievement_id)


@router.post("/users/{user_id}/bonus")
async def add_bonus_xp(
    body: BonusRequest, engine: ProgressEngine = Depends(get_progress_engine)
) -> CollectResult:
    return await engine.add_bonus_xp(body.amount)


@router.post("/users/{user_id}/reset")
async def reset_progress(engine: ProgressEngine = Depends(get_progress_engine)) -> UserProgress:
    engine.reset()
    return engine.get_progress()


@router.post("/users/{user_id}/sync")
async def sync_progress(engine: ProgressEngine = Depends(get_progress_engine)) -> UserProgress:
    await engine.sync_from_remote()
    return engine.get_progress()


# -- Profile ----------------------------------------------------------------


@router.put("/users/{user_id}/username")
async def update_username(
    user_id: str,
    body: UsernameUpdateRequest,
    profile_store: ProfileStore = Depends(get_profile_store),
) -> OperationResult:
    return await UsernameService(profile_store).update_username(user_id, body.username)


# -- Preferences ------------------------------------------------------------


@router.get("/users/{user_id}/preferences")
async def get_preferences(
    user_id: str, profile_store: ProfileStore = Depends(get_profile_store)
) -> UserPreferences | None:
    return await PreferencesService(profile_store).get_user_preferences(user_id)


@router.put("/users/{user_id}/preferences")
async def update_preferences(
    user_id: str,
    body: PreferencesUpdateRequest,
    profile_store: ProfileStore = Depends(get_profile_store),
) -> OperationResult:
    return await PreferencesService(profile_store).update_user_preferences(
        user_id,
        block_leaderboard_invites=body.block_leaderboard_invites,
        hide_from_global_leaderboard=body.hide_from_global_leaderboard,
    )


# -- Leaderboards -----------------------------------------------------------


@router.get("/leaderboards/global")
async def get_global_leaderboard(
    metric: Metric = Metric.TOTAL_XP,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> list[LeaderboardEntry]:
    return await service.get_global_leaderboard(metric, limit, offset)


@router.get("/leaderboards/global/rank/{user_id}")
async def get_user_rank(
    user_id: str,
    metric: Metric = Metric.TOTAL_XP,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> RankWindow:
    return await service.get_user_rank(user_id, metric)


@router.post("/leaderboards")
async def create_private_leaderboard(
    body: CreateLeaderboardRequest,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> CreateLeaderboardResult:
    return await service.create_private_leaderboard(body.name, body.description, body.owner_id)


@router.get("/users/{user_id}/leaderboards")
async def get_private_leaderboards_for_user(
    user_id: str, service: LeaderboardService = Depends(get_leaderboard_service)
) -> list[PrivateLeaderboard]:
    return await service.get_private_leaderboards_for_user(user_id)


@router.get("/leaderboards/{leaderboard_id}/members")
async def get_private_leaderboard_members(
    leaderboard_id: str,
    metric: Metric = Metric.TOTAL_XP,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> list[LeaderboardMember]:
    return await service.get_private_leaderboard_members(leaderboard_id, metric)


@router.get("/leaderboards/{leaderboard_id}/rank/{user_id}")
async def get_user_rank_in_private_leaderboard(
    leaderboard_id: str,
    user_id: str,
    metric: Metric = Metric.TOTAL_XP,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> RankWindow:
    return await service.get_user_rank_in_private_leaderboard(leaderboard_id, user_id, metric)


@router.post("/leaderboards/{leaderboard_id}/members")
async def add_member(
    leaderboard_id: str,
    body: AddMemberRequest,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> OperationResult:
    return await service.add_member_to_leaderboard(leaderboard_id, body.username, body.requester_id)


@router.delete("/leaderboards/{leaderboard_id}/members/{user_id}")
async def remove_member(
    leaderboard_id: str,
    user_id: str,
    requester_id: str,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> OperationResult:
    return await service.remove_member_from_leaderboard(leaderboard_id, user_id, requester_id)


@router.post("/leaderboards/{leaderboard_id}/owner")
async def transfer_ownership(
    leaderboard_id: str,
    body: TransferOwnershipRequest,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> OperationResult:
    return await service.transfer_ownership(leaderboard_id, body.new_owner_id, body.requester_id)


@router.delete("/leaderboards/{leaderboard_id}")
async def delete_private_leaderboard(
    leaderboard_id: str,
    requester_id: str,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> OperationResult:
    return await service.delete_private_leaderboard(leaderboard_id, requester_id)
