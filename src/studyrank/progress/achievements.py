"""Achievement catalog and unlock evaluation."""

from pathlib import Path

import structlog

from studyrank.config import load_achievement_definitions
from studyrank.models.progress import (
    Achievement,
    AchievementState,
    AchievementStatus,
    UserProgress,
)

logger = structlog.get_logger()

DEFAULT_CATALOG: tuple[Achievement, ...] = (
    Achievement(id="first_question", name="Getting Started", description="Answer your first question",
                icon="🎯", xp_reward=10, metric="questions_answered", threshold=1),
    Achievement(id="streak_3", name="On a Roll", description="Maintain a 3-day streak",
                icon="🔥", xp_reward=30, metric="day_streak", threshold=3),
    Achievement(id="streak_7", name="Week Warrior", description="Maintain a 7-day streak",
                icon="💪", xp_reward=70, metric="day_streak", threshold=7),
    Achievement(id="streak_30", name="Monthly Master", description="Maintain a 30-day streak",
                icon="👑", xp_reward=300, metric="day_streak", threshold=30),
    Achievement(id="answer_streak_5", name="Hot Hand", description="Get 5 questions correct in a row",
                icon="✨", xp_reward=25, metric="answer_streak", threshold=5),
    Achievement(id="perfect_10", name="Perfect Score", description="Get 10 questions correct in a row",
                icon="⭐", xp_reward=50, metric="answer_streak", threshold=10),
    Achievement(id="answer_streak_20", name="Unstoppable", description="Get 20 questions correct in a row",
                icon="🌟", xp_reward=100, metric="answer_streak", threshold=20),
    Achievement(id="questions_100", name="Century", description="Answer 100 questions",
                icon="💯", xp_reward=50, metric="questions_answered", threshold=100),
    Achievement(id="questions_250", name="Dedicated Learner", description="Answer 250 questions",
                icon="📝", xp_reward=100, metric="questions_answered", threshold=250),
    Achievement(id="questions_500", name="Question Machine", description="Answer 500 questions",
                icon="🏆", xp_reward=250, metric="questions_answered", threshold=500),
    Achievement(id="xp_1000", name="Knowledge Seeker", description="Earn 1000 XP",
                icon="📚", xp_reward=100, metric="total_xp", threshold=1000),
)


def load_catalog(path: Path | None = None) -> tuple[Achievement, ...]:
    """Build a catalog from a YAML definitions file.

    Returns ``DEFAULT_CATALOG`` when no path is configured. Duplicate ids are
    rejected since unlock state is keyed by id.
    """
    if path is None:
        return DEFAULT_CATALOG

    definitions = load_achievement_definitions(path)
    catalog = tuple(Achievement.model_validate(d) for d in definitions)
    ids = [a.id for a in catalog]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Duplicate achievement ids in {path}")
    logger.info("achievement_catalog_loaded", path=str(path), count=len(catalog))
    return catalog


def evaluate_unlocks(
    progress: UserProgress, catalog: tuple[Achievement, ...]
) -> list[Achievement]:
    """Unlock every satisfied, not-yet-unlocked achievement.

    Appends ids to ``progress.achievements`` in catalog order and returns
    the newly unlocked entries. Rewards are not credited here.
    """
    unlocked = set(progress.achievements)
    newly_unlocked = []
    for achievement in catalog:
        if achievement.id in unlocked:
            continue
        if achievement.is_satisfied(progress):
            progress.achievements.append(achievement.id)
            unlocked.add(achievement.id)
            newly_unlocked.append(achievement)
    return newly_unlocked


def achievement_state(progress: UserProgress, achievement: Achievement) -> AchievementState:
    if achievement.id not in progress.achievements:
        return AchievementState.LOCKED
    if achievement.xp_reward == 0 or achievement.id in progress.collected_achievements:
        return AchievementState.COLLECTED
    return AchievementState.UNLOCKED


def describe_catalog(
    progress: UserProgress, catalog: tuple[Achievement, ...]
) -> list[AchievementStatus]:
    return [
        AchievementStatus(
            id=a.id,
            name=a.name,
            description=a.description,
            icon=a.icon,
            xp_reward=a.xp_reward,
            state=achievement_state(progress, a),
        )
        for a in catalog
    ]
