"""Tests for ProgressEngine: XP, streaks, achievements, persistence."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from studyrank.errors import StoreError
from studyrank.models.leaderboard import ProfileRow
from studyrank.models.progress import Achievement, AchievementState, UserProgress
from studyrank.progress.engine import ProgressEngine


@pytest.fixture
def make_engine(cache, settings, clock):
    def _make(**kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("clock", clock)
        return ProgressEngine(cache, **kwargs)

    return _make


async def answer(engine, n, is_correct=True):
    for _ in range(n):
        await engine.record_practice(is_correct)


class TestRecordPractice:
    async def test_first_correct_answer(self, make_engine):
        engine = make_engine()
        await engine.initialize()

        result = await engine.record_practice(True)

        progress = engine.get_progress()
        assert result.xp_gained == 10
        assert progress.questions_answered == 1
        assert progress.correct_answers == 1
        assert progress.total_xp == 10
        assert progress.answer_streak == 1
        assert progress.day_streak == 0
        assert [a.id for a in result.new_achievements] == ["first_question"]

    async def test_incorrect_answer_resets_answer_streak(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 3)

        result = await engine.record_practice(False)

        progress = engine.get_progress()
        assert result.xp_gained == 5
        assert progress.answer_streak == 0
        assert progress.correct_answers == 3
        assert progress.questions_answered == 4

    async def test_threshold_credits_day_streak(self, make_engine, clock):
        engine = make_engine()
        await engine.initialize()

        await answer(engine, 4)
        assert engine.get_progress().day_streak == 0

        await engine.record_practice(False)
        progress = engine.get_progress()
        assert progress.day_streak == 1
        assert progress.last_valid_streak_date == clock.today

    async def test_more_answers_same_day_do_not_recredit(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 12)
        assert engine.get_progress().day_streak == 1
        assert engine.get_progress().questions_answered_today == 12

    async def test_consecutive_days_extend_streak(self, make_engine, clock):
        engine = make_engine()
        await engine.initialize()

        for _ in range(3):
            await answer(engine, 5)
            clock.advance()

        progress = engine.get_progress()
        assert progress.day_streak == 3
        assert "streak_3" in progress.achievements

    async def test_gap_restarts_streak_at_one(self, make_engine, clock):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 5)
        clock.advance(3)

        await answer(engine, 5)

        assert engine.get_progress().day_streak == 1

    async def test_daily_counter_resets_on_new_day(self, make_engine, clock):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 3)
        clock.advance()

        await answer(engine, 2)

        progress = engine.get_progress()
        assert progress.questions_answered_today == 2
        assert progress.last_question_date == clock.today

    async def test_xp_is_sum_of_answers_rewards_and_bonuses(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        for is_correct in (True, False, True, True, False):
            await engine.record_practice(is_correct)

        await engine.collect_achievement_xp("first_question")
        await engine.add_bonus_xp(25)

        assert engine.get_progress().total_xp == 3 * 10 + 2 * 5 + 10 + 25

    async def test_answer_streak_achievement_stays_unlocked(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 5)
        await engine.record_practice(False)

        progress = engine.get_progress()
        assert "answer_streak_5" in progress.achievements
        assert progress.answer_streak == 0

    async def test_achievements_unlock_in_catalog_order(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 4)

        result = await engine.record_practice(True)

        assert [a.id for a in result.new_achievements] == ["answer_streak_5"]
        assert engine.get_progress().achievements == ["first_question", "answer_streak_5"]


class TestAnsweredQuestions:
    async def test_records_correct_answers_once(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await engine.record_practice(True, "q1")
        await engine.record_practice(True, "q1")
        await engine.record_practice(False, "q2")

        assert engine.get_answered_question_ids() == ["q1"]
        assert engine.has_answered_question("q1")
        assert not engine.has_answered_question("q2")

    async def test_oldest_ids_evicted_past_capacity(self, make_engine, settings):
        settings.max_answered_questions = 3
        engine = make_engine()
        await engine.initialize()

        for i in range(1, 6):
            await engine.record_practice(True, f"q{i}")

        assert engine.get_answered_question_ids() == ["q3", "q4", "q5"]
        assert not engine.has_answered_question("q1")
        assert engine.has_answered_question("q5")

    async def test_initialize_trims_oversized_cache(self, make_engine, cache, settings):
        settings.max_answered_questions = 2
        cache.set(UserProgress(answered_question_ids=["a", "b", "c", "d"]))
        engine = make_engine()

        await engine.initialize()

        assert engine.get_answered_question_ids() == ["c", "d"]
        assert cache.get().answered_question_ids == ["c", "d"]


class TestAchievementCollection:
    async def test_collect_credits_reward_once(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await engine.record_practice(True)

        first = await engine.collect_achievement_xp("first_question")
        second = await engine.collect_achievement_xp("first_question")

        assert first.xp_gained == 10
        assert second.xp_gained == 0
        assert engine.get_progress().total_xp == 20
        assert engine.get_progress().collected_achievements == ["first_question"]

    async def test_collect_locked_or_unknown_is_noop(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await engine.record_practice(True)

        assert (await engine.collect_achievement_xp("streak_30")).xp_gained == 0
        assert (await engine.collect_achievement_xp("nope")).xp_gained == 0
        assert engine.get_progress().total_xp == 10

    async def test_zero_reward_achievement_reports_collected(self, make_engine):
        catalog = (
            Achievement(id="hello", name="Hello", description="", metric="questions_answered",
                        threshold=1, xp_reward=0),
        )
        engine = make_engine(catalog=catalog)
        await engine.initialize()
        await engine.record_practice(True)

        assert engine.get_achievements()[0].state == AchievementState.COLLECTED
        assert (await engine.collect_achievement_xp("hello")).xp_gained == 0

    async def test_collected_reward_can_unlock_xp_achievement(self, make_engine):
        catalog = (
            Achievement(id="starter", name="Starter", description="", metric="questions_answered",
                        threshold=1, xp_reward=100),
            Achievement(id="rich", name="Rich", description="", metric="total_xp",
                        threshold=100, xp_reward=0),
        )
        engine = make_engine(catalog=catalog)
        await engine.initialize()
        await engine.record_practice(True)

        result = await engine.collect_achievement_xp("starter")

        assert result.xp_gained == 100
        assert [a.id for a in result.new_achievements] == ["rich"]

    async def test_get_achievements_states(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 5)
        await engine.collect_achievement_xp("first_question")

        states = {s.id: s.state for s in engine.get_achievements()}
        assert states["first_question"] == AchievementState.COLLECTED
        assert states["answer_streak_5"] == AchievementState.UNLOCKED
        assert states["streak_7"] == AchievementState.LOCKED


class TestBonusXp:
    async def test_bonus_adds_xp(self, make_engine):
        engine = make_engine()
        await engine.initialize()

        result = await engine.add_bonus_xp(10)

        assert result.xp_gained == 10
        assert engine.get_progress().total_xp == 10

    async def test_non_positive_bonus_ignored(self, make_engine):
        engine = make_engine()
        await engine.initialize()

        assert (await engine.add_bonus_xp(0)).xp_gained == 0
        assert (await engine.add_bonus_xp(-5)).xp_gained == 0
        assert engine.get_progress().total_xp == 0

    async def test_bonus_can_unlock_xp_achievement(self, make_engine):
        engine = make_engine()
        await engine.initialize()

        result = await engine.add_bonus_xp(1000)

        assert [a.id for a in result.new_achievements] == ["xp_1000"]


class TestInitialize:
    async def test_fresh_cache_gives_zero_state(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        assert engine.get_progress() == UserProgress()

    async def test_streak_continues_from_yesterday(self, make_engine, cache, clock):
        cache.set(
            UserProgress(
                day_streak=5,
                last_valid_streak_date=clock.today - timedelta(days=1),
                last_question_date=clock.today - timedelta(days=1),
                questions_answered_today=7,
            )
        )
        engine = make_engine()
        await engine.initialize()
        assert engine.get_progress().questions_answered_today == 0

        await answer(engine, 5)

        assert engine.get_progress().day_streak == 6

    async def test_lapsed_streak_is_zeroed_and_saved(self, make_engine, cache, clock):
        cache.set(
            UserProgress(
                day_streak=4,
                last_valid_streak_date=clock.today - timedelta(days=3),
                last_question_date=clock.today - timedelta(days=3),
            )
        )
        engine = make_engine()

        await engine.initialize()

        progress = engine.get_progress()
        assert progress.day_streak == 0
        assert progress.last_valid_streak_date is None
        assert cache.get().day_streak == 0

    async def test_corrupt_cache_treated_as_empty(self, make_engine, cache):
        cache.path.parent.mkdir(parents=True, exist_ok=True)
        cache.path.write_text("{not json")
        engine = make_engine()

        await engine.initialize()

        assert engine.get_progress().total_xp == 0


class TestPersistence:
    async def test_each_mutation_written_to_cache(self, make_engine, cache):
        engine = make_engine()
        await engine.initialize()
        await engine.record_practice(True, "q1")

        cached = cache.get()
        assert cached.total_xp == 10
        assert cached.answered_question_ids == ["q1"]

    async def test_cache_write_failure_is_swallowed(self, make_engine, cache, monkeypatch):
        def fail(progress):
            raise OSError("disk full")

        monkeypatch.setattr(cache, "set", fail)
        engine = make_engine()
        await engine.initialize()

        result = await engine.record_practice(True)

        assert result.xp_gained == 10
        assert engine.get_progress().total_xp == 10

    async def test_get_progress_returns_copy(self, make_engine):
        engine = make_engine()
        await engine.initialize()
        snapshot = engine.get_progress()
        snapshot.total_xp = 999
        snapshot.achievements.append("fake")

        assert engine.get_progress().total_xp == 0
        assert engine.get_progress().achievements == []

    async def test_reset_clears_state_and_cache(self, make_engine, cache):
        engine = make_engine()
        await engine.initialize()
        await answer(engine, 5)

        engine.reset()

        assert engine.get_progress() == UserProgress()
        assert not engine.has_answered_question("q1")
        assert cache.get() is None


class TestRemoteWrites:
    async def test_rapid_mutations_coalesce_into_one_write(self, make_engine, settings):
        settings.remote_save_delay_seconds = 0.01
        store = AsyncMock()
        engine = make_engine(profile_store=store, user_id="u1")
        await engine.initialize()

        await answer(engine, 3)
        await asyncio.sleep(0.1)

        store.write_profile.assert_awaited_once()
        user_id, fields = store.write_profile.await_args.args
        assert user_id == "u1"
        assert fields["questions_answered"] == 3
        assert fields["total_xp"] == 30

    async def test_flush_writes_pending_snapshot(self, make_engine):
        store = AsyncMock()
        engine = make_engine(profile_store=store, user_id="u1")
        await engine.initialize()
        await engine.record_practice(True)
        store.write_profile.assert_not_awaited()

        await engine.flush()

        store.write_profile.assert_awaited_once()

    async def test_remote_failure_does_not_raise(self, make_engine):
        store = AsyncMock()
        store.write_profile.side_effect = StoreError("offline")
        engine = make_engine(profile_store=store, user_id="u1")
        await engine.initialize()
        await engine.record_practice(True)

        await engine.flush()

        assert engine.get_progress().total_xp == 10

    async def test_reset_drops_pending_write(self, make_engine):
        store = AsyncMock()
        engine = make_engine(profile_store=store, user_id="u1")
        await engine.initialize()
        await engine.record_practice(True)

        engine.reset()
        await engine.flush()

        store.write_profile.assert_not_awaited()

    async def test_no_remote_writes_without_user(self, make_engine):
        store = AsyncMock()
        engine = make_engine(profile_store=store)
        await engine.initialize()
        await engine.record_practice(True)

        await engine.flush()

        store.write_profile.assert_not_awaited()


class TestSyncFromRemote:
    async def test_remote_profile_replaces_local(self, make_engine, cache, clock, profile_store):
        cache.set(UserProgress(total_xp=1))
        await profile_store.write_profile(
            "u1",
            {
                "username": "ana",
                "total_xp": 420,
                "questions_answered": 40,
                "correct_answers": 30,
                "day_streak": 2,
                "last_valid_streak_date": clock.today - timedelta(days=1),
                "last_question_date": clock.today - timedelta(days=1),
                "achievements": ["first_question"],
            },
        )
        engine = make_engine(profile_store=profile_store, user_id="u1")

        await engine.sync_from_remote()

        progress = engine.get_progress()
        assert progress.total_xp == 420
        assert progress.day_streak == 2
        assert progress.achievements == ["first_question"]
        assert cache.get().total_xp == 420
        engine.close()

    async def test_missing_remote_profile_keeps_local(self, make_engine, cache, profile_store):
        cache.set(UserProgress(total_xp=15))
        engine = make_engine(profile_store=profile_store, user_id="ghost")

        await engine.sync_from_remote()

        assert engine.get_progress().total_xp == 15
        engine.close()

    async def test_remote_read_failure_falls_back_to_local(self, make_engine, cache):
        cache.set(UserProgress(total_xp=15))
        store = AsyncMock()
        store.read_profile.side_effect = StoreError("offline")
        engine = make_engine(profile_store=store, user_id="u1")

        await engine.sync_from_remote()

        assert engine.get_progress().total_xp == 15

    async def test_written_progress_round_trips_through_store(self, make_engine, profile_store):
        engine = make_engine(profile_store=profile_store, user_id="u1")
        await engine.initialize()
        await engine.record_practice(True, "q1")
        await engine.flush()

        row = await profile_store.read_profile("u1")

        assert row.total_xp == 10
        assert row.answered_question_ids == ["q1"]
        assert row.to_progress() == engine.get_progress()

    async def test_resync_keeps_progress_from_pending_write(self, make_engine, profile_store):
        await profile_store.write_profile("u1", {"username": "ana"})
        engine = make_engine(profile_store=profile_store, user_id="u1")
        await engine.sync_from_remote()
        await answer(engine, 3)

        await engine.sync_from_remote()

        assert engine.get_progress().total_xp == 30
        assert engine.get_progress().questions_answered == 3
        await engine.record_practice(True)
        await engine.flush()
        assert (await profile_store.read_profile("u1")).total_xp == 40

    async def test_failed_upload_keeps_local_progress(self, make_engine):
        store = AsyncMock()
        store.read_profile.return_value = ProfileRow(user_id="u1", username="ana")
        store.write_profile.side_effect = StoreError("offline")
        engine = make_engine(profile_store=store, user_id="u1")
        await engine.sync_from_remote()
        await answer(engine, 3)

        await engine.sync_from_remote()

        assert engine.get_progress().total_xp == 30
        store.read_profile.assert_awaited_once()
