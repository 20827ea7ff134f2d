"""Tests for calendar-day streak rules."""

from datetime import date, timedelta

from studyrank.models.progress import UserProgress
from studyrank.progress.streak import count_question, credit_day, is_yesterday, validate_streak

TODAY = date(2026, 3, 10)
YESTERDAY = TODAY - timedelta(days=1)


class TestIsYesterday:
    def test_yesterday(self):
        assert is_yesterday(YESTERDAY, TODAY)

    def test_today_is_not_yesterday(self):
        assert not is_yesterday(TODAY, TODAY)

    def test_none(self):
        assert not is_yesterday(None, TODAY)

    def test_across_month_boundary(self):
        assert is_yesterday(date(2026, 2, 28), date(2026, 3, 1))


class TestCreditDay:
    def test_new_streak(self):
        progress = UserProgress()
        credit_day(progress, TODAY)
        assert progress.day_streak == 1
        assert progress.last_valid_streak_date == TODAY

    def test_extends_from_yesterday(self):
        progress = UserProgress(day_streak=5, last_valid_streak_date=YESTERDAY)
        credit_day(progress, TODAY)
        assert progress.day_streak == 6
        assert progress.last_valid_streak_date == TODAY

    def test_already_counted_today_is_noop(self):
        progress = UserProgress(day_streak=4, last_valid_streak_date=TODAY)
        credit_day(progress, TODAY)
        assert progress.day_streak == 4
        assert progress.last_valid_streak_date == TODAY

    def test_gap_restarts_streak(self):
        progress = UserProgress(day_streak=9, last_valid_streak_date=TODAY - timedelta(days=2))
        credit_day(progress, TODAY)
        assert progress.day_streak == 1
        assert progress.last_valid_streak_date == TODAY


class TestCountQuestion:
    def test_first_question_of_day_resets_counter(self):
        progress = UserProgress(questions_answered_today=7, last_question_date=YESTERDAY)
        reached = count_question(progress, TODAY, threshold=5)
        assert not reached
        assert progress.questions_answered_today == 1
        assert progress.last_question_date == TODAY

    def test_threshold_is_edge_triggered(self):
        progress = UserProgress()
        hits = [count_question(progress, TODAY, threshold=3) for _ in range(6)]
        assert hits == [False, False, True, False, False, False]


class TestValidateStreak:
    def test_active_streak_untouched(self):
        progress = UserProgress(
            day_streak=3,
            last_valid_streak_date=YESTERDAY,
            last_question_date=YESTERDAY,
        )
        validate_streak(progress, TODAY)
        assert progress.day_streak == 3
        assert progress.last_valid_streak_date == YESTERDAY

    def test_resets_daily_counter_on_new_day(self):
        progress = UserProgress(questions_answered_today=4, last_question_date=YESTERDAY)
        assert validate_streak(progress, TODAY)
        assert progress.questions_answered_today == 0

    def test_keeps_daily_counter_same_day(self):
        progress = UserProgress(questions_answered_today=4, last_question_date=TODAY)
        assert not validate_streak(progress, TODAY)
        assert progress.questions_answered_today == 4

    def test_lapsed_streak_is_broken(self):
        progress = UserProgress(
            day_streak=4,
            last_valid_streak_date=TODAY - timedelta(days=3),
            last_question_date=TODAY - timedelta(days=3),
        )
        assert validate_streak(progress, TODAY)
        assert progress.day_streak == 0
        assert progress.last_valid_streak_date is None

    def test_no_valid_date_but_old_activity_zeroes_streak(self):
        progress = UserProgress(day_streak=2, last_question_date=TODAY - timedelta(days=5))
        assert validate_streak(progress, TODAY)
        assert progress.day_streak == 0

    def test_fresh_progress_unchanged(self):
        assert not validate_streak(UserProgress(), TODAY)
