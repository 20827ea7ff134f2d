"""Calendar-day streak rules."""

from datetime import date, timedelta

from studyrank.models.progress import UserProgress


def is_yesterday(day: date | None, today: date) -> bool:
    return day is not None and day == today - timedelta(days=1)


def validate_streak(progress: UserProgress, today: date) -> bool:
    """Break streaks that lapsed while the app was closed.

    Returns True if ``progress`` was modified.
    """
    changed = False
    if progress.last_question_date != today and progress.questions_answered_today:
        progress.questions_answered_today = 0
        changed = True

    last_valid = progress.last_valid_streak_date
    if last_valid is not None:
        if last_valid != today and not is_yesterday(last_valid, today):
            progress.day_streak = 0
            progress.last_valid_streak_date = None
            changed = True
    elif (
        progress.day_streak
        and progress.last_question_date is not None
        and progress.last_question_date < today - timedelta(days=1)
    ):
        progress.day_streak = 0
        changed = True
    return changed


def count_question(progress: UserProgress, today: date, threshold: int) -> bool:
    """Count one answered question towards today's total.

    Returns True if this exact call reached the daily threshold, which is
    when the day-streak transition runs. Later calls on the same day do not
    trigger it again.
    """
    if progress.last_question_date != today:
        progress.questions_answered_today = 0
    progress.questions_answered_today += 1
    progress.last_question_date = today
    return progress.questions_answered_today == threshold


def credit_day(progress: UserProgress, today: date) -> None:
    """Apply the day-streak transition for a qualifying day."""
    last_valid = progress.last_valid_streak_date
    if last_valid == today:
        return
    if is_yesterday(last_valid, today):
        progress.day_streak += 1
    else:
        # First qualifying day ever, or a gap of more than one day
        progress.day_streak = 1
    progress.last_valid_streak_date = today
