"""Activity counters and the daily activity streak."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from devpath.db.models import UserProgress
from devpath.progression.schemas import (
    Action,
    LearningMilestone,
    MentorSession,
    QuizCompleted,
)


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    is_new_record: bool
    milestone: int | None = None


def update_streak(progress: UserProgress, today: date, milestone_days: int = 7) -> StreakUpdate:
    """Advance the daily streak for activity on ``today``.

    Same day: unchanged. Day after the last activity: +1. Any gap: restart at 1.
    A milestone is reported when the streak lands on a multiple of ``milestone_days``.
    """
    last = progress.last_active_date
    if last == today:
        return StreakUpdate(
            current_streak=progress.current_streak,
            longest_streak=progress.longest_streak,
            is_new_record=False,
        )

    if last is not None and last == today - timedelta(days=1):
        current = progress.current_streak + 1
    else:
        current = 1

    is_new_record = current > progress.longest_streak
    progress.current_streak = current
    progress.longest_streak = max(current, progress.longest_streak)
    progress.last_active_date = today

    milestone = current if milestone_days > 0 and current % milestone_days == 0 else None
    return StreakUpdate(
        current_streak=current,
        longest_streak=progress.longest_streak,
        is_new_record=is_new_record,
        milestone=milestone,
    )


def record_activity(progress: UserProgress, action: Action) -> bool:
    """Bump the denormalized counters badge criteria read. Returns True if any changed."""
    if isinstance(action, QuizCompleted):
        progress.quizzes_completed += 1
        if action.is_perfect:
            progress.perfect_scores += 1
        return True
    if isinstance(action, MentorSession):
        progress.mentor_sessions += 1
        return True
    if isinstance(action, LearningMilestone):
        progress.learning_milestones += 1
        return True
    return False
