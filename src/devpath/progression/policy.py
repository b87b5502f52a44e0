"""XP award policy: action kind -> XP amount, with quiz bonuses."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from devpath.config import XPPolicy
from devpath.progression.schemas import (
    Action,
    LearningMilestone,
    MentorSession,
    QuestObjectiveProgress,
    QuestStarted,
    QuizCompleted,
    SkillPractice,
)

# 10% per streak day, capped at +50%
STREAK_BONUS_PER_DAY = 0.1
STREAK_BONUS_CAP = 0.5


@dataclass(frozen=True)
class Award:
    amount: int
    metadata: dict[str, Any] = field(default_factory=dict)


def _quiz_award(action: QuizCompleted, policy: XPPolicy, streak: int) -> Award:
    base = policy.quiz_completed
    total = base
    if action.is_perfect:
        total += policy.perfect_score_bonus

    streak_bonus = 0.0
    if streak > 1:
        streak_bonus = min(streak * STREAK_BONUS_PER_DAY, STREAK_BONUS_CAP)
        total = math.floor(total * (1 + streak_bonus))

    multiplier = policy.difficulty_multipliers.get(action.difficulty, 1.0)
    total = math.floor(total * multiplier)

    return Award(
        amount=total,
        metadata={
            "quiz_id": action.quiz_id,
            "score": action.score,
            "difficulty": action.difficulty,
            "base_xp": base,
            "bonus_xp": total - base,
            "streak_bonus": streak_bonus,
            "perfect": action.is_perfect,
        },
    )


def resolve_award(action: Action, policy: XPPolicy, streak: int = 0) -> Award:
    """Resolve the XP an action earns. Unknown action types are a programming error."""
    if isinstance(action, QuizCompleted):
        return _quiz_award(action, policy, streak)
    if isinstance(action, LearningMilestone):
        return Award(policy.learning_milestone, {"milestone_id": action.milestone_id})
    if isinstance(action, MentorSession):
        return Award(
            policy.mentor_session.get(action.session_type, 0),
            {"session_type": action.session_type, "session_id": action.session_id},
        )
    if isinstance(action, SkillPractice):
        return Award(policy.skill_practice, {"node": action.node, "amount": action.amount})
    if isinstance(action, QuestObjectiveProgress):
        return Award(policy.quest_objective, {"quest": action.quest, "objective": action.objective})
    if isinstance(action, QuestStarted):
        return Award(policy.quest_started, {"quest": action.quest})
    raise TypeError(f"Unhandled action kind: {getattr(action, 'kind', type(action).__name__)}")
