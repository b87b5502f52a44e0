"""Pydantic models: progression actions (tagged variants), results and API responses."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


# --- Actions ---


class _ActionBase(BaseModel):
    idempotency_key: str | None = Field(default=None, max_length=200)
    metadata: dict[str, Any] = {}


class QuizCompleted(_ActionBase):
    kind: Literal["quiz_completed"] = "quiz_completed"
    quiz_id: str
    score: float = Field(ge=0, le=100)
    difficulty: Literal["easy", "medium", "hard"] = "easy"
    completion_seconds: int | None = Field(default=None, ge=0)
    skill_node: str | None = None
    practice_points: int = Field(default=0, ge=0)

    @property
    def is_perfect(self) -> bool:
        return self.score >= 100


class QuestStarted(_ActionBase):
    kind: Literal["quest_started"] = "quest_started"
    quest: str


class QuestObjectiveProgress(_ActionBase):
    kind: Literal["quest_objective"] = "quest_objective"
    quest: str
    objective: str
    delta: int = 1


class SkillPractice(_ActionBase):
    kind: Literal["skill_practice"] = "skill_practice"
    node: str
    amount: int


class MentorSession(_ActionBase):
    kind: Literal["mentor_session"] = "mentor_session"
    session_type: Literal["chat", "interview_prep", "motivation"] = "chat"
    session_id: str | None = None


class LearningMilestone(_ActionBase):
    kind: Literal["learning_milestone"] = "learning_milestone"
    milestone_id: str


Action = Annotated[
    Union[
        QuizCompleted,
        QuestStarted,
        QuestObjectiveProgress,
        SkillPractice,
        MentorSession,
        LearningMilestone,
    ],
    Field(discriminator="kind"),
]

action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


class ActionRequest(BaseModel):
    action: Action


# --- Progression result ---


class XPAward(BaseModel):
    source: str
    amount: int
    detail: str | None = None


class LevelSummary(BaseModel):
    level: int
    title: str
    xp_into_level: int
    xp_for_next_level: int
    next_level: int | None = None
    next_title: str | None = None


class LevelUp(BaseModel):
    previous_level: int
    new_level: int
    title: str


class QuestCompletion(BaseModel):
    quest: str
    title: str
    xp_reward: int


class ObjectiveUpdate(BaseModel):
    quest: str
    objective: str
    progress: int
    target: int


class SkillProgressSummary(BaseModel):
    node: str
    progress: int
    target: int
    unlocked: bool


class BadgeUnlock(BaseModel):
    slug: str
    name: str
    rarity: str
    xp_reward: int
    title: str | None = None


class StreakSummary(BaseModel):
    current_streak: int
    longest_streak: int
    is_new_record: bool = False
    milestone: int | None = None


class IgnoredError(BaseModel):
    error: str
    detail: str


class ProgressionResult(BaseModel):
    """Everything the presentation layer needs to render notifications for one action."""

    user_id: int
    action_kind: str
    duplicate: bool = False
    total_xp: int = 0
    xp_awarded: int = 0
    xp_breakdown: list[XPAward] = []
    level: LevelSummary | None = None
    level_up: LevelUp | None = None
    quests_started: list[str] = []
    quests_completed: list[QuestCompletion] = []
    quests_available: list[str] = []
    objective_updates: list[ObjectiveUpdate] = []
    skill_progress: SkillProgressSummary | None = None
    skills_unlocked: list[str] = []
    badges_unlocked: list[BadgeUnlock] = []
    titles_unlocked: list[str] = []
    streak: StreakSummary | None = None
    ignored: list[IgnoredError] = []


# --- Catalog definitions (seed data) ---


class ObjectiveDefinition(BaseModel):
    id: str
    target_type: str
    target_value: int = Field(ge=1)
    target_ref: str | None = None
    optional: bool = False
    description: str = ""


class QuestDefinition(BaseModel):
    slug: str
    title: str
    description: str = ""
    quest_type: Literal["main", "side", "daily", "storyline"] = "main"
    required_level: int = Field(default=1, ge=1)
    xp_reward: int = Field(default=0, ge=0)
    objectives: list[ObjectiveDefinition]
    required_quests: list[str] = []
    sort_order: int = 0

    @model_validator(mode="after")
    def _check_objectives(self) -> QuestDefinition:
        ids = [o.id for o in self.objectives]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Quest {self.slug} has duplicate objective ids")
        if not any(not o.optional for o in self.objectives):
            raise ValueError(f"Quest {self.slug} needs at least one required objective")
        return self


class SkillNodeDefinition(BaseModel):
    slug: str
    title: str
    description: str = ""
    tier: int = 1
    target: int = Field(ge=1)
    xp_reward: int = Field(default=0, ge=0)
    prerequisites: list[str] = []


class SkillPathDefinition(BaseModel):
    slug: str
    title: str
    description: str = ""
    sort_order: int = 0
    nodes: list[SkillNodeDefinition]

    @model_validator(mode="after")
    def _check_prerequisites(self) -> SkillPathDefinition:
        slugs = {n.slug for n in self.nodes}
        for node in self.nodes:
            unknown = set(node.prerequisites) - slugs
            if unknown:
                raise ValueError(
                    f"Node {node.slug} has prerequisites outside path {self.slug}: {sorted(unknown)}"
                )
        return self


# --- API responses ---


class LevelEntry(BaseModel):
    level: int
    title: str
    cumulative: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


class BadgeDefinitionResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    rarity: str
    title: str | None = None
    xp_reward: int
    trigger_type: str
    threshold: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    slug: str
    name: str
    title: str | None = None
    earned_at: datetime


class UserQuestResponse(BaseModel):
    quest: str
    title: str
    status: str
    xp_reward: int
    objectives: list[dict] = []
    started_at: datetime | None = None
    completed_at: datetime | None = None


class QuestCatalogEntry(BaseModel):
    slug: str
    title: str
    description: str
    quest_type: str
    required_level: int
    xp_reward: int
    objectives: list[dict]
    required_quests: list[str]


class QuestCatalogResponse(BaseModel):
    quests: list[QuestCatalogEntry]


class SkillTreeNodeResponse(BaseModel):
    slug: str
    title: str
    tier: int
    target: int
    progress: int
    xp_reward: int
    prerequisites: list[str]
    unlocked: bool
    lock_reason: str | None = None


class SkillTreeResponse(BaseModel):
    path: str
    title: str
    is_chosen: bool
    nodes: list[SkillTreeNodeResponse]
    unlocked_count: int
    completion_percentage: float


class ChoosePathRequest(BaseModel):
    path: str


class ProgressResponse(BaseModel):
    user_id: int
    total_xp: int
    level: LevelSummary
    primary_path: str | None = None
    current_streak: int
    longest_streak: int
    last_active_date: date | None = None
    stats: dict[str, int]
    badges: list[EarnedBadgeResponse]
    titles: list[str]
    quests: list[UserQuestResponse]


class XPHistoryEntry(BaseModel):
    amount: int
    action_kind: str
    metadata: dict = {}
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str | None = None
    total_xp: int
    level: int
    level_title: str


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
