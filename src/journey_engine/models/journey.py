"""Journey data models: catalog templates, persisted rows and API views."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class StageStatus(str, Enum):
    """Derived status of a user stage."""
    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RequirementLogic(str, Enum):
    AND = "AND"
    OR = "OR"


class TaskType(str, Enum):
    """Display category of a task template."""
    MEAL_LOG = "meal_log"
    PROTEIN_TARGET = "protein_target"
    CALORIE_WINDOW = "calorie_window"
    WEIGH_IN = "weigh_in"
    STREAK_DAYS = "streak_days"
    HABIT_CHECK = "habit_check"
    EDU_READ = "edu_read"


# =============================================================================
# Catalog templates
# =============================================================================


class MetricRule(BaseModel):
    """One threshold over a metric, optionally narrowed to a trailing window."""

    model_config = ConfigDict(frozen=True)

    metric: str
    gte: Optional[float] = None
    lte: Optional[float] = None
    window_days: Optional[int] = Field(None, gt=0)


class Requirements(BaseModel):
    model_config = ConfigDict(frozen=True)

    logic: RequirementLogic = RequirementLogic.AND
    rules: List[MetricRule] = Field(default_factory=list)
    unlock_any_of: Optional[List[MetricRule]] = None


class TaskTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    type: TaskType
    title: str
    desc: str = ""
    xp: int = Field(..., ge=0)
    cta: Optional[str] = None
    check: Dict[str, Any] = Field(..., description="Condition spec, tagged by 'type'")


class StageTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., min_length=1)
    order_index: int
    title: str
    subtitle: Optional[str] = None
    type: str = "habit"
    requirements: Requirements = Field(default_factory=Requirements)
    xp_reward: int = 0
    color_hex: Optional[str] = None
    tasks: List[TaskTemplate] = Field(..., min_length=1)


class StageCatalogDocument(BaseModel):
    """The versioned catalog resource: persona key -> ordered stage templates."""

    model_config = ConfigDict(frozen=True)

    version: str
    personas: Dict[str, List[StageTemplate]]


# =============================================================================
# Persisted rows
# =============================================================================


@dataclass(frozen=True)
class UserStageTask:
    """A task row as stored; ``condition`` is the decoded condition_json."""

    id: str
    stage_id: str
    key_code: str
    title: str
    description: str
    condition: Any
    points: int
    position: int
    is_completed: bool = False
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserStage:
    """A stage row as stored, with its tasks ordered by position."""

    id: str
    user_id: str
    stage_code: str
    title: str
    subtitle: Optional[str]
    stage_type: str
    position: int
    xp_total: int
    is_unlocked: bool = False
    unlocked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    requirements: Requirements = field(default_factory=Requirements)
    color_hex: Optional[str] = None
    tasks: Tuple[UserStageTask, ...] = ()

    @property
    def xp_current(self) -> int:
        return sum(t.points for t in self.tasks if t.is_completed)


@dataclass(frozen=True)
class PointsEntry:
    id: int
    user_id: str
    stage_id: str
    task_id: str
    points: int
    reason: str
    created_at: datetime
    stage_title: Optional[str] = None
    task_title: Optional[str] = None


@dataclass(frozen=True)
class NutritionTargets:
    """Per-user targets; None means the target is missing."""

    protein: Optional[float] = None
    calories: Optional[float] = None


# =============================================================================
# Evaluation results
# =============================================================================


class TaskEvaluation(BaseModel):
    """Progress tuple for one task condition."""

    model_config = ConfigDict(frozen=True)

    progress: float = Field(0.0, ge=0.0, le=1.0)
    can_complete: bool = False
    current: Optional[float] = None
    target: Optional[float] = None
    details: Optional[str] = None

    @classmethod
    def zero(cls, details: Optional[str] = None) -> "TaskEvaluation":
        return cls(progress=0.0, can_complete=False, details=details)

    @classmethod
    def done(cls) -> "TaskEvaluation":
        return cls(progress=1.0, can_complete=True)


class RequirementsEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    met: bool
    partial: float = Field(..., ge=0.0, le=1.0)
    met_rules: List[MetricRule] = Field(default_factory=list)
    unmet_rules: List[MetricRule] = Field(default_factory=list)
    # Observed metric value for each rule metric that could be read
    observed: Dict[str, float] = Field(default_factory=dict)


# =============================================================================
# API views
# =============================================================================


class TaskView(BaseModel):
    """A task as returned to clients, with its evaluated progress."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str
    key_code: str
    title: str
    description: str
    points: int
    position: int
    is_completed: bool
    completed_at: Optional[datetime] = None
    condition: Any = None
    progress: float = Field(..., ge=0.0, le=1.0)
    can_complete: bool
    current: Optional[float] = None
    target: Optional[float] = None
    details: Optional[str] = None
    locked_by_stage: bool = Field(..., description="True while the owning stage is locked")


class StageView(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str
    code: str
    title: str
    subtitle: Optional[str] = None
    type: str
    color_hex: Optional[str] = None
    position: int
    status: StageStatus
    progress: float = Field(..., ge=0.0, le=1.0)
    xp_current: int
    xp_total: int
    is_unlocked: bool
    unlocked_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_steps: List[str] = Field(default_factory=list)
    tasks: List[TaskView] = Field(default_factory=list)


class JourneyStagesResponse(BaseModel):
    """The aggregate journey snapshot."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    stages: List[StageView]
    active_stage_index: Optional[int] = Field(None, description="First non-completed stage")
    unlocked_up_to_index: int = Field(-1, description="Highest completed stage index, -1 if none")


class BootstrapRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    persona: Optional[str] = Field(None, max_length=64, description="Persona key; default persona if omitted")


class BootstrapResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    created: bool
    existing: bool
    stage_count: int
    persona: str


class CompleteTaskRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    stage_id: str = Field(..., min_length=1)
    task_id: str = Field(..., min_length=1)


class CompleteTaskResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    points_awarded: int = 0
    already_completed: bool = False
    stage_completed: bool = False
    unlocked_next: bool = False


class StagePoints(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    stage_id: str
    stage_title: str
    points: int
    completed_tasks: int


class PointsSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    by_stage: List[StagePoints] = Field(default_factory=list)


class PointsFeedItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    points: int
    reason: str
    stage_id: str
    stage_title: Optional[str] = None
    task_id: str
    task_title: Optional[str] = None
    created_at: datetime


class PointsFeed(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[PointsFeedItem]
    next_cursor: Optional[str] = None
    has_more: bool = False
