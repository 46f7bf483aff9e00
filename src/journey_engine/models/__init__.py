"""Data models for the Journey Engine."""

from .conditions import (
    ConditionType,
    CountCondition,
    InstantaneousCondition,
    StreakCondition,
    TaskCondition,
    WindowedCondition,
    parse_condition,
)
from .journey import (
    BootstrapRequest,
    BootstrapResponse,
    CompleteTaskRequest,
    CompleteTaskResponse,
    JourneyStagesResponse,
    MetricRule,
    NutritionTargets,
    PointsEntry,
    PointsFeed,
    PointsFeedItem,
    PointsSummary,
    RequirementLogic,
    Requirements,
    RequirementsEvaluation,
    StageCatalogDocument,
    StagePoints,
    StageStatus,
    StageTemplate,
    StageView,
    TaskEvaluation,
    TaskTemplate,
    TaskType,
    TaskView,
    UserStage,
    UserStageTask,
    to_camel,
)

__all__ = [
    "ConditionType",
    "CountCondition",
    "InstantaneousCondition",
    "StreakCondition",
    "TaskCondition",
    "WindowedCondition",
    "parse_condition",
    "BootstrapRequest",
    "BootstrapResponse",
    "CompleteTaskRequest",
    "CompleteTaskResponse",
    "JourneyStagesResponse",
    "MetricRule",
    "NutritionTargets",
    "PointsEntry",
    "PointsFeed",
    "PointsFeedItem",
    "PointsSummary",
    "RequirementLogic",
    "Requirements",
    "RequirementsEvaluation",
    "StageCatalogDocument",
    "StagePoints",
    "StageStatus",
    "StageTemplate",
    "StageView",
    "TaskEvaluation",
    "TaskTemplate",
    "TaskType",
    "TaskView",
    "UserStage",
    "UserStageTask",
    "to_camel",
]
