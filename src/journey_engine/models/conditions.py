"""Task condition specs.

Conditions are stored as JSON on each task row (``condition_json``) and parsed
into a tagged union keyed by ``type``. Anything that does not parse (unknown
kind, wrong field types) is reported as ``None`` so callers can treat it as
"not met" instead of failing the whole journey.
"""

import logging
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


logger = logging.getLogger(__name__)


class ConditionType(str, Enum):
    """Every condition kind the evaluator understands."""

    LOG_MEALS_TODAY = "LOG_MEALS_TODAY"
    HIT_PROTEIN_GOAL = "HIT_PROTEIN_GOAL"
    FIRST_WEIGH_IN = "FIRST_WEIGH_IN"
    TOTAL_WEIGH_INS = "TOTAL_WEIGH_INS"
    TOTAL_MEALS_LOGGED = "TOTAL_MEALS_LOGGED"
    HABIT_CHECKS = "HABIT_CHECKS"
    EDUCATION_READS = "EDUCATION_READS"
    STREAK_DAYS = "STREAK_DAYS"
    HABIT_STREAK_DAYS = "HABIT_STREAK_DAYS"
    WEEKLY_DEFICIT = "WEEKLY_DEFICIT"
    WEEKLY_SURPLUS = "WEEKLY_SURPLUS"
    WEEKLY_BALANCED = "WEEKLY_BALANCED"


# Literal defaults used when neither a user target nor a resolved target applies
DEFAULT_TARGETS: Dict[ConditionType, float] = {
    ConditionType.LOG_MEALS_TODAY: 3,
    ConditionType.HIT_PROTEIN_GOAL: 120,
    ConditionType.FIRST_WEIGH_IN: 1,
    ConditionType.TOTAL_WEIGH_INS: 10,
    ConditionType.TOTAL_MEALS_LOGGED: 50,
    ConditionType.HABIT_CHECKS: 5,
    ConditionType.EDUCATION_READS: 1,
    ConditionType.STREAK_DAYS: 7,
    ConditionType.HABIT_STREAK_DAYS: 7,
    # Windowed kinds: daily calorie target in kcal
    ConditionType.WEEKLY_DEFICIT: 2000,
    ConditionType.WEEKLY_SURPLUS: 2500,
    ConditionType.WEEKLY_BALANCED: 2200,
}

DEFAULT_BUFFERS_KCAL: Dict[ConditionType, float] = {
    ConditionType.WEEKLY_DEFICIT: 100,
    ConditionType.WEEKLY_SURPLUS: 100,
    ConditionType.WEEKLY_BALANCED: 200,
}

# Metric read from the Metrics Source for each kind
CONDITION_METRICS: Dict[ConditionType, str] = {
    ConditionType.LOG_MEALS_TODAY: "meals_logged",
    ConditionType.HIT_PROTEIN_GOAL: "protein_total_g",
    ConditionType.FIRST_WEIGH_IN: "weigh_ins",
    ConditionType.TOTAL_WEIGH_INS: "weigh_ins",
    ConditionType.TOTAL_MEALS_LOGGED: "meals_logged",
    ConditionType.HABIT_CHECKS: "habit_checks",
    ConditionType.EDUCATION_READS: "education_reads",
    ConditionType.STREAK_DAYS: "log_streak_days",
    ConditionType.HABIT_STREAK_DAYS: "habit_streak_days",
    ConditionType.WEEKLY_DEFICIT: "calories_kcal",
    ConditionType.WEEKLY_SURPLUS: "calories_kcal",
    ConditionType.WEEKLY_BALANCED: "calories_kcal",
}


class _ConditionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def kind(self) -> ConditionType:
        return ConditionType(self.type)  # type: ignore[attr-defined]

    @property
    def default_target(self) -> float:
        return DEFAULT_TARGETS[self.kind]

    @property
    def metric(self) -> str:
        return CONDITION_METRICS[self.kind]


class InstantaneousCondition(_ConditionBase):
    """Measured today, from the later of midnight and the stage unlock."""

    type: Literal["LOG_MEALS_TODAY", "HIT_PROTEIN_GOAL"]
    target: Optional[float] = Field(None, gt=0)
    use_user_target: bool = False
    resolved_target: Optional[float] = Field(None, description="Backend-resolved target")


class CountCondition(_ConditionBase):
    """Raw count of events since the stage unlock."""

    type: Literal[
        "FIRST_WEIGH_IN",
        "TOTAL_WEIGH_INS",
        "TOTAL_MEALS_LOGGED",
        "HABIT_CHECKS",
        "EDUCATION_READS",
    ]
    target: Optional[float] = Field(None, gt=0)


class StreakCondition(_ConditionBase):
    """Consecutive days ending today, never reaching back past the stage unlock."""

    type: Literal["STREAK_DAYS", "HABIT_STREAK_DAYS"]
    target: Optional[float] = Field(None, gt=0)


class WindowedCondition(_ConditionBase):
    """Days within a calorie band over a trailing window."""

    type: Literal["WEEKLY_DEFICIT", "WEEKLY_SURPLUS", "WEEKLY_BALANCED"]
    lookback_days: int = Field(7, gt=0, le=366)
    buffer_kcal: Optional[float] = Field(None, ge=0)
    target: Optional[float] = Field(None, gt=0, description="Daily calorie target")
    use_user_target: bool = False
    resolved_target: Optional[float] = None

    @property
    def buffer(self) -> float:
        if self.buffer_kcal is not None:
            return self.buffer_kcal
        return DEFAULT_BUFFERS_KCAL[self.kind]


TaskCondition = Annotated[
    Union[InstantaneousCondition, CountCondition, StreakCondition, WindowedCondition],
    Field(discriminator="type"),
]

_condition_adapter: TypeAdapter = TypeAdapter(TaskCondition)


def parse_condition(raw: Any) -> Optional[TaskCondition]:
    """
    Parse a stored condition spec.

    Args:
        raw: The decoded ``condition_json`` value

    Returns:
        The typed condition, or None if the condition is unknown or malformed
    """
    if not isinstance(raw, dict):
        return None
    try:
        return _condition_adapter.validate_python(raw)
    except PydanticValidationError as e:
        logger.warning(f"Unrecognized condition spec {raw.get('type')!r}: {e.error_count()} error(s)")
        return None
