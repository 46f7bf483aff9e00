"""
Task condition evaluation.

Turns one declarative condition into a progress tuple by reading the
Metrics Source and the Targets Source. Evaluation is a pure read and never
raises: unreadable conditions and source failures come back as zero
progress.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..db.repositories.base import MetricsSource, TargetsSource
from ..models.conditions import (
    ConditionType,
    CountCondition,
    InstantaneousCondition,
    StreakCondition,
    WindowedCondition,
    parse_condition,
)
from ..models.journey import TaskEvaluation, UserStageTask
from ..utils.timeutil import Clock, day_of, start_of_day, utc_now


logger = logging.getLogger(__name__)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _ratio(current: float, target: float) -> float:
    if target <= 0:
        return 0.0
    return clamp01(current / target)


class ConditionEvaluator:
    """
    Evaluates task conditions for a user.

    Args:
        metrics: Behavioral metrics reader
        targets: Per-user nutrition targets reader
        now: Clock, injectable for tests
    """

    def __init__(
        self,
        metrics: MetricsSource,
        targets: TargetsSource,
        now: Clock = utc_now,
    ):
        self.metrics = metrics
        self.targets = targets
        self._now = now
        self._handlers: Dict[type, Callable[[Any, str, datetime], TaskEvaluation]] = {
            InstantaneousCondition: self._evaluate_instantaneous,
            CountCondition: self._evaluate_count,
            StreakCondition: self._evaluate_count,
            WindowedCondition: self._evaluate_windowed,
        }

    def evaluate(
        self,
        condition: Any,
        user_id: str,
        as_of_lower_bound: Optional[datetime],
        task_key: Optional[str] = None,
    ) -> TaskEvaluation:
        """
        Evaluate one condition.

        Args:
            condition: Raw condition spec (dict) or a parsed condition
            user_id: The user being evaluated
            as_of_lower_bound: Stage unlock time; metrics before it never count
            task_key: Used only to label log lines

        Returns:
            TaskEvaluation with progress in [0, 1]
        """
        parsed = parse_condition(condition) if isinstance(condition, dict) else condition
        handler = self._handlers.get(type(parsed))
        if handler is None:
            return TaskEvaluation.zero(details="Unknown condition")

        if as_of_lower_bound is None:
            # Stage never unlocked
            return TaskEvaluation(
                progress=0.0,
                can_complete=False,
                current=0,
                target=self._literal_target(parsed),
            )

        try:
            return handler(parsed, user_id, as_of_lower_bound)
        except Exception as e:
            logger.error(
                f"Failed to evaluate task {task_key or parsed.kind.value} for user {user_id}: {e}"
            )
            return TaskEvaluation.zero()

    def evaluate_task(
        self,
        task: UserStageTask,
        user_id: str,
        as_of_lower_bound: Optional[datetime],
    ) -> TaskEvaluation:
        """Evaluate a task row; completed tasks short-circuit to full progress."""
        if task.is_completed:
            return TaskEvaluation.done()
        return self.evaluate(task.condition, user_id, as_of_lower_bound, task_key=task.key_code)

    # -------------------------------------------------------------------------
    # Targets
    # -------------------------------------------------------------------------

    def _literal_target(self, condition: Any) -> float:
        if isinstance(condition, WindowedCondition):
            return float(condition.lookback_days)
        return float(condition.target or condition.default_target)

    def _resolve_target(self, condition: Any, user_id: str) -> float:
        """User target (if opted in and positive), then resolved target, then literal."""
        if getattr(condition, "use_user_target", False):
            user_targets = self.targets.get(user_id)
            if condition.kind == ConditionType.HIT_PROTEIN_GOAL:
                user_value = user_targets.protein
            elif isinstance(condition, WindowedCondition):
                user_value = user_targets.calories
            else:
                user_value = None
            if user_value is not None and user_value > 0:
                return float(user_value)

        resolved = getattr(condition, "resolved_target", None)
        if resolved is not None and resolved > 0:
            return float(resolved)

        return float(condition.target or condition.default_target)

    # -------------------------------------------------------------------------
    # Families
    # -------------------------------------------------------------------------

    def _evaluate_instantaneous(
        self,
        condition: InstantaneousCondition,
        user_id: str,
        lower_bound: datetime,
    ) -> TaskEvaluation:
        since = max(lower_bound, start_of_day(self._now()))
        current = self.metrics.get(user_id, condition.metric, since) or 0.0
        target = self._resolve_target(condition, user_id)
        progress = _ratio(current, target)
        return TaskEvaluation(
            progress=progress,
            can_complete=progress >= 1.0,
            current=current,
            target=target,
            details=f"{current:g} of {target:g}",
        )

    def _evaluate_count(
        self,
        condition: CountCondition | StreakCondition,
        user_id: str,
        lower_bound: datetime,
    ) -> TaskEvaluation:
        current = self.metrics.get(user_id, condition.metric, lower_bound) or 0.0
        target = float(condition.target or condition.default_target)
        progress = _ratio(current, target)
        return TaskEvaluation(
            progress=progress,
            can_complete=progress >= 1.0,
            current=current,
            target=target,
        )

    def _evaluate_windowed(
        self,
        condition: WindowedCondition,
        user_id: str,
        lower_bound: datetime,
    ) -> TaskEvaluation:
        now = self._now()
        today = day_of(now)
        first_day = today - timedelta(days=condition.lookback_days - 1)
        since = max(lower_bound, start_of_day(now) - timedelta(days=condition.lookback_days - 1))
        floor_day = day_of(lower_bound)

        daily_target = self._resolve_target(condition, user_id)
        buffer = condition.buffer
        totals = self.metrics.daily_totals(user_id, condition.metric, since)

        success_days = 0
        for offset in range(condition.lookback_days):
            day = first_day + timedelta(days=offset)
            if day < floor_day or day not in totals:
                continue
            if abs(totals[day] - daily_target) <= buffer:
                success_days += 1

        lookback = condition.lookback_days
        progress = _ratio(success_days, lookback)
        return TaskEvaluation(
            progress=progress,
            can_complete=progress >= 1.0,
            current=success_days,
            target=lookback,
            details=f"{success_days} of {lookback} days",
        )
