"""
Stage state machine.

A stage's status is derived fresh on every read from its persisted
completion, its requirement rules and its XP:

    completed_at set                         -> completed
    requirements met or XP capped            -> completed (finalized by the ledger)
    rule ratio >= 0.4 or XP ratio >= 0.5     -> in_progress
    first stage or previous stage completed  -> available
    otherwise                                -> locked
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..db.repositories.base import MetricsSource
from ..models.journey import (
    MetricRule,
    RequirementLogic,
    Requirements,
    RequirementsEvaluation,
    StageStatus,
    UserStage,
)
from ..utils.timeutil import Clock, utc_now
from .ledger import PointsLedger


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageDecision:
    """Outcome of deriving one stage."""

    status: StageStatus
    progress: float
    requirements: RequirementsEvaluation
    xp_capped: bool = False

    @property
    def needs_finalize(self) -> bool:
        return self.status == StageStatus.COMPLETED


def _rule_satisfied(rule: MetricRule, value: Optional[float]) -> bool:
    if value is None:
        return False
    if rule.gte is not None and value < rule.gte:
        return False
    if rule.lte is not None and value > rule.lte:
        return False
    return True


# Hint templates for unmet rules, keyed by metric
_HINTS: Dict[str, str] = {
    "meals_logged": "Log {remaining:g} more meals",
    "weigh_ins": "Do {remaining:g} more weigh-ins",
    "protein_avg_g": "Raise your protein intake to {target:g} g per day",
    "protein_total_g": "Eat {remaining:g} g more protein",
    "calorie_adherence_pct": "Improve your calorie adherence to {target:g}%",
    "log_streak_days": "Keep your logging streak going for {remaining:g} more days",
    "habit_streak_days": "Keep your habit streak going for {remaining:g} more days",
    "habit_checks": "Check off your habit {remaining:g} more times",
    "education_reads": "Read {remaining:g} more guides",
}


class StageStateMachine:
    """Derives stage status from persisted state, requirement rules and XP."""

    def __init__(
        self,
        metrics: MetricsSource,
        now: Clock = utc_now,
        in_progress_rule_ratio: float = 0.4,
        in_progress_xp_ratio: float = 0.5,
    ):
        self.metrics = metrics
        self._now = now
        self.in_progress_rule_ratio = in_progress_rule_ratio
        self.in_progress_xp_ratio = in_progress_xp_ratio

    def evaluate_requirements(
        self,
        requirements: Requirements,
        user_id: str,
        since: Optional[datetime],
    ) -> RequirementsEvaluation:
        """
        Evaluate requirement rules against metrics measured since ``since``.

        A rule whose metric cannot be read is unmet. With no ``since`` (the
        stage was never unlocked) every rule is unmet.
        """
        met_rules: List[MetricRule] = []
        unmet_rules: List[MetricRule] = []
        observed: Dict[str, float] = {}

        for rule in requirements.rules:
            value = self._read_rule_metric(rule, user_id, since)
            if value is not None:
                observed[rule.metric] = value
            if _rule_satisfied(rule, value):
                met_rules.append(rule)
            else:
                unmet_rules.append(rule)

        total = len(requirements.rules)
        partial = len(met_rules) / total if total else 0.0

        if not total:
            met = False
        elif requirements.logic == RequirementLogic.AND:
            met = not unmet_rules
        else:
            met = bool(met_rules)

        if not met and requirements.unlock_any_of:
            met = any(
                _rule_satisfied(rule, self._read_rule_metric(rule, user_id, since))
                for rule in requirements.unlock_any_of
            )

        return RequirementsEvaluation(
            met=met,
            partial=partial,
            met_rules=met_rules,
            unmet_rules=unmet_rules,
            observed=observed,
        )

    def _read_rule_metric(
        self,
        rule: MetricRule,
        user_id: str,
        since: Optional[datetime],
    ) -> Optional[float]:
        if since is None:
            return None
        if rule.window_days:
            since = max(since, self._now() - timedelta(days=rule.window_days))
        try:
            return self.metrics.get(user_id, rule.metric, since)
        except Exception as e:
            logger.error(f"Failed to read metric {rule.metric} for user {user_id}: {e}")
            return None

    def derive(
        self,
        stage: UserStage,
        previous_completed: bool,
        user_id: str,
    ) -> StageDecision:
        """
        Derive the status of one stage.

        Args:
            stage: The persisted stage with its tasks
            previous_completed: True for the first stage or when the previous stage is completed
            user_id: Owner of the stage
        """
        if stage.completed_at is not None:
            return StageDecision(
                status=StageStatus.COMPLETED,
                progress=1.0,
                requirements=RequirementsEvaluation(met=True, partial=1.0),
            )

        evaluation = self.evaluate_requirements(stage.requirements, user_id, stage.unlocked_at)
        capped = PointsLedger.xp_capped(stage)

        if evaluation.met or capped:
            return StageDecision(
                status=StageStatus.COMPLETED,
                progress=1.0,
                requirements=evaluation,
                xp_capped=capped,
            )

        xp_ratio = stage.xp_current / stage.xp_total if stage.xp_total > 0 else 0.0
        progress = min(1.0, max(evaluation.partial, xp_ratio))

        if evaluation.partial >= self.in_progress_rule_ratio or xp_ratio >= self.in_progress_xp_ratio:
            status = StageStatus.IN_PROGRESS
        elif previous_completed:
            status = StageStatus.AVAILABLE
        else:
            status = StageStatus.LOCKED

        return StageDecision(status=status, progress=progress, requirements=evaluation)

    @staticmethod
    def next_steps(evaluation: RequirementsEvaluation) -> List[str]:
        """Human-readable hints for each unmet rule."""
        steps = []
        for rule in evaluation.unmet_rules:
            if rule.gte is None:
                if rule.lte is not None:
                    steps.append(f"Keep {rule.metric} at or below {rule.lte:g}")
                else:
                    steps.append(f"Start tracking {rule.metric}")
                continue
            current = evaluation.observed.get(rule.metric, 0.0)
            remaining = max(rule.gte - current, 0.0)
            template = _HINTS.get(rule.metric, "Reach {target:g} {metric}")
            steps.append(template.format(remaining=remaining, target=rule.gte, metric=rule.metric))
        return steps
