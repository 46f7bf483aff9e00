"""Tests for the task condition evaluator."""

import logging
from datetime import date, timedelta

import pytest

from journey_engine.models.journey import UserStageTask
from journey_engine.services.condition_evaluator import ConditionEvaluator

from conftest import FIXED_NOW, USER_ID, FakeTargetsSource


@pytest.fixture
def evaluator(metrics, targets, clock) -> ConditionEvaluator:
    return ConditionEvaluator(metrics, targets, now=clock)


LONG_AGO = FIXED_NOW - timedelta(days=30)


class TestInstantaneousConditions:
    """LOG_MEALS_TODAY and HIT_PROTEIN_GOAL."""

    def test_protein_goal_met_with_user_target(self, metrics, clock):
        """140 g eaten against a 140 g user target is full progress."""
        metrics.values["protein_total_g"] = 140
        evaluator = ConditionEvaluator(metrics, FakeTargetsSource(protein=140), now=clock)

        result = evaluator.evaluate(
            {"type": "HIT_PROTEIN_GOAL", "use_user_target": True}, USER_ID, LONG_AGO
        )

        assert result.progress == 1.0
        assert result.can_complete is True
        assert result.current == 140
        assert result.target == 140

    def test_protein_goal_half_way(self, metrics, clock):
        """70 g of 140 g is half progress and cannot complete."""
        metrics.values["protein_total_g"] = 70
        evaluator = ConditionEvaluator(metrics, FakeTargetsSource(protein=140), now=clock)

        result = evaluator.evaluate(
            {"type": "HIT_PROTEIN_GOAL", "use_user_target": True}, USER_ID, LONG_AGO
        )

        assert result.progress == pytest.approx(0.5)
        assert result.can_complete is False

    def test_resolved_target_used_when_user_target_missing(self, metrics, evaluator):
        metrics.values["protein_total_g"] = 80
        result = evaluator.evaluate(
            {"type": "HIT_PROTEIN_GOAL", "use_user_target": True, "resolved_target": 160},
            USER_ID,
            LONG_AGO,
        )
        assert result.target == 160
        assert result.progress == pytest.approx(0.5)

    def test_zero_user_target_is_ignored(self, metrics, clock):
        """A non-positive user target falls through to the next source."""
        metrics.values["protein_total_g"] = 60
        evaluator = ConditionEvaluator(metrics, FakeTargetsSource(protein=0), now=clock)

        result = evaluator.evaluate(
            {"type": "HIT_PROTEIN_GOAL", "use_user_target": True}, USER_ID, LONG_AGO
        )

        assert result.target == 120
        assert result.progress == pytest.approx(0.5)

    def test_user_target_ignored_without_opt_in(self, metrics, clock):
        metrics.values["protein_total_g"] = 100
        evaluator = ConditionEvaluator(metrics, FakeTargetsSource(protein=100), now=clock)

        result = evaluator.evaluate({"type": "HIT_PROTEIN_GOAL", "target": 200}, USER_ID, LONG_AGO)

        assert result.target == 200
        assert result.progress == pytest.approx(0.5)

    def test_meals_today_default_target(self, metrics, evaluator):
        metrics.values["meals_logged"] = 2
        result = evaluator.evaluate({"type": "LOG_MEALS_TODAY"}, USER_ID, LONG_AGO)
        assert result.target == 3
        assert result.progress == pytest.approx(2 / 3)
        assert result.details == "2 of 3"

    def test_measured_from_start_of_today(self, metrics, evaluator):
        """An old unlock is narrowed to midnight today."""
        metrics.values["meals_logged"] = 1
        evaluator.evaluate({"type": "LOG_MEALS_TODAY"}, USER_ID, LONG_AGO)

        _, metric, since = metrics.calls[-1]
        assert metric == "meals_logged"
        assert since == FIXED_NOW.replace(hour=0, minute=0)

    def test_measured_from_unlock_when_unlocked_today(self, metrics, evaluator):
        unlocked = FIXED_NOW - timedelta(hours=2)
        metrics.values["meals_logged"] = 1
        evaluator.evaluate({"type": "LOG_MEALS_TODAY"}, USER_ID, unlocked)

        _, _, since = metrics.calls[-1]
        assert since == unlocked


class TestWindowedConditions:
    """WEEKLY_DEFICIT / SURPLUS / BALANCED."""

    def _days_back(self, n: int) -> date:
        return FIXED_NOW.date() - timedelta(days=n)

    def test_weekly_deficit_four_of_seven(self, metrics, evaluator):
        """Four days inside 2000 +/- 100 out of seven gives ~0.571."""
        metrics.daily["calories_kcal"] = {
            self._days_back(6): 1950,
            self._days_back(5): 2300,
            self._days_back(4): 2050,
            self._days_back(3): 1500,
            self._days_back(2): 2000,
            self._days_back(0): 2100,
        }

        result = evaluator.evaluate({"type": "WEEKLY_DEFICIT"}, USER_ID, LONG_AGO)

        assert result.current == 4
        assert result.target == 7
        assert result.progress == pytest.approx(0.5714, abs=1e-3)
        assert result.can_complete is False
        assert result.details == "4 of 7 days"

    def test_days_before_unlock_never_count(self, metrics, evaluator):
        unlocked = FIXED_NOW - timedelta(days=2)
        metrics.daily["calories_kcal"] = {
            self._days_back(6): 2000,
            self._days_back(5): 2000,
            self._days_back(2): 2000,
            self._days_back(0): 2000,
        }

        result = evaluator.evaluate({"type": "WEEKLY_DEFICIT"}, USER_ID, unlocked)

        assert result.current == 2

    def test_user_calorie_target(self, metrics, clock):
        metrics.daily["calories_kcal"] = {
            self._days_back(1): 1800,
            self._days_back(0): 2000,
        }
        evaluator = ConditionEvaluator(metrics, FakeTargetsSource(calories=1800), now=clock)

        result = evaluator.evaluate(
            {"type": "WEEKLY_DEFICIT", "use_user_target": True}, USER_ID, LONG_AGO
        )

        assert result.current == 1

    def test_balanced_has_wider_buffer(self, metrics, evaluator):
        metrics.daily["calories_kcal"] = {self._days_back(0): 2380}
        result = evaluator.evaluate(
            {"type": "WEEKLY_BALANCED", "lookback_days": 1}, USER_ID, LONG_AGO
        )
        assert result.progress == 1.0
        assert result.can_complete is True

    def test_balanced_target_is_the_daily_calorie_goal(self, metrics, evaluator):
        """``target`` sets the daily goal; the tolerance comes from ``buffer_kcal``."""
        metrics.daily["calories_kcal"] = {self._days_back(0): 2300}
        result = evaluator.evaluate(
            {"type": "WEEKLY_BALANCED", "lookback_days": 1, "target": 1800}, USER_ID, LONG_AGO
        )
        assert result.current == 0

        metrics.daily["calories_kcal"] = {self._days_back(0): 1950}
        result = evaluator.evaluate(
            {"type": "WEEKLY_BALANCED", "lookback_days": 1, "target": 1800}, USER_ID, LONG_AGO
        )
        assert result.current == 1

    def test_explicit_buffer(self, metrics, evaluator):
        metrics.daily["calories_kcal"] = {self._days_back(0): 2650}
        result = evaluator.evaluate(
            {"type": "WEEKLY_SURPLUS", "lookback_days": 1, "buffer_kcal": 150},
            USER_ID,
            LONG_AGO,
        )
        assert result.current == 1


class TestCountAndStreakConditions:
    def test_total_meals_default_target(self, metrics, evaluator):
        metrics.values["meals_logged"] = 25
        result = evaluator.evaluate({"type": "TOTAL_MEALS_LOGGED"}, USER_ID, LONG_AGO)
        assert result.target == 50
        assert result.progress == pytest.approx(0.5)

    def test_progress_is_clamped(self, metrics, evaluator):
        metrics.values["log_streak_days"] = 10
        result = evaluator.evaluate({"type": "STREAK_DAYS"}, USER_ID, LONG_AGO)
        assert result.progress == 1.0
        assert result.current == 10
        assert result.target == 7

    def test_first_weigh_in(self, metrics, evaluator):
        metrics.values["weigh_ins"] = 1
        result = evaluator.evaluate({"type": "FIRST_WEIGH_IN"}, USER_ID, LONG_AGO)
        assert result.can_complete is True

    def test_missing_metric_counts_as_zero(self, evaluator):
        result = evaluator.evaluate({"type": "HABIT_CHECKS"}, USER_ID, LONG_AGO)
        assert result.current == 0
        assert result.progress == 0.0


class TestNeverFails:
    """Unknown, malformed and unreadable conditions come back as zero progress."""

    def test_unknown_kind(self, evaluator):
        result = evaluator.evaluate({"type": "RUN_A_MARATHON"}, USER_ID, LONG_AGO)
        assert result.progress == 0.0
        assert result.can_complete is False

    @pytest.mark.parametrize("raw", [None, "LOG_MEALS_TODAY", {"target": 3}, {"type": "LOG_MEALS_TODAY", "target": "lots"}])
    def test_malformed_condition(self, evaluator, raw):
        result = evaluator.evaluate(raw, USER_ID, LONG_AGO)
        assert result.progress == 0.0
        assert result.can_complete is False

    def test_no_lower_bound_is_zero_without_reading(self, metrics, evaluator):
        metrics.values["weigh_ins"] = 99
        result = evaluator.evaluate({"type": "TOTAL_WEIGH_INS"}, USER_ID, None)

        assert result.progress == 0.0
        assert result.current == 0
        assert result.target == 10
        assert metrics.calls == []

    def test_source_failure_is_isolated(self, metrics, evaluator, caplog):
        metrics.failing.add("meals_logged")
        with caplog.at_level(logging.ERROR):
            result = evaluator.evaluate(
                {"type": "LOG_MEALS_TODAY"}, USER_ID, LONG_AGO, task_key="log_3_meals_today"
            )

        assert result.progress == 0.0
        assert "log_3_meals_today" in caplog.text

    def test_completed_task_short_circuits(self, metrics, evaluator):
        task = UserStageTask(
            id="t1",
            stage_id="s1",
            key_code="first_weigh_in",
            title="Weigh in",
            description="",
            condition={"type": "FIRST_WEIGH_IN"},
            points=10,
            position=0,
            is_completed=True,
        )
        result = evaluator.evaluate_task(task, USER_ID, LONG_AGO)

        assert result.progress == 1.0
        assert result.can_complete is True
        assert metrics.calls == []
