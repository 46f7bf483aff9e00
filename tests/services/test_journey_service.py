"""Tests for JourneyService: bootstrap, completion and points reads."""

import pytest

from journey_engine.api.deps import build_journey_service
from journey_engine.db.repositories import JourneyRepository
from journey_engine.exceptions import (
    ConditionsNotMetError,
    ErrorCode,
    PersistenceReadError,
    StageLockedError,
    StageNotFoundError,
    TaskNotFoundError,
)
from journey_engine.models.journey import StageStatus

from conftest import FIXED_NOW, OTHER_USER_ID, USER_ID


def task_by_key(stage, key):
    return next(t for t in stage.tasks if t.key_code == key)


@pytest.fixture
def stages(service, journey_repo):
    service.bootstrap(USER_ID, "rookie-cut")
    return journey_repo.read_user_stages(USER_ID)


class TestBootstrap:
    def test_seeds_persona_stages(self, service, journey_repo):
        result = service.bootstrap(USER_ID, "rookie-cut")

        assert result.created is True
        assert result.existing is False
        assert result.stage_count == 4

        stages = journey_repo.read_user_stages(USER_ID)
        assert [s.position for s in stages] == [0, 1, 2, 3]
        assert [s.is_unlocked for s in stages] == [True, False, False, False]
        assert stages[0].unlocked_at == FIXED_NOW
        assert stages[0].xp_total == 45

    def test_second_call_is_noop(self, service, journey_repo):
        service.bootstrap(USER_ID, "rookie-cut")
        first_ids = [s.id for s in journey_repo.read_user_stages(USER_ID)]

        result = service.bootstrap(USER_ID, "athlete-gain")

        assert result.created is False
        assert result.existing is True
        assert result.stage_count == 4
        assert [s.id for s in journey_repo.read_user_stages(USER_ID)] == first_ids

    def test_unknown_persona_uses_default(self, service):
        result = service.bootstrap(USER_ID, "astronaut-bulk")
        assert result.persona == "rookie-cut"

    def test_large_persona_is_capped(self, service):
        assert service.bootstrap(USER_ID, "athlete-gain").stage_count == 5

    def test_users_are_independent(self, service):
        service.bootstrap(USER_ID, "rookie-cut")
        result = service.bootstrap(OTHER_USER_ID, "busy-3day-cut")

        assert result.created is True
        assert result.stage_count == 2


class TestCompleteTask:
    def test_awards_points(self, service, stages, metrics):
        metrics.values["weigh_ins"] = 1
        task = task_by_key(stages[0], "first_weigh_in")

        result = service.complete_task(USER_ID, stages[0].id, task.id)

        assert result.points_awarded == 15
        assert result.already_completed is False
        assert result.stage_completed is False
        assert service.points_summary(USER_ID).total == 15

    def test_second_completion_reports_already_completed(self, service, stages, metrics):
        metrics.values["weigh_ins"] = 1
        task = task_by_key(stages[0], "first_weigh_in")
        service.complete_task(USER_ID, stages[0].id, task.id)

        result = service.complete_task(USER_ID, stages[0].id, task.id)

        assert result.already_completed is True
        assert result.points_awarded == 0
        assert service.points_summary(USER_ID).total == 15

    def test_already_completed_heals_missing_award(self, service, stages, journey_repo):
        """A completion recorded without its ledger row gets the row on retry."""
        task = task_by_key(stages[0], "first_weigh_in")
        journey_repo.mark_task_complete(task.id, FIXED_NOW)

        result = service.complete_task(USER_ID, stages[0].id, task.id)

        assert result.already_completed is True
        assert service.points_summary(USER_ID).total == 15

    def test_conditions_not_met(self, service, stages, metrics):
        metrics.values["meals_logged"] = 2
        task = task_by_key(stages[0], "log_3_meals_today")

        with pytest.raises(ConditionsNotMetError) as exc_info:
            service.complete_task(USER_ID, stages[0].id, task.id)

        error = exc_info.value
        assert error.status_code == 400
        assert error.code == ErrorCode.CONDITIONS_NOT_MET
        assert error.details["current"] == 2
        assert error.details["target"] == 3
        assert service.points_summary(USER_ID).total == 0

    def test_locked_stage(self, service, stages):
        task = stages[1].tasks[0]

        with pytest.raises(StageLockedError) as exc_info:
            service.complete_task(USER_ID, stages[1].id, task.id)

        assert exc_info.value.status_code == 403

    def test_unknown_stage(self, service, stages):
        with pytest.raises(StageNotFoundError):
            service.complete_task(USER_ID, "no-such-stage", stages[0].tasks[0].id)

    def test_other_users_stage_is_not_found(self, service, stages):
        service.bootstrap(OTHER_USER_ID, "rookie-cut")

        with pytest.raises(StageNotFoundError):
            service.complete_task(OTHER_USER_ID, stages[0].id, stages[0].tasks[0].id)

    def test_task_from_another_stage(self, service, stages):
        with pytest.raises(TaskNotFoundError) as exc_info:
            service.complete_task(USER_ID, stages[0].id, stages[1].tasks[0].id)

        assert exc_info.value.status_code == 404

    def test_last_task_completes_stage_and_unlocks_next(self, service, stages, metrics, journey_repo):
        metrics.values.update({"weigh_ins": 1, "meals_logged": 3, "education_reads": 1})
        stage = stages[0]

        results = [service.complete_task(USER_ID, stage.id, t.id) for t in stage.tasks]

        assert [r.stage_completed for r in results] == [False, False, True]
        assert results[-1].unlocked_next is True
        assert service.points_summary(USER_ID).total == 45

        first, second = journey_repo.read_user_stages(USER_ID)[:2]
        assert first.completed_at == FIXED_NOW
        assert second.is_unlocked is True

        snapshot = service.get_stages(USER_ID)
        assert snapshot.stages[0].status == StageStatus.COMPLETED
        assert snapshot.stages[0].xp_current == 45
        assert snapshot.stages[1].status == StageStatus.AVAILABLE

    def test_met_requirements_unlock_next_stage_without_a_read(self, service, stages, metrics, journey_repo):
        """A stage whose predecessor already meets its requirements is completable right away."""
        metrics.values.update({"meals_logged": 7, "weigh_ins": 1, "log_streak_days": 3})
        streak = task_by_key(stages[1], "streak_3_days")

        result = service.complete_task(USER_ID, stages[1].id, streak.id)

        assert result.points_awarded == 20
        first, second = journey_repo.read_user_stages(USER_ID)[:2]
        assert first.completed_at == FIXED_NOW
        assert second.unlocked_at == FIXED_NOW
        assert [s.status for s in service.get_stages(USER_ID).stages[:2]] == [
            StageStatus.COMPLETED,
            StageStatus.IN_PROGRESS,
        ]

    def test_unmet_predecessor_keeps_stage_locked(self, service, stages, metrics):
        metrics.values.update({"meals_logged": 6, "weigh_ins": 1, "log_streak_days": 3})

        with pytest.raises(StageLockedError):
            service.complete_task(USER_ID, stages[1].id, task_by_key(stages[1], "streak_3_days").id)

    def test_next_stage_conditions_measured_from_unlock(self, service, stages, metrics, clock):
        """A windowed task in a freshly unlocked stage ignores days before the unlock."""
        metrics.values.update({"meals_logged": 7, "weigh_ins": 1})
        service.get_stages(USER_ID)
        clock.advance(days=1)

        snapshot = service.get_stages(USER_ID)
        task = task_by_key(snapshot.stages[1], "weekly_deficit")

        assert task.locked_by_stage is False
        calorie_reads = [since for _, metric, since in metrics.calls if metric == "calories_kcal"]
        assert calorie_reads
        assert all(since == FIXED_NOW for since in calorie_reads)


class TestReadFailures:
    def test_read_failure_propagates(self, metrics, targets, catalog, clock, tmp_path):
        class BrokenRepository(JourneyRepository):
            def read_user_stages(self, user_id):
                raise PersistenceReadError("read_user_stages")

        service = build_journey_service(
            store=BrokenRepository(tmp_path / "broken.db"),
            metrics=metrics,
            targets=targets,
            catalog=catalog,
            now=clock,
        )

        with pytest.raises(PersistenceReadError):
            service.get_stages(USER_ID)
