"""
Progress aggregation.

Builds the journey snapshot for a user: loads stage/task rows, evaluates
every incomplete task on a thread pool (all tasks of a stage finish before
the stage is derived), runs the state machine and finalizes stages that
reached completion.

Snapshots are immutable. Merging a refreshed task into an existing snapshot
goes through ``apply_task_update``, a pure function keyed by
``(stage_id, task_id)``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import List, Optional

from ..db.repositories.base import JourneyStore
from ..exceptions import PersistenceWriteError, StageNotFoundError, TaskNotFoundError
from ..models.journey import (
    JourneyStagesResponse,
    StageStatus,
    StageView,
    TaskEvaluation,
    TaskView,
    UserStage,
    UserStageTask,
)
from .condition_evaluator import ConditionEvaluator
from .ledger import PointsLedger
from .stage_machine import StageDecision, StageStateMachine


logger = logging.getLogger(__name__)

# Write attempts per finalize before a read gives up
FINALIZE_ATTEMPTS = 2


def unlocked_up_to_index(stages: List[StageView]) -> int:
    """Highest index whose stage is completed, -1 if none."""
    for index in range(len(stages) - 1, -1, -1):
        if stages[index].status == StageStatus.COMPLETED:
            return index
    return -1


def active_stage_index(stages: List[StageView]) -> Optional[int]:
    """First stage that is not completed, None if all are."""
    for index, stage in enumerate(stages):
        if stage.status != StageStatus.COMPLETED:
            return index
    return None


def build_task_view(task: UserStageTask, evaluation: TaskEvaluation, locked: bool) -> TaskView:
    return TaskView(
        id=task.id,
        key_code=task.key_code,
        title=task.title,
        description=task.description,
        points=task.points,
        position=task.position,
        is_completed=task.is_completed,
        completed_at=task.completed_at,
        condition=task.condition,
        progress=evaluation.progress,
        can_complete=evaluation.can_complete,
        current=evaluation.current,
        target=evaluation.target,
        details=evaluation.details,
        locked_by_stage=locked,
    )


def apply_task_update(
    snapshot: JourneyStagesResponse,
    stage_id: str,
    task_id: str,
    task: TaskView,
) -> JourneyStagesResponse:
    """
    Return a new snapshot with one task replaced.

    A task that is completed in ``snapshot`` stays completed even if the
    update says otherwise. The stage's XP is recomputed; a stage whose XP is
    capped (or whose tasks are all done) becomes completed and its locked
    successor becomes available. Both indexes are recomputed and
    ``unlocked_up_to_index`` never decreases.

    Raises:
        StageNotFoundError: If the stage is not in the snapshot
        TaskNotFoundError: If the task is not in the stage
    """
    stage_pos = next((i for i, s in enumerate(snapshot.stages) if s.id == stage_id), None)
    if stage_pos is None:
        raise StageNotFoundError(stage_id)
    stage = snapshot.stages[stage_pos]

    task_pos = next((i for i, t in enumerate(stage.tasks) if t.id == task_id), None)
    if task_pos is None:
        raise TaskNotFoundError(task_id)
    existing = stage.tasks[task_pos]

    if existing.is_completed and not task.is_completed:
        task = existing

    tasks = list(stage.tasks)
    tasks[task_pos] = task
    new_stage = stage.model_copy(
        update={
            "tasks": tasks,
            "xp_current": min(sum(t.points for t in tasks if t.is_completed), stage.xp_total),
        }
    )
    if new_stage.status != StageStatus.COMPLETED:
        if PointsLedger.xp_capped(new_stage):
            new_stage = new_stage.model_copy(
                update={"status": StageStatus.COMPLETED, "progress": 1.0, "next_steps": []}
            )
        elif new_stage.xp_total > 0:
            xp_ratio = new_stage.xp_current / new_stage.xp_total
            new_stage = new_stage.model_copy(
                update={"progress": min(1.0, max(new_stage.progress, xp_ratio))}
            )

    stages = list(snapshot.stages)
    stages[stage_pos] = new_stage
    following = stage_pos + 1
    if (
        new_stage.status == StageStatus.COMPLETED
        and following < len(stages)
        and stages[following].status == StageStatus.LOCKED
    ):
        stages[following] = stages[following].model_copy(update={"status": StageStatus.AVAILABLE})

    return snapshot.model_copy(
        update={
            "stages": stages,
            "active_stage_index": active_stage_index(stages),
            "unlocked_up_to_index": max(snapshot.unlocked_up_to_index, unlocked_up_to_index(stages)),
        }
    )


class JourneyProgressAggregator:
    """Assembles the journey snapshot for a user."""

    def __init__(
        self,
        store: JourneyStore,
        evaluator: ConditionEvaluator,
        state_machine: StageStateMachine,
        ledger: PointsLedger,
        max_workers: int = 4,
    ):
        self.store = store
        self.evaluator = evaluator
        self.state_machine = state_machine
        self.ledger = ledger
        self.max_workers = max_workers

    def build(self, user_id: str) -> JourneyStagesResponse:
        """
        Compute the full journey snapshot.

        Raises:
            PersistenceReadError: If the user's rows cannot be loaded
            PersistenceWriteError: If a derived completion cannot be stored
        """
        stages = self.store.read_user_stages(user_id)
        views: List[StageView] = []
        previous_completed = True

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for index, stage in enumerate(stages):
                evaluations = list(
                    pool.map(
                        lambda task, s=stage: self.evaluator.evaluate_task(task, user_id, s.unlocked_at),
                        stage.tasks,
                    )
                )
                decision = self._settle(stages, index, previous_completed, user_id)
                views.append(self._stage_view(stages[index], decision, evaluations))
                previous_completed = decision.status == StageStatus.COMPLETED

        return JourneyStagesResponse(
            stages=views,
            active_stage_index=active_stage_index(views),
            unlocked_up_to_index=unlocked_up_to_index(views),
        )

    def finalize_pending(self, user_id: str, stages: List[UserStage]) -> List[UserStage]:
        """
        Finalize every leading stage whose requirements or XP say completed.

        Stops at the first stage that is not completed. Returns the stages
        with the stored completion and unlock times applied.
        """
        stages = list(stages)
        previous_completed = True
        for index in range(len(stages)):
            decision = self._settle(stages, index, previous_completed, user_id)
            if decision.status != StageStatus.COMPLETED:
                break
        return stages

    def _settle(
        self,
        stages: List[UserStage],
        index: int,
        previous_completed: bool,
        user_id: str,
    ) -> StageDecision:
        """Derive ``stages[index]`` and finalize it in place if it is completed."""
        stage = stages[index]
        decision = self.state_machine.derive(stage, previous_completed, user_id)

        next_stage = stages[index + 1] if index + 1 < len(stages) else None
        next_locked = next_stage is not None and next_stage.unlocked_at is None
        if decision.needs_finalize and (stage.completed_at is None or next_locked):
            stages[index], next_stage = self._finalize(stage, next_stage)
            if next_stage is not None:
                stages[index + 1] = next_stage
        return decision

    def _finalize(self, stage: UserStage, next_stage: Optional[UserStage]):
        for attempt in range(1, FINALIZE_ATTEMPTS + 1):
            try:
                result = self.ledger.finalize_stage(stage, next_stage)
                break
            except PersistenceWriteError:
                if attempt < FINALIZE_ATTEMPTS:
                    logger.warning(f"Retrying finalize of stage {stage.stage_code} for user {stage.user_id}")
                    continue
                if stage.completed_at is None:
                    # A completion that is not stored is never reported
                    raise
                # Only the unlock is missing; the next read retries it
                logger.error(f"Failed to unlock the stage after {stage.stage_code} for user {stage.user_id}")
                return stage, next_stage

        stage = replace(stage, completed_at=stage.completed_at or result.at)
        if next_stage is not None and next_stage.unlocked_at is None:
            next_stage = replace(next_stage, is_unlocked=True, unlocked_at=result.at)
        return stage, next_stage

    def _stage_view(
        self,
        stage: UserStage,
        decision: StageDecision,
        evaluations: List[TaskEvaluation],
    ) -> StageView:
        locked = not stage.is_unlocked
        tasks = [
            build_task_view(task, evaluation, locked)
            for task, evaluation in zip(stage.tasks, evaluations)
        ]
        next_steps = []
        if decision.status != StageStatus.COMPLETED:
            next_steps = self.state_machine.next_steps(decision.requirements)

        return StageView(
            id=stage.id,
            code=stage.stage_code,
            title=stage.title,
            subtitle=stage.subtitle,
            type=stage.stage_type,
            color_hex=stage.color_hex,
            position=stage.position,
            status=decision.status,
            progress=decision.progress,
            xp_current=min(stage.xp_current, stage.xp_total),
            xp_total=stage.xp_total,
            is_unlocked=stage.is_unlocked,
            unlocked_at=stage.unlocked_at,
            started_at=stage.unlocked_at,
            completed_at=stage.completed_at,
            next_steps=next_steps,
            tasks=tasks,
        )

    def refresh_task(
        self,
        snapshot: JourneyStagesResponse,
        user_id: str,
        stage_id: str,
        task_id: str,
    ) -> JourneyStagesResponse:
        """Re-read and re-evaluate one task, then merge it into ``snapshot``."""
        stage = next((s for s in self.store.read_user_stages(user_id) if s.id == stage_id), None)
        if stage is None:
            raise StageNotFoundError(stage_id)
        task = next((t for t in stage.tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError(task_id)

        evaluation = self.evaluator.evaluate_task(task, user_id, stage.unlocked_at)
        view = build_task_view(task, evaluation, locked=not stage.is_unlocked)
        return apply_task_update(snapshot, stage_id, task_id, view)
