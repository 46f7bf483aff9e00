"""
Journey service: the operations exposed to callers.

- bootstrap: seed a user's stages from the catalog (idempotent)
- get_stages: the evaluated journey snapshot
- refresh_task: merge one re-evaluated task into a snapshot
- complete_task: validate and record a task completion, award its points
  and finalize the stage when its XP is capped
- points_summary / points_feed: ledger reads
"""

import logging
from dataclasses import replace
from typing import Optional

from ..db.repositories.base import JourneyStore
from ..exceptions import (
    ConditionsNotMetError,
    StageLockedError,
    StageNotFoundError,
    TaskNotFoundError,
)
from ..models.journey import (
    BootstrapResponse,
    CompleteTaskResponse,
    JourneyStagesResponse,
    PointsFeed,
    PointsSummary,
)
from ..utils.timeutil import Clock, utc_now
from .catalog import StageCatalog
from .condition_evaluator import ConditionEvaluator
from .ledger import DEFAULT_FEED_LIMIT, PointsLedger
from .progress import JourneyProgressAggregator


logger = logging.getLogger(__name__)


class JourneyService:
    """Coordinates catalog, store, evaluator, aggregator and ledger."""

    def __init__(
        self,
        store: JourneyStore,
        catalog: StageCatalog,
        evaluator: ConditionEvaluator,
        aggregator: JourneyProgressAggregator,
        ledger: PointsLedger,
        now: Clock = utc_now,
    ):
        self.store = store
        self.catalog = catalog
        self.evaluator = evaluator
        self.aggregator = aggregator
        self.ledger = ledger
        self._now = now

    def bootstrap(self, user_id: str, persona: Optional[str] = None) -> BootstrapResponse:
        """
        Seed the user's journey once.

        A second call is a no-op that reports the existing stage count.
        """
        key = self.catalog.resolve_persona(persona)
        existing = self.store.count_user_stages(user_id)
        if existing:
            return BootstrapResponse(created=False, existing=True, stage_count=existing, persona=key)

        templates = self.catalog.select_templates(key)
        created = self.store.seed_user_stages(user_id, key, templates, self._now())
        if not created:
            # Lost a race with a concurrent bootstrap
            return BootstrapResponse(
                created=False,
                existing=True,
                stage_count=self.store.count_user_stages(user_id),
                persona=key,
            )
        return BootstrapResponse(created=True, existing=False, stage_count=created, persona=key)

    def get_stages(self, user_id: str) -> JourneyStagesResponse:
        return self.aggregator.build(user_id)

    def refresh_task(
        self,
        snapshot: JourneyStagesResponse,
        user_id: str,
        stage_id: str,
        task_id: str,
    ) -> JourneyStagesResponse:
        """Re-evaluate one task and merge it into an earlier snapshot."""
        return self.aggregator.refresh_task(snapshot, user_id, stage_id, task_id)

    def complete_task(self, user_id: str, stage_id: str, task_id: str) -> CompleteTaskResponse:
        """
        Complete a task.

        Raises:
            StageNotFoundError: Unknown stage, or the stage belongs to another user
            TaskNotFoundError: Unknown task, or not part of the stage
            StageLockedError: The stage has not been unlocked yet
            ConditionsNotMetError: The task's condition is not satisfied
            PersistenceWriteError: The completion could not be recorded
        """
        # Earlier stages whose requirements are already met unlock this one first
        stages = self.aggregator.finalize_pending(user_id, self.store.read_user_stages(user_id))
        index = next((i for i, s in enumerate(stages) if s.id == stage_id), None)
        if index is None:
            raise StageNotFoundError(stage_id)
        stage = stages[index]

        task = next((t for t in stage.tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError(task_id)

        if not stage.is_unlocked:
            raise StageLockedError(stage_id)

        if task.is_completed:
            # Heals a completion whose award write was lost
            self.ledger.award(user_id, stage, task)
            return CompleteTaskResponse(already_completed=True)

        evaluation = self.evaluator.evaluate(task.condition, user_id, stage.unlocked_at, task.key_code)
        if not evaluation.can_complete:
            raise ConditionsNotMetError(
                task_key=task.key_code,
                progress=evaluation.progress,
                current=evaluation.current,
                target=evaluation.target,
            )

        now = self._now()
        if not self.store.mark_task_complete(task.id, now):
            return CompleteTaskResponse(already_completed=True)

        points = self.ledger.award(user_id, stage, task)
        logger.info(f"User {user_id} completed task {task.key_code} in stage {stage.stage_code}")

        completed_task = replace(task, is_completed=True, completed_at=now)
        stage = replace(
            stage,
            tasks=tuple(completed_task if t.id == task.id else t for t in stage.tasks),
        )

        stage_completed = False
        unlocked_next = False
        if PointsLedger.xp_capped(stage):
            next_stage = stages[index + 1] if index + 1 < len(stages) else None
            result = self.ledger.finalize_stage(stage, next_stage)
            stage_completed = True
            unlocked_next = result.unlocked_next

        return CompleteTaskResponse(
            points_awarded=points,
            already_completed=False,
            stage_completed=stage_completed,
            unlocked_next=unlocked_next,
        )

    def points_summary(self, user_id: str) -> PointsSummary:
        return self.ledger.summary(user_id)

    def points_feed(
        self,
        user_id: str,
        stage_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_FEED_LIMIT,
    ) -> PointsFeed:
        return self.ledger.feed(user_id, stage_id=stage_id, cursor=cursor, limit=limit)
