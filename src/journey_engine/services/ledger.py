"""
XP / points ledger.

Points are awarded once per task. The ledger also owns the single
"finalize stage" action shared by both completion paths (requirements met,
or XP capped): set ``completed_at`` if unset, then unlock the next stage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from ..db.repositories.base import JourneyStore
from ..exceptions import ValidationError
from ..models.journey import (
    PointsFeed,
    PointsFeedItem,
    PointsSummary,
    StagePoints,
    StageView,
    UserStage,
    UserStageTask,
)
from ..utils.timeutil import Clock, to_iso, to_utc, utc_now


logger = logging.getLogger(__name__)

DEFAULT_FEED_LIMIT = 20
MAX_FEED_LIMIT = 50


@dataclass(frozen=True)
class FinalizeResult:
    stage_completed: bool
    unlocked_next: bool
    at: datetime


class PointsLedger:
    """Awards points and finalizes stages against a JourneyStore."""

    def __init__(self, store: JourneyStore, now: Clock = utc_now):
        self.store = store
        self._now = now

    @staticmethod
    def xp_capped(stage: Union[UserStage, StageView]) -> bool:
        """True when the stage's XP is maxed out or every task is done."""
        if stage.xp_total > 0 and stage.xp_current >= stage.xp_total:
            return True
        return bool(stage.tasks) and all(t.is_completed for t in stage.tasks)

    def award(self, user_id: str, stage: UserStage, task: UserStageTask) -> int:
        """
        Award a task's points.

        Returns:
            Points awarded by this call; 0 if the task was already awarded
        """
        inserted = self.store.award_points(
            user_id=user_id,
            stage_id=stage.id,
            task_id=task.id,
            points=task.points,
            reason=f"task:{task.key_code}",
            created_at=self._now(),
        )
        if not inserted:
            return 0
        logger.info(f"Awarded {task.points} points to user {user_id} for task {task.key_code}")
        return task.points

    def finalize_stage(self, stage: UserStage, next_stage: Optional[UserStage]) -> FinalizeResult:
        """
        Complete a stage and unlock its successor.

        Both writes are set-once. The unlock is attempted even if the stage
        was already completed so an interrupted finalize heals on the next call.
        """
        now = self._now()
        completed = self.store.mark_stage_complete(stage.id, now)
        unlocked = False
        if next_stage is not None:
            unlocked = self.store.unlock_stage(next_stage.id, now)

        if completed:
            logger.info(f"Stage {stage.stage_code} completed for user {stage.user_id}")
        if unlocked:
            logger.info(f"Stage {next_stage.stage_code} unlocked for user {stage.user_id}")
        return FinalizeResult(stage_completed=completed, unlocked_next=unlocked, at=now)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def summary(self, user_id: str) -> PointsSummary:
        by_stage = [
            StagePoints(
                stage_id=stage_id,
                stage_title=title,
                points=points,
                completed_tasks=completed,
            )
            for stage_id, title, points, completed in self.store.points_by_stage(user_id)
        ]
        return PointsSummary(total=sum(s.points for s in by_stage), by_stage=by_stage)

    def feed(
        self,
        user_id: str,
        stage_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_FEED_LIMIT,
    ) -> PointsFeed:
        """
        Newest-first page of ledger entries.

        Args:
            cursor: ``created_at`` of the last entry of the previous page
            limit: Page size, clamped to [1, 50]

        Raises:
            ValidationError: If the cursor is not an ISO timestamp
        """
        limit = max(1, min(limit, MAX_FEED_LIMIT))
        before = None
        if cursor:
            try:
                before = to_utc(datetime.fromisoformat(cursor))
            except ValueError as e:
                raise ValidationError("Invalid cursor", field="cursor") from e

        entries = self.store.points_feed(user_id, limit + 1, stage_id=stage_id, before=before)
        has_more = len(entries) > limit
        page = entries[:limit]

        return PointsFeed(
            items=[
                PointsFeedItem(
                    id=e.id,
                    points=e.points,
                    reason=e.reason,
                    stage_id=e.stage_id,
                    stage_title=e.stage_title,
                    task_id=e.task_id,
                    task_title=e.task_title,
                    created_at=e.created_at,
                )
                for e in page
            ],
            next_cursor=to_iso(page[-1].created_at) if has_more else None,
            has_more=has_more,
        )
