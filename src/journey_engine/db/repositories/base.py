"""Base repository interfaces.

The engine reads and writes through these abstract classes only, so the
SQLite adapters in this package can be swapped for another row store (or an
in-memory fake in tests).
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ...models.journey import (
    NutritionTargets,
    PointsEntry,
    StageTemplate,
    UserStage,
)


class SQLiteRepository:
    """Shared connection handling for the SQLite adapters."""

    schema: str = ""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._ensure_tables_exist()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with context manager."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_tables_exist(self) -> None:
        if not self.schema:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(self.schema)


class JourneyStore(ABC):
    """Persistence of user stages, tasks and the points ledger."""

    @abstractmethod
    def read_user_stages(self, user_id: str) -> List[UserStage]:
        """
        Load all stages of a user with their tasks.

        Returns:
            Stages ordered by position, each with tasks ordered by position.
            Empty if the journey was never bootstrapped.
        """

    @abstractmethod
    def count_user_stages(self, user_id: str) -> int:
        pass

    @abstractmethod
    def seed_user_stages(
        self,
        user_id: str,
        persona: str,
        templates: Sequence[StageTemplate],
        now: datetime,
    ) -> int:
        """
        Create stage and task rows from templates, once.

        The first stage is unlocked at ``now``; all others start locked.

        Returns:
            Number of stages created (0 if the user already had stages)
        """

    @abstractmethod
    def mark_task_complete(self, task_id: str, completed_at: datetime) -> bool:
        """Set-once completion. Returns True only if this call completed the task."""

    @abstractmethod
    def mark_stage_complete(self, stage_id: str, completed_at: datetime) -> bool:
        """Set-once completion. Returns True only if this call completed the stage."""

    @abstractmethod
    def unlock_stage(self, stage_id: str, unlocked_at: datetime) -> bool:
        """Set-once unlock. Returns True only if this call unlocked the stage."""

    @abstractmethod
    def award_points(
        self,
        user_id: str,
        stage_id: str,
        task_id: str,
        points: int,
        reason: str,
        created_at: datetime,
    ) -> bool:
        """Record a points award. Returns False if the task was already awarded."""

    @abstractmethod
    def points_by_stage(self, user_id: str) -> List[Tuple[str, str, int, int]]:
        """Per-stage ``(stage_id, stage_title, points, completed_tasks)``, in stage order."""

    @abstractmethod
    def points_feed(
        self,
        user_id: str,
        limit: int,
        stage_id: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> List[PointsEntry]:
        """Ledger rows newest first, strictly older than ``before`` when given."""


class MetricsSource(ABC):
    """Read-only behavioral metrics."""

    @abstractmethod
    def get(self, user_id: str, metric: str, from_ts: datetime) -> Optional[float]:
        """
        Aggregate a metric over ``[from_ts, now]``.

        Returns:
            The value, or None if the metric cannot be computed for this user
        """

    @abstractmethod
    def daily_totals(self, user_id: str, metric: str, from_ts: datetime) -> Dict[date, float]:
        """Per-day totals of a metric over ``[from_ts, now]``; days without data are absent."""


class TargetsSource(ABC):
    """Per-user nutrition targets."""

    @abstractmethod
    def get(self, user_id: str) -> NutritionTargets:
        pass
