"""SQLite-backed repository for user stages, tasks and the points ledger.

Completion and unlock writes are conditional updates (``... IS NULL``) so
they are set-once: racing requests can both attempt a write and the row
ends up the same either way.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .base import JourneyStore, SQLiteRepository
from ..schema import JOURNEY_SCHEMA
from ...exceptions import PersistenceReadError, PersistenceWriteError
from ...models.journey import (
    PointsEntry,
    Requirements,
    StageTemplate,
    UserStage,
    UserStageTask,
)
from ...utils.timeutil import parse_iso, to_iso


logger = logging.getLogger(__name__)


class JourneyRepository(SQLiteRepository, JourneyStore):
    """SQLite implementation of JourneyStore."""

    schema = JOURNEY_SCHEMA

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> UserStageTask:
        try:
            condition = json.loads(row["condition_json"])
        except (TypeError, ValueError):
            # Kept as-is; the evaluator reports it as not met
            condition = row["condition_json"]
        return UserStageTask(
            id=row["id"],
            stage_id=row["stage_id"],
            key_code=row["key_code"],
            title=row["title"],
            description=row["description"] or "",
            condition=condition,
            points=row["points"],
            position=row["position"],
            is_completed=bool(row["is_completed"]),
            completed_at=parse_iso(row["completed_at"]),
        )

    def _row_to_stage(self, row: sqlite3.Row, tasks: Sequence[UserStageTask]) -> UserStage:
        try:
            requirements = Requirements.model_validate_json(row["requirements_json"])
        except ValueError:
            logger.warning(f"Stage {row['id']} has unreadable requirements, treating as empty")
            requirements = Requirements()
        return UserStage(
            id=row["id"],
            user_id=row["user_id"],
            stage_code=row["stage_code"],
            title=row["title"],
            subtitle=row["subtitle"],
            stage_type=row["stage_type"],
            position=row["position"],
            xp_total=row["xp_total"],
            is_unlocked=bool(row["is_unlocked"]),
            unlocked_at=parse_iso(row["unlocked_at"]),
            completed_at=parse_iso(row["completed_at"]),
            requirements=requirements,
            color_hex=row["color_hex"],
            tasks=tuple(tasks),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def read_user_stages(self, user_id: str) -> List[UserStage]:
        try:
            with self._get_connection() as conn:
                stage_rows = conn.execute(
                    "SELECT * FROM user_stages WHERE user_id = ? ORDER BY position",
                    (user_id,),
                ).fetchall()
                task_rows = conn.execute(
                    "SELECT * FROM user_stage_tasks WHERE user_id = ? ORDER BY stage_id, position",
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to read stages for user {user_id}: {e}")
            raise PersistenceReadError("read_user_stages") from e

        tasks_by_stage: Dict[str, List[UserStageTask]] = {}
        for row in task_rows:
            tasks_by_stage.setdefault(row["stage_id"], []).append(self._row_to_task(row))

        return [
            self._row_to_stage(row, tasks_by_stage.get(row["id"], []))
            for row in stage_rows
        ]

    def count_user_stages(self, user_id: str) -> int:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM user_stages WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceReadError("count_user_stages") from e
        return row["n"]

    def points_by_stage(self, user_id: str) -> List[Tuple[str, str, int, int]]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT s.id AS stage_id, s.title AS stage_title,
                           COALESCE(SUM(p.points), 0) AS points,
                           COUNT(p.id) AS completed_tasks
                    FROM user_stages s
                    LEFT JOIN user_points p ON p.stage_id = s.id
                    WHERE s.user_id = ?
                    GROUP BY s.id
                    ORDER BY s.position
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceReadError("points_by_stage") from e
        return [
            (row["stage_id"], row["stage_title"], row["points"], row["completed_tasks"])
            for row in rows
        ]

    def points_feed(
        self,
        user_id: str,
        limit: int,
        stage_id: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> List[PointsEntry]:
        query = """
            SELECT p.*, s.title AS stage_title, t.title AS task_title
            FROM user_points p
            LEFT JOIN user_stages s ON s.id = p.stage_id
            LEFT JOIN user_stage_tasks t ON t.id = p.task_id
            WHERE p.user_id = ?
        """
        params: list = [user_id]
        if stage_id:
            query += " AND p.stage_id = ?"
            params.append(stage_id)
        if before:
            query += " AND p.created_at < ?"
            params.append(to_iso(before))
        query += " ORDER BY p.created_at DESC, p.id DESC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceReadError("points_feed") from e

        return [
            PointsEntry(
                id=row["id"],
                user_id=row["user_id"],
                stage_id=row["stage_id"],
                task_id=row["task_id"],
                points=row["points"],
                reason=row["reason"],
                created_at=parse_iso(row["created_at"]),
                stage_title=row["stage_title"],
                task_title=row["task_title"],
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def seed_user_stages(
        self,
        user_id: str,
        persona: str,
        templates: Sequence[StageTemplate],
        now: datetime,
    ) -> int:
        created_at = to_iso(now)
        try:
            with self._get_connection() as conn:
                # Serialize concurrent bootstraps of the same database
                conn.execute("BEGIN IMMEDIATE")
                existing = conn.execute(
                    "SELECT COUNT(*) AS n FROM user_stages WHERE user_id = ?",
                    (user_id,),
                ).fetchone()["n"]
                if existing:
                    return 0

                for position, template in enumerate(templates):
                    stage_id = str(uuid.uuid4())
                    first = position == 0
                    conn.execute(
                        """
                        INSERT INTO user_stages (
                            id, user_id, persona, stage_code, title, subtitle,
                            stage_type, color_hex, position, requirements_json,
                            xp_total, is_unlocked, unlocked_at, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            stage_id,
                            user_id,
                            persona,
                            template.code,
                            template.title,
                            template.subtitle,
                            template.type,
                            template.color_hex,
                            position,
                            template.requirements.model_dump_json(),
                            sum(t.xp for t in template.tasks),
                            1 if first else 0,
                            created_at if first else None,
                            created_at,
                        ),
                    )
                    conn.executemany(
                        """
                        INSERT INTO user_stage_tasks (
                            id, stage_id, user_id, key_code, title, description,
                            condition_json, points, position
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                str(uuid.uuid4()),
                                stage_id,
                                user_id,
                                task.key,
                                task.title,
                                task.desc,
                                json.dumps(task.check),
                                task.xp,
                                task_position,
                            )
                            for task_position, task in enumerate(template.tasks)
                        ],
                    )
        except sqlite3.Error as e:
            logger.error(f"Failed to seed journey for user {user_id}: {e}")
            raise PersistenceWriteError("seed_user_stages") from e

        logger.info(f"Seeded {len(templates)} stages ({persona}) for user {user_id}")
        return len(templates)

    def _set_once(self, operation: str, sql: str, params: tuple) -> bool:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, params)
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"{operation} failed: {e}")
            raise PersistenceWriteError(operation) from e

    def mark_task_complete(self, task_id: str, completed_at: datetime) -> bool:
        return self._set_once(
            "mark_task_complete",
            """
            UPDATE user_stage_tasks SET is_completed = 1, completed_at = ?
            WHERE id = ? AND is_completed = 0
            """,
            (to_iso(completed_at), task_id),
        )

    def mark_stage_complete(self, stage_id: str, completed_at: datetime) -> bool:
        return self._set_once(
            "mark_stage_complete",
            "UPDATE user_stages SET completed_at = ? WHERE id = ? AND completed_at IS NULL",
            (to_iso(completed_at), stage_id),
        )

    def unlock_stage(self, stage_id: str, unlocked_at: datetime) -> bool:
        return self._set_once(
            "unlock_stage",
            """
            UPDATE user_stages SET is_unlocked = 1, unlocked_at = ?
            WHERE id = ? AND unlocked_at IS NULL
            """,
            (to_iso(unlocked_at), stage_id),
        )

    def award_points(
        self,
        user_id: str,
        stage_id: str,
        task_id: str,
        points: int,
        reason: str,
        created_at: datetime,
    ) -> bool:
        return self._set_once(
            "award_points",
            """
            INSERT OR IGNORE INTO user_points (user_id, stage_id, task_id, points, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, stage_id, task_id, points, reason, to_iso(created_at)),
        )
