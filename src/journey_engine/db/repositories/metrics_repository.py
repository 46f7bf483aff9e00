"""SQLite-backed behavioral metrics and nutrition targets.

The journey engine only reads from here. The ``add_*`` helpers exist for the
CLI and for tests; in production the logging surfaces of the app own these
tables.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Optional, Set

from .base import MetricsSource, SQLiteRepository, TargetsSource
from ..schema import METRICS_SCHEMA
from ...models.journey import NutritionTargets
from ...utils.timeutil import Clock, day_of, to_iso, utc_now


logger = logging.getLogger(__name__)

# Share of the calorie target a day may deviate by and still count as adherent
ADHERENCE_TOLERANCE = 0.10

# metric -> (table, timestamp column, aggregate)
_SIMPLE_METRICS = {
    "meals_logged": ("meals", "logged_at", "COUNT(*)"),
    "protein_total_g": ("meals", "logged_at", "COALESCE(SUM(protein_g), 0)"),
    "calories_total_kcal": ("meals", "logged_at", "COALESCE(SUM(calories), 0)"),
    "weigh_ins": ("weigh_ins", "logged_at", "COUNT(*)"),
    "habit_checks": ("habit_checks", "checked_at", "COUNT(*)"),
    "education_reads": ("education_reads", "read_at", "COUNT(*)"),
}

_DAILY_METRICS = {
    "calories_kcal": "COALESCE(SUM(calories), 0)",
    "protein_g": "COALESCE(SUM(protein_g), 0)",
    "meals_logged": "COUNT(*)",
}

_STREAK_METRICS = {
    "log_streak_days": ("meals", "logged_at"),
    "habit_streak_days": ("habit_checks", "checked_at"),
}


class MetricsRepository(SQLiteRepository, MetricsSource):
    """Metrics Source over the meals, weigh-in, habit and reading logs."""

    schema = METRICS_SCHEMA

    def __init__(self, db_path, now: Clock = utc_now, targets: Optional[TargetsSource] = None):
        self._now = now
        super().__init__(db_path)
        self._targets = targets or TargetsRepository(db_path)

    def get(self, user_id: str, metric: str, from_ts: datetime) -> Optional[float]:
        now = self._now()
        if metric in _SIMPLE_METRICS:
            table, column, aggregate = _SIMPLE_METRICS[metric]
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {aggregate} AS value FROM {table} "
                    f"WHERE user_id = ? AND {column} >= ? AND {column} <= ?",
                    (user_id, to_iso(from_ts), to_iso(now)),
                ).fetchone()
            return float(row["value"])

        if metric in _STREAK_METRICS:
            table, column = _STREAK_METRICS[metric]
            days = self._active_days(user_id, table, column, from_ts, now)
            return float(_streak_ending(day_of(now), days, floor=day_of(from_ts)))

        if metric == "protein_avg_g":
            totals = self.daily_totals(user_id, "protein_g", from_ts)
            if not totals:
                return 0.0
            return sum(totals.values()) / len(totals)

        if metric == "calorie_adherence_pct":
            target = self._targets.get(user_id).calories
            if target is None:
                return None
            totals = self.daily_totals(user_id, "calories_kcal", from_ts)
            if not totals:
                return 0.0
            adherent = sum(
                1 for kcal in totals.values()
                if abs(kcal - target) <= target * ADHERENCE_TOLERANCE
            )
            return 100.0 * adherent / len(totals)

        logger.warning(f"Unknown metric requested: {metric}")
        return None

    def daily_totals(self, user_id: str, metric: str, from_ts: datetime) -> Dict[date, float]:
        if metric not in _DAILY_METRICS:
            raise ValueError(f"No daily totals for metric '{metric}'")
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT substr(logged_at, 1, 10) AS day, {_DAILY_METRICS[metric]} AS value
                FROM meals
                WHERE user_id = ? AND logged_at >= ? AND logged_at <= ?
                GROUP BY day
                """,
                (user_id, to_iso(from_ts), to_iso(self._now())),
            ).fetchall()
        return {date.fromisoformat(row["day"]): float(row["value"]) for row in rows}

    def _active_days(
        self,
        user_id: str,
        table: str,
        column: str,
        from_ts: datetime,
        now: datetime,
    ) -> Set[date]:
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT substr({column}, 1, 10) AS day FROM {table} "
                f"WHERE user_id = ? AND {column} >= ? AND {column} <= ?",
                (user_id, to_iso(from_ts), to_iso(now)),
            ).fetchall()
        return {date.fromisoformat(row["day"]) for row in rows}

    # -------------------------------------------------------------------------
    # Writers
    # -------------------------------------------------------------------------

    def add_meal(
        self,
        user_id: str,
        logged_at: datetime,
        calories: float = 0.0,
        protein_g: float = 0.0,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO meals (user_id, logged_at, calories, protein_g) VALUES (?, ?, ?, ?)",
                (user_id, to_iso(logged_at), calories, protein_g),
            )

    def add_weigh_in(self, user_id: str, logged_at: datetime, weight_kg: float) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO weigh_ins (user_id, logged_at, weight_kg) VALUES (?, ?, ?)",
                (user_id, to_iso(logged_at), weight_kg),
            )

    def add_habit_check(self, user_id: str, checked_at: datetime, habit: str = "") -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO habit_checks (user_id, habit, checked_at) VALUES (?, ?, ?)",
                (user_id, habit, to_iso(checked_at)),
            )

    def add_education_read(self, user_id: str, article_id: str, read_at: datetime) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO education_reads (user_id, article_id, read_at) VALUES (?, ?, ?)",
                (user_id, article_id, to_iso(read_at)),
            )


class TargetsRepository(SQLiteRepository, TargetsSource):
    """Targets Source over the nutrition_targets table."""

    schema = METRICS_SCHEMA

    def get(self, user_id: str) -> NutritionTargets:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT protein_g, calories_kcal FROM nutrition_targets WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return NutritionTargets()
        return NutritionTargets(protein=row["protein_g"], calories=row["calories_kcal"])

    def set_targets(
        self,
        user_id: str,
        protein: Optional[float] = None,
        calories: Optional[float] = None,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO nutrition_targets (user_id, protein_g, calories_kcal, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    protein_g = excluded.protein_g,
                    calories_kcal = excluded.calories_kcal,
                    updated_at = excluded.updated_at
                """,
                (user_id, protein, calories, to_iso(utc_now())),
            )


def _streak_ending(today: date, days: Set[date], floor: date) -> int:
    """Count consecutive active days ending today, never before ``floor``."""
    streak = 0
    cursor = today
    while cursor >= floor and cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
