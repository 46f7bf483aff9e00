"""Shared fixtures: fixed clock, in-memory metric fakes and temp databases."""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional, Set

import pytest

from journey_engine.api.deps import build_journey_service
from journey_engine.config import PACKAGE_DIR
from journey_engine.db.repositories import JourneyRepository
from journey_engine.db.repositories.base import MetricsSource, TargetsSource
from journey_engine.models.journey import (
    MetricRule,
    NutritionTargets,
    Requirements,
    StageTemplate,
    TaskTemplate,
)
from journey_engine.services.catalog import StageCatalog
from journey_engine.utils.timeutil import day_of


# Wednesday afternoon, UTC
FIXED_NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)

USER_ID = "3f2a9c1e-7b4d-4e8a-9f10-2c3d4e5f6a7b"
OTHER_USER_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMetricsSource(MetricsSource):
    """Metrics held in dicts; ``from_ts`` only filters daily totals."""

    def __init__(self):
        self.values: Dict[str, float] = {}
        self.daily: Dict[str, Dict[date, float]] = {}
        self.failing: Set[str] = set()
        self.calls = []

    def get(self, user_id: str, metric: str, from_ts: datetime) -> Optional[float]:
        self.calls.append((user_id, metric, from_ts))
        if metric in self.failing:
            raise RuntimeError(f"metrics backend down for {metric}")
        return self.values.get(metric)

    def daily_totals(self, user_id: str, metric: str, from_ts: datetime) -> Dict[date, float]:
        self.calls.append((user_id, metric, from_ts))
        if metric in self.failing:
            raise RuntimeError(f"metrics backend down for {metric}")
        floor = day_of(from_ts)
        return {d: v for d, v in self.daily.get(metric, {}).items() if d >= floor}


class FakeTargetsSource(TargetsSource):
    def __init__(self, protein: Optional[float] = None, calories: Optional[float] = None):
        self.targets = NutritionTargets(protein=protein, calories=calories)

    def get(self, user_id: str) -> NutritionTargets:
        return self.targets


def make_task(key: str, xp: int = 10, check: Optional[dict] = None) -> TaskTemplate:
    return TaskTemplate(
        key=key,
        type="meal_log",
        title=key.replace("_", " ").title(),
        desc="",
        xp=xp,
        check=check or {"type": "TOTAL_MEALS_LOGGED", "target": 5},
    )


def make_stage(
    code: str,
    order_index: int,
    tasks=None,
    rules=None,
    logic: str = "AND",
) -> StageTemplate:
    return StageTemplate(
        code=code,
        order_index=order_index,
        title=code.replace("-", " ").title(),
        type="habit",
        requirements=Requirements(
            logic=logic,
            rules=[MetricRule(**r) for r in (rules or [])],
        ),
        tasks=tasks or [make_task(f"{code}_task")],
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def metrics() -> FakeMetricsSource:
    return FakeMetricsSource()


@pytest.fixture
def targets() -> FakeTargetsSource:
    return FakeTargetsSource()


@pytest.fixture
def catalog() -> StageCatalog:
    """The packaged catalog."""
    return StageCatalog.load(PACKAGE_DIR / "catalog" / "stage_templates.json")


@pytest.fixture
def journey_repo(tmp_path) -> JourneyRepository:
    return JourneyRepository(tmp_path / "journey.db")


@pytest.fixture
def service(journey_repo, metrics, targets, catalog, clock):
    """JourneyService over a temp database and in-memory metric fakes."""
    return build_journey_service(
        store=journey_repo,
        metrics=metrics,
        targets=targets,
        catalog=catalog,
        now=clock,
        evaluation_workers=2,
    )
