"""Dependency injection for API routes."""

from functools import lru_cache
from typing import Optional

from fastapi import Header

from ..config import get_settings
from ..db.repositories import JourneyRepository, MetricsRepository, TargetsRepository
from ..exceptions import UnauthorizedError
from ..services.catalog import StageCatalog
from ..services.condition_evaluator import ConditionEvaluator
from ..services.journey_service import JourneyService
from ..services.ledger import PointsLedger
from ..services.progress import JourneyProgressAggregator
from ..services.stage_machine import StageStateMachine


@lru_cache
def get_stage_catalog() -> StageCatalog:
    """Load the stage catalog once per process."""
    settings = get_settings()
    return StageCatalog.load(
        settings.catalog_path,
        default_persona=settings.default_persona,
        min_stages=settings.min_stages,
        max_stages=settings.max_stages,
    )


@lru_cache
def get_journey_repository() -> JourneyRepository:
    """Get the journey repository instance."""
    return JourneyRepository(get_settings().db_path)


@lru_cache
def get_targets_repository() -> TargetsRepository:
    return TargetsRepository(get_settings().db_path)


@lru_cache
def get_metrics_repository() -> MetricsRepository:
    return MetricsRepository(get_settings().db_path, targets=get_targets_repository())


def build_journey_service(
    store,
    metrics,
    targets,
    catalog: StageCatalog,
    now=None,
    evaluation_workers: Optional[int] = None,
) -> JourneyService:
    """Wire a JourneyService from its collaborators."""
    settings = get_settings()
    clock_kwargs = {"now": now} if now is not None else {}

    evaluator = ConditionEvaluator(metrics, targets, **clock_kwargs)
    ledger = PointsLedger(store, **clock_kwargs)
    state_machine = StageStateMachine(
        metrics,
        in_progress_rule_ratio=settings.in_progress_rule_ratio,
        in_progress_xp_ratio=settings.in_progress_xp_ratio,
        **clock_kwargs,
    )
    aggregator = JourneyProgressAggregator(
        store,
        evaluator,
        state_machine,
        ledger,
        max_workers=evaluation_workers or settings.evaluation_workers,
    )
    return JourneyService(store, catalog, evaluator, aggregator, ledger, **clock_kwargs)


@lru_cache
def get_journey_service() -> JourneyService:
    """Get the journey service instance."""
    return build_journey_service(
        store=get_journey_repository(),
        metrics=get_metrics_repository(),
        targets=get_targets_repository(),
        catalog=get_stage_catalog(),
    )


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Identify the caller from the ``X-User-Id`` header.

    Authentication happens upstream; this only requires the header.

    Raises:
        UnauthorizedError: If the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Missing X-User-Id header")
    return x_user_id.strip()
