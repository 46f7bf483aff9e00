"""Journey services: catalog, evaluation, state machine, ledger and aggregation."""

from .catalog import StageCatalog
from .condition_evaluator import ConditionEvaluator
from .journey_service import JourneyService
from .ledger import PointsLedger
from .progress import JourneyProgressAggregator, apply_task_update
from .stage_machine import StageStateMachine

__all__ = [
    "StageCatalog",
    "ConditionEvaluator",
    "JourneyService",
    "PointsLedger",
    "JourneyProgressAggregator",
    "apply_task_update",
    "StageStateMachine",
]
