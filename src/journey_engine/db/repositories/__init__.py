"""Repository pattern implementations for journey persistence.

The services depend only on the abstract classes in ``base``; the SQLite
adapters here are the shipped implementations.
"""

from .base import JourneyStore, MetricsSource, SQLiteRepository, TargetsSource
from .journey_repository import JourneyRepository
from .metrics_repository import MetricsRepository, TargetsRepository

__all__ = [
    "JourneyStore",
    "MetricsSource",
    "TargetsSource",
    "SQLiteRepository",
    "JourneyRepository",
    "MetricsRepository",
    "TargetsRepository",
]
