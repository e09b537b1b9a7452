"""
Swim performance tracking logic.

Contains source normalization, personal best maintenance, and the
per-stroke statistics the product displays.
"""

from .errors import (
    ConcurrencyConflict,
    NotFoundError,
    PerformanceEngineError,
    PerformanceStoreError,
    RecomputeError,
    ValidationError,
)
from .facade import QueryFacade
from .models import (
    CompetitionRecord,
    InternalMeetResult,
    PerformanceDeleted,
    PerformanceSource,
    PerformanceWritten,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
    TrainingSession,
)
from .normalizer import Normalizer
from .personal_best import KeyLockRegistry, PersonalBestMaintainer, RepairReport
from .statistics import (
    BestTimesView,
    ConsistencyBand,
    StatisticsAggregator,
    StatisticsFilter,
    StrokeStatistics,
)
from .store import PerformanceStore

__all__ = [
    "CompetitionRecord",
    "InternalMeetResult",
    "PerformanceDeleted",
    "PerformanceSource",
    "PerformanceWritten",
    "PersonalBestKey",
    "PoolLength",
    "Stroke",
    "TimedPerformance",
    "TrainingSession",
    "ConcurrencyConflict",
    "NotFoundError",
    "PerformanceEngineError",
    "PerformanceStoreError",
    "RecomputeError",
    "ValidationError",
    "Normalizer",
    "KeyLockRegistry",
    "PersonalBestMaintainer",
    "RepairReport",
    "BestTimesView",
    "ConsistencyBand",
    "StatisticsAggregator",
    "StatisticsFilter",
    "StrokeStatistics",
    "PerformanceStore",
    "QueryFacade",
]
