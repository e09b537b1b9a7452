"""
Per-stroke performance statistics.

Everything here is computed on read from whatever the store holds right
now. There is no persisted output and no cache, so a statistic can never
be staler than the rows behind it.

Two notions of "best" live in this codebase and they are not the same:
- is_personal_best on a row: the invariant-bearing flag, scoped by pool
  length, competition and training only (see personal_best.py)
- StrokeStatistics.best: the fastest time across every source in scope,
  internal meets included, tagged with where it came from

The UI shows the second one. Don't derive one from the other.
"""

import logging
import statistics as stats
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence
from uuid import UUID

from .models import (
    PerformanceSource,
    PoolLength,
    Stroke,
    TimedPerformance,
)
from .store import PerformanceStore

logger = logging.getLogger(__name__)

DEFAULT_ROLLING_WINDOW = 5


class ConsistencyBand(Enum):
    """How tightly grouped the recent times are."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    INCONSISTENT = "inconsistent"


# Upper bounds (exclusive) on the standard deviation, in seconds.
CONSISTENCY_THRESHOLDS: tuple[tuple[float, ConsistencyBand], ...] = (
    (0.5, ConsistencyBand.EXCELLENT),
    (1.0, ConsistencyBand.GOOD),
    (2.0, ConsistencyBand.FAIR),
)


@dataclass(frozen=True)
class StatisticsFilter:
    """
    What to aggregate over.

    source=None means every source. pool_length narrows rows that have a
    known pool length; rows without one (internal meets, trainings that
    never recorded a pool) are kept, since they belong to every view.
    """
    athlete_ids: tuple[str, ...]
    distance_meters: Optional[int] = None
    pool_length: Optional[PoolLength] = None
    source: Optional[PerformanceSource] = None

    def __post_init__(self) -> None:
        ids = tuple(str(a) for a in self.athlete_ids if a is not None and str(a).strip())
        if not ids:
            raise ValueError("At least one athlete id is required")
        object.__setattr__(self, "athlete_ids", ids)
        if self.distance_meters is not None and self.distance_meters <= 0:
            raise ValueError("Distance filter must be positive")

    @property
    def sources(self) -> Optional[tuple[PerformanceSource, ...]]:
        return (self.source,) if self.source else None

    def admits(self, performance: TimedPerformance) -> bool:
        if self.pool_length is None or performance.pool_length is None:
            return True
        return performance.pool_length == self.pool_length


@dataclass(frozen=True)
class BestTimeEntry:
    """The displayed best time, with provenance."""
    elapsed_seconds: float
    source: PerformanceSource
    occurred_at: datetime
    performance_id: UUID
    competition_name: Optional[str] = None


@dataclass(frozen=True)
class HistoryPoint:
    """One swim on the progression chart."""
    elapsed_seconds: float
    occurred_at: datetime
    source: PerformanceSource


@dataclass
class StrokeStatistics:
    """
    Derived metrics for one stroke.

    Every statistic that can't be computed from the available rows is
    None. Callers get partial results, never an exception.
    """
    stroke: Stroke
    performance_count: int = 0
    best: Optional[BestTimeEntry] = None
    last_time: Optional[float] = None
    last_date: Optional[datetime] = None
    season_best: Optional[float] = None
    season_best_date: Optional[datetime] = None
    delta_vs_best: Optional[float] = None
    delta_vs_season_best: Optional[float] = None
    rolling_average: Optional[float] = None
    consistency_score: Optional[float] = None
    consistency_band: Optional[ConsistencyBand] = None
    year_improvement: Optional[float] = None
    year_improvement_percent: Optional[float] = None
    monthly_improvement: Optional[float] = None
    history: list[HistoryPoint] = field(default_factory=list)

    @property
    def best_time(self) -> Optional[float]:
        return self.best.elapsed_seconds if self.best else None

    @property
    def has_data(self) -> bool:
        return self.performance_count > 0


@dataclass
class BestTimesView:
    """The aggregated view handed to the UI: one entry per stroke."""
    filters: StatisticsFilter
    strokes: dict[Stroke, StrokeStatistics]
    generated_at: datetime

    def for_stroke(self, stroke: Stroke) -> StrokeStatistics:
        return self.strokes[stroke]

    @property
    def is_empty(self) -> bool:
        return not any(s.has_data for s in self.strokes.values())


@dataclass
class AthleteSummary:
    """Headline counts for one athlete."""
    athlete_id: str
    total_performances: int = 0
    by_source: dict[PerformanceSource, int] = field(default_factory=dict)
    personal_best_count: int = 0


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def classify_consistency(score: Optional[float]) -> Optional[ConsistencyBand]:
    """Map a standard deviation to its band."""
    if score is None:
        return None
    for upper_bound, band in CONSISTENCY_THRESHOLDS:
        if score < upper_bound:
            return band
    return ConsistencyBand.INCONSISTENT


def months_between(first: datetime, last: datetime) -> int:
    """Whole calendar months from first to last (day of month ignored)."""
    return (last.year - first.year) * 12 + (last.month - first.month)


def chronological(rows: Iterable[TimedPerformance]) -> list[TimedPerformance]:
    """Oldest first, with the id as a stable tie-breaker."""
    return sorted(rows, key=lambda row: (row.occurred_at, str(row.id)))


def compute_stroke_statistics(
    stroke: Stroke,
    rows: Sequence[TimedPerformance],
    now: datetime,
    window_size: int = DEFAULT_ROLLING_WINDOW,
) -> StrokeStatistics:
    """
    Compute every metric for one stroke from its rows.

    rows must already be filtered to this stroke and the caller's scope.
    """
    result = StrokeStatistics(stroke=stroke, performance_count=len(rows))
    if not rows:
        return result

    ordered = chronological(rows)
    result.history = [
        HistoryPoint(
            elapsed_seconds=row.elapsed_seconds,
            occurred_at=row.occurred_at,
            source=row.source,
        )
        for row in ordered
    ]

    # Best across all sources in scope; earliest swim wins a tie
    fastest = min(ordered, key=lambda row: row.elapsed_seconds)
    result.best = BestTimeEntry(
        elapsed_seconds=fastest.elapsed_seconds,
        source=fastest.source,
        occurred_at=fastest.occurred_at,
        performance_id=fastest.id,
        competition_name=fastest.competition_name,
    )

    latest = ordered[-1]
    result.last_time = latest.elapsed_seconds
    result.last_date = latest.occurred_at
    result.delta_vs_best = latest.elapsed_seconds - fastest.elapsed_seconds

    this_year = [row for row in ordered if row.occurred_at.year == now.year]
    if this_year:
        season_fastest = min(this_year, key=lambda row: row.elapsed_seconds)
        result.season_best = season_fastest.elapsed_seconds
        result.season_best_date = season_fastest.occurred_at
        result.delta_vs_season_best = latest.elapsed_seconds - season_fastest.elapsed_seconds

    window = [row.elapsed_seconds for row in ordered[-window_size:]]
    result.rolling_average = stats.fmean(window)
    if len(window) >= 2:
        result.consistency_score = stats.pstdev(window)
        result.consistency_band = classify_consistency(result.consistency_score)

    if len(this_year) >= 2:
        first, last = this_year[0], this_year[-1]
        improvement = first.elapsed_seconds - last.elapsed_seconds
        result.year_improvement = improvement
        if first.elapsed_seconds > 0:
            result.year_improvement_percent = improvement / first.elapsed_seconds * 100
        span = months_between(first.occurred_at, last.occurred_at)
        if span > 0:
            result.monthly_improvement = improvement / span

    return result


# ---------------------------------------------------------------------------
# Aggregator Service
# ---------------------------------------------------------------------------

class StatisticsAggregator:
    """
    Computes per-stroke statistics by scanning the store.

    Read-only and lock-free. A read racing a personal best recompute may
    see a transient state; that doesn't affect anything here, since the
    displayed best is derived from times, not flags.
    """

    def __init__(
        self,
        store: PerformanceStore,
        window_size: int = DEFAULT_ROLLING_WINDOW,
    ) -> None:
        if window_size < 1:
            raise ValueError("Rolling window must hold at least one performance")
        self._store = store
        self._window_size = window_size

    def aggregate(
        self,
        filters: StatisticsFilter,
        now: Optional[datetime] = None,
    ) -> BestTimesView:
        """Build the per-stroke view for the filter. Never raises on missing data."""
        now = now or datetime.now(timezone.utc)

        rows = [
            row for row in self._store.find_matching(
                athlete_ids=filters.athlete_ids,
                distance_meters=filters.distance_meters,
                sources=filters.sources,
            )
            if filters.admits(row)
        ]

        by_stroke: dict[Stroke, list[TimedPerformance]] = {stroke: [] for stroke in Stroke}
        for row in rows:
            by_stroke[row.stroke].append(row)

        view = BestTimesView(
            filters=filters,
            strokes={
                stroke: compute_stroke_statistics(stroke, stroke_rows, now, self._window_size)
                for stroke, stroke_rows in by_stroke.items()
            },
            generated_at=now,
        )

        logger.debug(
            "Aggregated best times",
            extra={
                "athlete_ids": list(filters.athlete_ids),
                "source": filters.source.value if filters.source else "all",
                "row_count": len(rows),
            }
        )

        return view

    def training_history(
        self,
        athlete_id: str,
        year: int,
        month: int,
        stroke: Optional[Stroke] = None,
    ) -> list[TimedPerformance]:
        """
        One month of training, with internal meet swims mixed in.

        Internal meets are timed practice as far as a swimmer's training
        log is concerned, so they show up alongside regular sessions.
        """
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")

        rows = self._store.find_matching(
            athlete_ids=[athlete_id],
            stroke=stroke,
            sources=(PerformanceSource.TRAINING, PerformanceSource.INTERNAL_MEET),
        )

        return chronological(
            row for row in rows
            if row.occurred_at.year == year and row.occurred_at.month == month
        )

    def athlete_summary(self, athlete_ids: Iterable[str]) -> dict[str, AthleteSummary]:
        """Counts of swims per source and of current personal bests."""
        ids = list(dict.fromkeys(athlete_ids))
        summaries = {athlete_id: AthleteSummary(athlete_id=athlete_id) for athlete_id in ids}
        if not ids:
            return summaries

        for row in self._store.find_matching(athlete_ids=ids):
            summary = summaries[row.athlete_id]
            summary.total_performances += 1
            summary.by_source[row.source] = summary.by_source.get(row.source, 0) + 1
            if row.is_personal_best:
                summary.personal_best_count += 1

        return summaries
