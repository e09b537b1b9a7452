"""
Performance statistics API endpoints.

Read-only views over the store:
- best-times: per-stroke best, last, season best, deltas, rolling
  average, consistency and improvement for one or more swimmers
- training-history: a month of training swims, internal meets included
- summary: headline counts per swimmer

Nothing here writes, and nothing here takes a lock.
"""

import logging
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from ...core.performance.models import PerformanceSource, PoolLength, Stroke
from ...core.performance.normalizer import parse_choice
from ...core.performance.statistics import StrokeStatistics
from ..dependencies import QueryFacadeDep
from .performances import PerformanceResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class BestTimeItem(BaseModel):
    """The displayed best time and where it came from."""
    time: float
    source: str
    date: datetime
    performance_id: str
    competition_name: Optional[str] = None


class HistoryItem(BaseModel):
    """One swim on the progression chart."""
    time: float
    date: datetime
    source: str


class StrokeStatisticsResponse(BaseModel):
    """All metrics for one stroke; null where there isn't enough data."""
    stroke: str
    performance_count: int
    best: Optional[BestTimeItem] = None
    last_time: Optional[float] = None
    last_date: Optional[datetime] = None
    season_best: Optional[float] = None
    season_best_date: Optional[datetime] = None
    delta_vs_best: Optional[float] = None
    delta_vs_season_best: Optional[float] = None
    rolling_average: Optional[float] = None
    consistency_score: Optional[float] = None
    consistency_band: Optional[str] = None
    year_improvement: Optional[float] = None
    year_improvement_percent: Optional[float] = None
    monthly_improvement: Optional[float] = None
    history: list[HistoryItem] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, stats: StrokeStatistics) -> "StrokeStatisticsResponse":
        best = None
        if stats.best:
            best = BestTimeItem(
                time=stats.best.elapsed_seconds,
                source=stats.best.source.value,
                date=stats.best.occurred_at,
                performance_id=str(stats.best.performance_id),
                competition_name=stats.best.competition_name,
            )

        return cls(
            stroke=stats.stroke.value,
            performance_count=stats.performance_count,
            best=best,
            last_time=stats.last_time,
            last_date=stats.last_date,
            season_best=stats.season_best,
            season_best_date=stats.season_best_date,
            delta_vs_best=stats.delta_vs_best,
            delta_vs_season_best=stats.delta_vs_season_best,
            rolling_average=stats.rolling_average,
            consistency_score=stats.consistency_score,
            consistency_band=stats.consistency_band.value if stats.consistency_band else None,
            year_improvement=stats.year_improvement,
            year_improvement_percent=stats.year_improvement_percent,
            monthly_improvement=stats.monthly_improvement,
            history=[
                HistoryItem(time=p.elapsed_seconds, date=p.occurred_at, source=p.source.value)
                for p in stats.history
            ],
        )


class BestTimesResponse(BaseModel):
    """Per-stroke statistics for the requested swimmers and filters."""
    athlete_ids: list[str]
    distance_meters: Optional[int] = None
    pool_length: Optional[str] = None
    source: Optional[str] = Field(None, description="null means all sources")
    generated_at: datetime
    strokes: dict[str, StrokeStatisticsResponse]


class TrainingHistoryResponse(BaseModel):
    """One month of training swims."""
    athlete_id: str
    year: int
    month: int
    performances: list[PerformanceResponse]


class AthleteSummaryResponse(BaseModel):
    """Headline counts for one swimmer."""
    athlete_id: str
    total_performances: int
    competitions: int
    trainings: int
    internal_meets: int
    personal_bests: int


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------

def _optional_choice(enum_cls, value: Optional[str], field: str):
    if value is None or not value.strip():
        return None
    return parse_choice(enum_cls, value, field=field)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/best-times",
    response_model=BestTimesResponse,
    status_code=status.HTTP_200_OK,
    summary="Per-stroke best times and derived statistics",
    description="Omit source to merge competitions, trainings and internal meets.",
)
def get_best_times(
    athlete_id: Annotated[list[str], Query(min_length=1, description="One or more swimmer ids")],
    distance: Annotated[Optional[int], Query(gt=0)] = None,
    pool_length: Annotated[Optional[str], Query(description="SHORT_25M or LONG_50M")] = None,
    source: Annotated[Optional[str], Query(description="Source name or value")] = None,
    facade: QueryFacadeDep = None,
) -> BestTimesResponse:
    pool = _optional_choice(PoolLength, pool_length, "pool_length")
    source_filter = _optional_choice(PerformanceSource, source, "source")

    logger.info(
        "Computing best times",
        extra={
            "athlete_ids": athlete_id,
            "distance": distance,
            "source": source_filter.value if source_filter else "all",
        }
    )

    view = facade.get_best_times(
        athlete_ids=athlete_id,
        distance_meters=distance,
        pool_length=pool,
        source=source_filter,
    )

    return BestTimesResponse(
        athlete_ids=list(view.filters.athlete_ids),
        distance_meters=view.filters.distance_meters,
        pool_length=pool.value if pool else None,
        source=source_filter.value if source_filter else None,
        generated_at=view.generated_at,
        strokes={
            stroke.value: StrokeStatisticsResponse.from_domain(stats)
            for stroke, stats in view.strokes.items()
        },
    )


@router.get(
    "/training-history",
    response_model=TrainingHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="One month of training swims",
)
def get_training_history(
    athlete_id: str,
    year: Annotated[int, Query(ge=1900, le=9999)],
    month: Annotated[int, Query(ge=1, le=12)],
    stroke: Annotated[Optional[str], Query(description="Stroke name or value")] = None,
    facade: QueryFacadeDep = None,
) -> TrainingHistoryResponse:
    stroke_filter = _optional_choice(Stroke, stroke, "stroke")
    performances = facade.training_history(athlete_id, year, month, stroke_filter)
    return TrainingHistoryResponse(
        athlete_id=athlete_id,
        year=year,
        month=month,
        performances=[PerformanceResponse.from_domain(p) for p in performances],
    )


@router.get(
    "/summary",
    response_model=list[AthleteSummaryResponse],
    status_code=status.HTTP_200_OK,
    summary="Headline counts per swimmer",
)
def get_summary(
    athlete_id: Annotated[list[str], Query(min_length=1)],
    facade: QueryFacadeDep = None,
) -> list[AthleteSummaryResponse]:
    summaries = facade.athlete_summary(athlete_id)
    return [
        AthleteSummaryResponse(
            athlete_id=summary.athlete_id,
            total_performances=summary.total_performances,
            competitions=summary.by_source.get(PerformanceSource.COMPETITION, 0),
            trainings=summary.by_source.get(PerformanceSource.TRAINING, 0),
            internal_meets=summary.by_source.get(PerformanceSource.INTERNAL_MEET, 0),
            personal_bests=summary.personal_best_count,
        )
        for summary in summaries.values()
    ]
