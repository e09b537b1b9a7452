"""
Performance write API endpoints.

This is how the club application reports swims to the engine:
1. A source event arrives (competition result, training session, or an
   internal meet lane time) and is ingested
2. Competition results can be edited or deleted later
3. Every write settles the personal best flag before responding

Stroke and pool values are accepted either as enum names ("FREESTYLE",
"SHORT_25M") or values ("freestyle", "short_25m"), since the forms in the
club application send names.

Handlers are plain functions: the store calls and per-key locks block, so
FastAPI runs them in its threadpool.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from ...core.performance.models import (
    CompetitionRecord,
    InternalMeetResult,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
    TrainingSession,
)
from ...core.performance.normalizer import parse_choice
from ..dependencies import QueryFacadeDep

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CompetitionRecordRequest(BaseModel):
    """A competition result, time in seconds."""
    athlete_id: str = Field(min_length=1, description="Swimmer identifier")
    stroke: str = Field(description="Stroke name or value")
    distance: int = Field(description="Distance in meters")
    time: float = Field(description="Swim time in seconds")
    pool_size: str = Field(description="SHORT_25M or LONG_50M")
    date: datetime = Field(description="When the race was swum")
    competition: Optional[str] = Field(None, description="Competition name")
    position: Optional[int] = Field(None, description="Final placement")
    medal: Optional[str] = Field(None, description="Medal won, if any")
    notes: Optional[str] = Field(None, max_length=2000)


class TrainingSessionRequest(BaseModel):
    """A timed training swim, time in seconds."""
    athlete_id: str = Field(min_length=1, description="Swimmer identifier")
    stroke: str = Field(description="Stroke name or value")
    distance: int = Field(description="Distance in meters")
    time: float = Field(description="Swim time in seconds")
    date: Optional[datetime] = Field(None, description="Defaults to now")
    pool_type: Optional[str] = Field(None, description="SHORT_25M or LONG_50M, if known")
    laps: Optional[list[float]] = Field(None, description="Lap split times in seconds")
    notes: Optional[str] = Field(None, max_length=2000)


class InternalMeetResultRequest(BaseModel):
    """A finalized heat-lane time from an internal meet, in milliseconds."""
    athlete_id: str = Field(min_length=1, description="Swimmer identifier")
    stroke: str = Field(description="Stroke name or value")
    distance: int = Field(description="Distance in meters")
    final_time_millis: int = Field(description="Lane timer reading in milliseconds")
    event_date: datetime = Field(description="When the meet took place")
    event_id: Optional[str] = None
    heat_id: Optional[str] = None
    lane_id: Optional[str] = None
    lane_number: Optional[int] = None


class PerformanceUpdateRequest(BaseModel):
    """In-place edit of a competition result. Only set fields change."""
    elapsed_seconds: Optional[float] = None
    stroke: Optional[str] = None
    distance_meters: Optional[int] = None
    pool_length: Optional[str] = None
    occurred_at: Optional[datetime] = None
    source_metadata: Optional[dict[str, Any]] = None


class PersonalBestKeyRequest(BaseModel):
    """Identifies one personal best scope."""
    athlete_id: str = Field(min_length=1)
    stroke: str = Field(description="Stroke name or value")
    distance_meters: int = Field(gt=0)
    pool_length: str = Field(description="SHORT_25M or LONG_50M")

    def to_key(self) -> PersonalBestKey:
        return PersonalBestKey(
            athlete_id=self.athlete_id.strip(),
            stroke=parse_choice(Stroke, self.stroke, field="stroke"),
            distance_meters=self.distance_meters,
            pool_length=parse_choice(PoolLength, self.pool_length, field="pool_length"),
        )


class PerformanceResponse(BaseModel):
    """A stored performance."""
    id: UUID
    athlete_id: str
    stroke: str
    distance_meters: int
    pool_length: Optional[str] = None
    elapsed_seconds: float
    occurred_at: datetime
    source: str
    is_personal_best: bool
    source_metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, performance: TimedPerformance) -> "PerformanceResponse":
        return cls(
            id=performance.id,
            athlete_id=performance.athlete_id,
            stroke=performance.stroke.value,
            distance_meters=performance.distance_meters,
            pool_length=performance.pool_length.value if performance.pool_length else None,
            elapsed_seconds=performance.elapsed_seconds,
            occurred_at=performance.occurred_at,
            source=performance.source.value,
            is_personal_best=performance.is_personal_best,
            source_metadata=performance.source_metadata,
        )


class RecomputeResponse(BaseModel):
    """Result of recomputing one scope."""
    personal_best: Optional[PerformanceResponse] = Field(
        None, description="The flagged performance, or null for an empty scope"
    )


class RepairResponse(BaseModel):
    """Result of a full repair pass."""
    keys_examined: int
    keys_changed: int
    keys_failed: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/competition",
    response_model=PerformanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a competition result",
)
def create_competition_result(
    request: CompetitionRecordRequest,
    facade: QueryFacadeDep = None,
) -> PerformanceResponse:
    performance = facade.ingest(CompetitionRecord(**request.model_dump()))
    return PerformanceResponse.from_domain(performance)


@router.post(
    "/training",
    response_model=PerformanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a training swim",
)
def create_training_session(
    request: TrainingSessionRequest,
    facade: QueryFacadeDep = None,
) -> PerformanceResponse:
    performance = facade.ingest(TrainingSession(**request.model_dump()))
    return PerformanceResponse.from_domain(performance)


@router.post(
    "/internal-meet",
    response_model=PerformanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a finalized internal meet lane time",
)
def create_internal_meet_result(
    request: InternalMeetResultRequest,
    facade: QueryFacadeDep = None,
) -> PerformanceResponse:
    performance = facade.ingest(InternalMeetResult(**request.model_dump()))
    return PerformanceResponse.from_domain(performance)


@router.post(
    "/recompute",
    response_model=RecomputeResponse,
    status_code=status.HTTP_200_OK,
    summary="Recompute one personal best scope",
    description="Idempotent. Safe to call any time to repair a scope.",
)
def recompute_personal_best(
    request: PersonalBestKeyRequest,
    facade: QueryFacadeDep = None,
) -> RecomputeResponse:
    winner = facade.recompute(request.to_key())
    return RecomputeResponse(
        personal_best=PerformanceResponse.from_domain(winner) if winner else None
    )


@router.post(
    "/repair",
    response_model=RepairResponse,
    status_code=status.HTTP_200_OK,
    summary="Recompute every personal best scope",
)
def repair_personal_bests(
    facade: QueryFacadeDep = None,
) -> RepairResponse:
    logger.info("Full personal best repair requested")
    report = facade.repair_personal_bests()
    return RepairResponse(
        keys_examined=report.keys_examined,
        keys_changed=report.keys_changed,
        keys_failed=len(report.failed_keys),
    )


@router.get(
    "/{performance_id}",
    response_model=PerformanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get one performance",
)
def get_performance(
    performance_id: UUID,
    facade: QueryFacadeDep = None,
) -> PerformanceResponse:
    return PerformanceResponse.from_domain(facade.get_performance(performance_id))


@router.patch(
    "/{performance_id}",
    response_model=PerformanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit a competition result",
)
def update_performance(
    performance_id: UUID,
    request: PerformanceUpdateRequest,
    facade: QueryFacadeDep = None,
) -> PerformanceResponse:
    changes = request.model_dump(exclude_unset=True)
    performance = facade.update_performance(performance_id, changes)
    return PerformanceResponse.from_domain(performance)


@router.delete(
    "/{performance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a performance",
    description="The next fastest swim in the same scope inherits the personal best.",
)
def delete_performance(
    performance_id: UUID,
    facade: QueryFacadeDep = None,
) -> Response:
    facade.delete_performance(performance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
