"""
Domain models for swim performance tracking.

These models represent the core business concepts: a timed swim, the key
that scopes a personal best, and the raw events each source hands us.
They have no dependencies on external frameworks, databases, or APIs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID, uuid4


class Stroke(Enum):
    """Competitive strokes plus the relay medley."""
    FREESTYLE = "freestyle"
    BACKSTROKE = "backstroke"
    BREASTSTROKE = "breaststroke"
    BUTTERFLY = "butterfly"
    INDIVIDUAL_MEDLEY = "individual_medley"
    MEDLEY_RELAY = "medley_relay"


class PoolLength(Enum):
    """
    Short course vs long course.

    Times are not comparable across these, so pool length is part of
    every personal best key.
    """
    SHORT_25M = "short_25m"
    LONG_50M = "long_50m"


class PerformanceSource(Enum):
    """Where a timed swim came from."""
    COMPETITION = "competition"
    TRAINING = "training"
    INTERNAL_MEET = "internal_meet"


# Only these sources carry a reliable pool length, so only these
# participate in the personal best flag.
PERSONAL_BEST_SOURCES: frozenset[PerformanceSource] = frozenset({
    PerformanceSource.COMPETITION,
    PerformanceSource.TRAINING,
})

# Only competition results may be edited after the fact.
EDITABLE_SOURCES: frozenset[PerformanceSource] = frozenset({
    PerformanceSource.COMPETITION,
})


@dataclass(frozen=True)
class PersonalBestKey:
    """
    The scope of the personal best invariant.

    Not a stored entity. Frozen and hashable because it is used as a
    lock key and a grouping key.
    """
    athlete_id: str
    stroke: Stroke
    distance_meters: int
    pool_length: Optional[PoolLength]

    @property
    def has_scope(self) -> bool:
        """A key without a pool length has nothing to compare against."""
        return self.pool_length is not None

    def describe(self) -> dict[str, Any]:
        """Flat representation for log records."""
        return {
            "athlete_id": self.athlete_id,
            "stroke": self.stroke.value,
            "distance_meters": self.distance_meters,
            "pool_length": self.pool_length.value if self.pool_length else None,
        }


@dataclass
class TimedPerformance:
    """
    The canonical unit: one timed swim by one athlete.

    Created by the Normalizer from exactly one source event. The
    is_personal_best flag is never set here; it is owned by the
    PersonalBestMaintainer.
    """
    athlete_id: str
    stroke: Stroke
    distance_meters: int
    elapsed_seconds: float
    occurred_at: datetime
    source: PerformanceSource
    pool_length: Optional[PoolLength] = None
    id: UUID = field(default_factory=uuid4)
    is_personal_best: bool = False
    source_metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.distance_meters <= 0:
            raise ValueError("Distance must be positive")
        if self.elapsed_seconds < 0:
            raise ValueError("Elapsed time cannot be negative")
        # Naive datetimes are taken as UTC so every row sorts together.
        if self.occurred_at.tzinfo is None:
            self.occurred_at = self.occurred_at.replace(tzinfo=timezone.utc)
        else:
            self.occurred_at = self.occurred_at.astimezone(timezone.utc)

    @property
    def key(self) -> PersonalBestKey:
        return PersonalBestKey(
            athlete_id=self.athlete_id,
            stroke=self.stroke,
            distance_meters=self.distance_meters,
            pool_length=self.pool_length,
        )

    @property
    def counts_for_personal_best(self) -> bool:
        """Whether this row belongs to a personal best scope at all."""
        return self.source in PERSONAL_BEST_SOURCES and self.pool_length is not None

    @property
    def competition_name(self) -> Optional[str]:
        if self.source is not PerformanceSource.COMPETITION:
            return None
        return self.source_metadata.get("competition_name")


# ---------------------------------------------------------------------------
# Source events
# ---------------------------------------------------------------------------
#
# Each source hands us a different shape with different field names and
# units. Raw fields are typed loosely on purpose: they come straight from
# form posts and the Normalizer is where they get validated.

@dataclass
class CompetitionRecord:
    """A competition result entered by club staff or a parent."""
    athlete_id: Any
    stroke: Any
    distance: Any
    time: Any  # seconds
    pool_size: Any
    date: Any
    competition: Optional[str] = None
    position: Optional[int] = None
    medal: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class TrainingSession:
    """A timed swim logged during training."""
    athlete_id: Any
    stroke: Any
    distance: Any
    time: Any  # seconds
    date: Any = None
    pool_type: Any = None
    laps: Optional[list[float]] = None  # lap split times, seconds
    notes: Optional[str] = None


@dataclass
class InternalMeetResult:
    """
    A heat-lane time finalized at a club-internal meet.

    The meet timer stores milliseconds. The pool is whatever the club
    happened to book, so no pool length is recorded.
    """
    athlete_id: Any
    stroke: Any
    distance: Any
    final_time_millis: Any
    event_date: Any
    event_id: Optional[str] = None
    heat_id: Optional[str] = None
    lane_id: Optional[str] = None
    lane_number: Optional[int] = None


SourceEvent = Union[CompetitionRecord, TrainingSession, InternalMeetResult]


# ---------------------------------------------------------------------------
# Mutation events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PerformanceWritten:
    """
    A performance was inserted or updated in the store.

    previous is the row as it was before an update, None for inserts.
    """
    current: TimedPerformance
    previous: Optional[TimedPerformance] = None


@dataclass(frozen=True)
class PerformanceDeleted:
    """A performance was removed from the store."""
    performance: TimedPerformance
