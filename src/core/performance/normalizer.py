"""
Source event normalization.

Three sources report swims in three shapes:
- Competition records: time in seconds, pool size given
- Training sessions: time in seconds, optional pool type, lap splits
- Internal meet heat lanes: time in MILLISECONDS, no pool length

The Normalizer turns each of them into one TimedPerformance. It is a pure
mapping with no side effects; persisting and flagging personal bests
happen elsewhere.

Getting the internal meet units right matters more than anything else
in this module. A lane time left in milliseconds is a thousand times
slower than every other swim and silently wins nothing, ever.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .errors import ValidationError
from .models import (
    CompetitionRecord,
    InternalMeetResult,
    PerformanceSource,
    PoolLength,
    SourceEvent,
    Stroke,
    TimedPerformance,
    TrainingSession,
)

logger = logging.getLogger(__name__)

MILLIS_PER_SECOND = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Normalizer:
    """
    Maps source events to canonical performances.

    Form posts arrive with numbers as strings and enums as names in
    whatever case the UI used, so the parsing helpers coerce those.
    Anything missing or unparseable raises ValidationError.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def normalize(self, event: SourceEvent) -> TimedPerformance:
        """Dispatch on the event's shape."""
        if isinstance(event, CompetitionRecord):
            return self.from_competition(event)
        if isinstance(event, TrainingSession):
            return self.from_training(event)
        if isinstance(event, InternalMeetResult):
            return self.from_internal_meet(event)

        raise ValidationError(
            f"Unsupported source event type: {type(event).__name__}",
            field="event",
        )

    def from_competition(self, record: CompetitionRecord) -> TimedPerformance:
        """Competition times are already seconds; pool size is required."""
        pool_length = _parse_pool_length(record.pool_size, field="pool_size")
        if pool_length is None:
            raise ValidationError("Competition record requires a pool size", field="pool_size")

        metadata: dict[str, Any] = {
            "competition_name": (record.competition or "").strip() or None,
            "placement": _parse_optional_int(record.position, field="position"),
            "medal": record.medal or None,
            "notes": record.notes or None,
        }

        return self._build(
            source=PerformanceSource.COMPETITION,
            athlete_id=record.athlete_id,
            stroke=record.stroke,
            distance=record.distance,
            elapsed_seconds=_parse_time(record.time, field="time"),
            occurred_at=_parse_datetime(record.date, field="date"),
            pool_length=pool_length,
            metadata=metadata,
        )

    def from_training(self, session: TrainingSession) -> TimedPerformance:
        """Training times are seconds; lap splits ride along in metadata."""
        splits = [
            _parse_time(split, field="laps", allow_zero=True)
            for split in (session.laps or [])
        ]
        metadata: dict[str, Any] = {
            "lap_splits": splits,
            "lap_count": len(splits),
            "notes": session.notes or None,
        }

        if session.date is None:
            occurred_at = self._clock()
        else:
            occurred_at = _parse_datetime(session.date, field="date")

        return self._build(
            source=PerformanceSource.TRAINING,
            athlete_id=session.athlete_id,
            stroke=session.stroke,
            distance=session.distance,
            elapsed_seconds=_parse_time(session.time, field="time"),
            occurred_at=occurred_at,
            pool_length=_parse_pool_length(session.pool_type, field="pool_type"),
            metadata=metadata,
        )

    def from_internal_meet(self, result: InternalMeetResult) -> TimedPerformance:
        """Lane timers store milliseconds; convert once, here."""
        millis = _parse_time(result.final_time_millis, field="final_time_millis")
        metadata: dict[str, Any] = {
            "event_id": result.event_id,
            "heat_id": result.heat_id,
            "lane_id": result.lane_id,
            "lane_number": result.lane_number,
        }

        return self._build(
            source=PerformanceSource.INTERNAL_MEET,
            athlete_id=result.athlete_id,
            stroke=result.stroke,
            distance=result.distance,
            elapsed_seconds=millis / MILLIS_PER_SECOND,
            occurred_at=_parse_datetime(result.event_date, field="event_date"),
            pool_length=None,
            metadata=metadata,
        )

    def coerce_edit(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """
        Parse the fields of an in-place edit the way ingestion would.

        Edits target competition rows, so a pool length can be changed
        but not removed.
        """
        parsed: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "elapsed_seconds":
                parsed[name] = _parse_time(value, field=name)
            elif name == "stroke":
                parsed[name] = _parse_stroke(value)
            elif name == "distance_meters":
                parsed[name] = _parse_distance(value)
            elif name == "pool_length":
                pool_length = _parse_pool_length(value, field=name)
                if pool_length is None:
                    raise ValidationError("Pool length cannot be removed", field=name)
                parsed[name] = pool_length
            elif name == "occurred_at":
                parsed[name] = _parse_datetime(value, field=name)
            elif name == "source_metadata":
                if not isinstance(value, Mapping):
                    raise ValidationError("source_metadata must be a mapping", field=name)
                parsed[name] = dict(value)
            else:
                raise ValidationError(f"Field cannot be edited: {name}", field=name)
        return parsed

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _build(
        self,
        source: PerformanceSource,
        athlete_id: Any,
        stroke: Any,
        distance: Any,
        elapsed_seconds: float,
        occurred_at: datetime,
        pool_length: Optional[PoolLength],
        metadata: dict[str, Any],
    ) -> TimedPerformance:
        performance = TimedPerformance(
            athlete_id=_parse_athlete_id(athlete_id),
            stroke=_parse_stroke(stroke),
            distance_meters=_parse_distance(distance),
            elapsed_seconds=elapsed_seconds,
            occurred_at=occurred_at,
            source=source,
            pool_length=pool_length,
            is_personal_best=False,
            source_metadata=metadata,
        )

        logger.debug(
            "Normalized source event",
            extra={
                "performance_id": str(performance.id),
                "source": source.value,
                "elapsed_seconds": performance.elapsed_seconds,
            }
        )

        return performance


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def _parse_athlete_id(value: Any) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("Athlete id is required", field="athlete_id")
    return str(value).strip()


def parse_choice(enum_cls, value: Any, field: str):
    """Accept an enum member, its name in any case, or its value."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str) and value.strip():
        token = value.strip()
        try:
            return enum_cls[token.upper()]
        except KeyError:
            pass
        try:
            return enum_cls(token.lower())
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}: {value!r}", field=field)


def _parse_stroke(value: Any) -> Stroke:
    if value is None:
        raise ValidationError("Stroke is required", field="stroke")
    return parse_choice(Stroke, value, field="stroke")


def _parse_pool_length(value: Any, field: str) -> Optional[PoolLength]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_choice(PoolLength, value, field=field)


def _parse_number(value: Any, field: str) -> float:
    # bool is an int subclass; a checkbox value is not a time
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", field=field)
    return number


def _parse_time(value: Any, field: str, allow_zero: bool = False) -> float:
    number = _parse_number(value, field)
    if number < 0 or (number == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than 0", field=field)
    return number


def _parse_distance(value: Any) -> int:
    number = _parse_number(value, field="distance")
    if number <= 0 or not number.is_integer():
        raise ValidationError(
            f"Distance must be a positive whole number of meters, got {value!r}",
            field="distance",
        )
    return int(number)


def _parse_optional_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    number = _parse_number(value, field)
    if not number.is_integer():
        raise ValidationError(f"{field} must be a whole number", field=field)
    return int(number)


def _parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}: {value!r}", field=field)
