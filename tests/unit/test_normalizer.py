"""
Unit tests for source event normalization.

Each source reports swims in its own shape and units. These tests pin
down the mapping to TimedPerformance, above all the internal meet
millisecond conversion.
"""

from datetime import date, datetime, timezone

import pytest

from src.core.performance.errors import ValidationError
from src.core.performance.models import (
    CompetitionRecord,
    InternalMeetResult,
    PerformanceSource,
    PoolLength,
    Stroke,
    TrainingSession,
)
from src.core.performance.normalizer import Normalizer, parse_choice


FIXED_NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def normalizer() -> Normalizer:
    return Normalizer(clock=lambda: FIXED_NOW)


# ---------------------------------------------------------------------------
# Competition Records
# ---------------------------------------------------------------------------

class TestFromCompetition:
    """Competition results: seconds, pool size required."""

    def test_maps_fields_and_metadata(self, normalizer):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            time=32.45,
            pool_size="SHORT_25M",
            date=datetime(2024, 1, 15, tzinfo=timezone.utc),
            competition="  Winter Open  ",
            position=2,
            medal="silver",
        )

        performance = normalizer.normalize(record)

        assert performance.source == PerformanceSource.COMPETITION
        assert performance.stroke == Stroke.FREESTYLE
        assert performance.distance_meters == 50
        assert performance.elapsed_seconds == 32.45
        assert performance.pool_length == PoolLength.SHORT_25M
        assert performance.is_personal_best is False
        assert performance.source_metadata["competition_name"] == "Winter Open"
        assert performance.source_metadata["placement"] == 2
        assert performance.source_metadata["medal"] == "silver"
        assert performance.competition_name == "Winter Open"

    def test_coerces_string_numbers_from_forms(self, normalizer):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="backstroke",
            distance="100",
            time="65.30",
            pool_size="long_50m",
            date="2024-03-02",
        )

        performance = normalizer.normalize(record)

        assert performance.distance_meters == 100
        assert performance.elapsed_seconds == pytest.approx(65.30)
        assert performance.stroke == Stroke.BACKSTROKE
        assert performance.pool_length == PoolLength.LONG_50M
        assert performance.occurred_at == datetime(2024, 3, 2, tzinfo=timezone.utc)

    def test_missing_pool_size_is_rejected(self, normalizer):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            time=32.45,
            pool_size=None,
            date=date(2024, 1, 15),
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(record)

        assert exc_info.value.field == "pool_size"

    @pytest.mark.parametrize("time", [0, -1, None, "fast", float("nan"), True, 10**400])
    def test_invalid_time_is_rejected(self, normalizer, time):
        """No record is created with a zeroed or guessed time."""
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            time=time,
            pool_size="SHORT_25M",
            date=date(2024, 1, 15),
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(record)

        assert exc_info.value.field == "time"

    @pytest.mark.parametrize("distance", [0, -50, 50.5, None, 10**400])
    def test_invalid_distance_is_rejected(self, normalizer, distance):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=distance,
            time=32.45,
            pool_size="SHORT_25M",
            date=date(2024, 1, 15),
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(record)

        assert exc_info.value.field == "distance"

    def test_unknown_stroke_is_rejected(self, normalizer):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="doggy_paddle",
            distance=50,
            time=32.45,
            pool_size="SHORT_25M",
            date=date(2024, 1, 15),
        )

        with pytest.raises(ValidationError, match="Invalid stroke"):
            normalizer.normalize(record)

    def test_blank_athlete_is_rejected(self, normalizer):
        record = CompetitionRecord(
            athlete_id="   ",
            stroke="FREESTYLE",
            distance=50,
            time=32.45,
            pool_size="SHORT_25M",
            date=date(2024, 1, 15),
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(record)

        assert exc_info.value.field == "athlete_id"

    def test_unparseable_date_is_rejected(self, normalizer):
        record = CompetitionRecord(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            time=32.45,
            pool_size="SHORT_25M",
            date="last tuesday",
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(record)

        assert exc_info.value.field == "date"


# ---------------------------------------------------------------------------
# Training Sessions
# ---------------------------------------------------------------------------

class TestFromTraining:
    """Training swims: seconds, optional pool, lap splits."""

    def test_keeps_lap_splits_in_metadata(self, normalizer):
        session = TrainingSession(
            athlete_id="athlete-1",
            stroke="BUTTERFLY",
            distance=100,
            time=70.2,
            date="2024-05-10T18:00:00Z",
            pool_type="SHORT_25M",
            laps=[16.9, 17.6, 17.9, 17.8],
        )

        performance = normalizer.normalize(session)

        assert performance.source == PerformanceSource.TRAINING
        assert performance.pool_length == PoolLength.SHORT_25M
        assert performance.source_metadata["lap_splits"] == [16.9, 17.6, 17.9, 17.8]
        assert performance.source_metadata["lap_count"] == 4
        assert performance.occurred_at == datetime(2024, 5, 10, 18, 0, tzinfo=timezone.utc)

    def test_missing_date_defaults_to_now(self, normalizer):
        session = TrainingSession(athlete_id="athlete-1", stroke="FREESTYLE", distance=50, time=30.0)

        performance = normalizer.normalize(session)

        assert performance.occurred_at == FIXED_NOW

    def test_pool_type_is_optional(self, normalizer):
        session = TrainingSession(athlete_id="athlete-1", stroke="FREESTYLE", distance=50, time=30.0)

        performance = normalizer.normalize(session)

        assert performance.pool_length is None
        assert not performance.counts_for_personal_best

    def test_invalid_lap_split_is_rejected(self, normalizer):
        session = TrainingSession(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            time=30.0,
            laps=[15.0, "abc"],
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(session)

        assert exc_info.value.field == "laps"


# ---------------------------------------------------------------------------
# Internal Meet Results
# ---------------------------------------------------------------------------

class TestFromInternalMeet:
    """Internal meet lane times: milliseconds, no pool."""

    def test_converts_milliseconds_to_seconds(self, normalizer):
        result = InternalMeetResult(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            final_time_millis=32450,
            event_date=datetime(2024, 4, 20, tzinfo=timezone.utc),
            event_id="meet-7",
            heat_id="heat-2",
            lane_id="lane-4",
            lane_number=4,
        )

        performance = normalizer.normalize(result)

        assert performance.elapsed_seconds == pytest.approx(32.45)
        assert performance.source == PerformanceSource.INTERNAL_MEET
        assert performance.pool_length is None
        assert performance.source_metadata == {
            "event_id": "meet-7",
            "heat_id": "heat-2",
            "lane_id": "lane-4",
            "lane_number": 4,
        }

    def test_internal_meet_never_counts_for_personal_best(self, normalizer):
        result = InternalMeetResult(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            final_time_millis=25000,
            event_date=date(2024, 4, 20),
        )

        assert not normalizer.normalize(result).counts_for_personal_best

    def test_missing_lane_time_is_rejected(self, normalizer):
        result = InternalMeetResult(
            athlete_id="athlete-1",
            stroke="FREESTYLE",
            distance=50,
            final_time_millis=None,
            event_date=date(2024, 4, 20),
        )

        with pytest.raises(ValidationError) as exc_info:
            normalizer.normalize(result)

        assert exc_info.value.field == "final_time_millis"


class TestNormalizeDispatch:

    def test_unknown_event_type_is_rejected(self, normalizer):
        with pytest.raises(ValidationError, match="Unsupported source event"):
            normalizer.normalize({"time": 30.0})


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------

class TestCoerceEdit:
    """Edits are parsed with the same rules as ingestion."""

    def test_parses_each_editable_field(self, normalizer):
        parsed = normalizer.coerce_edit({
            "elapsed_seconds": "33.00",
            "stroke": "breaststroke",
            "distance_meters": "200",
            "pool_length": "LONG_50M",
            "occurred_at": "2024-02-20",
            "source_metadata": {"medal": "gold"},
        })

        assert parsed == {
            "elapsed_seconds": 33.0,
            "stroke": Stroke.BREASTSTROKE,
            "distance_meters": 200,
            "pool_length": PoolLength.LONG_50M,
            "occurred_at": datetime(2024, 2, 20),
            "source_metadata": {"medal": "gold"},
        }

    def test_pool_length_cannot_be_removed(self, normalizer):
        with pytest.raises(ValidationError, match="cannot be removed"):
            normalizer.coerce_edit({"pool_length": None})

    def test_personal_best_flag_cannot_be_edited(self, normalizer):
        with pytest.raises(ValidationError) as exc_info:
            normalizer.coerce_edit({"is_personal_best": True})

        assert exc_info.value.field == "is_personal_best"

    def test_source_metadata_must_be_a_mapping(self, normalizer):
        with pytest.raises(ValidationError):
            normalizer.coerce_edit({"source_metadata": ["not", "a", "dict"]})


# ---------------------------------------------------------------------------
# Enum Parsing
# ---------------------------------------------------------------------------

class TestParseChoice:
    """Names and values are both accepted, in any case."""

    @pytest.mark.parametrize("value", ["FREESTYLE", "freestyle", " Freestyle ", Stroke.FREESTYLE])
    def test_accepts_name_or_value(self, value):
        assert parse_choice(Stroke, value, field="stroke") == Stroke.FREESTYLE

    def test_pool_length_name(self):
        assert parse_choice(PoolLength, "SHORT_25M", field="pool_length") == PoolLength.SHORT_25M

    def test_source_value(self):
        assert parse_choice(PerformanceSource, "internal_meet", field="source") == PerformanceSource.INTERNAL_MEET

    @pytest.mark.parametrize("value", ["sidestroke", "", None, 1])
    def test_unknown_value_names_the_field(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_choice(Stroke, value, field="stroke")

        assert exc_info.value.field == "stroke"
