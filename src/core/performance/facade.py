"""
The one seam the rest of the club application touches.

Reads go to the StatisticsAggregator. Writes go to the store and then
trigger personal best recomputation on every key the write affected.
The CRUD layer can either call the mutating helpers here, or write to the
store itself and report what it did through on_performance_written /
on_performance_deleted.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from .errors import ValidationError
from .models import (
    EDITABLE_SOURCES,
    PerformanceDeleted,
    PerformanceSource,
    PerformanceWritten,
    PersonalBestKey,
    PoolLength,
    SourceEvent,
    Stroke,
    TimedPerformance,
)
from .normalizer import Normalizer
from .personal_best import PersonalBestMaintainer, RepairReport
from .statistics import (
    AthleteSummary,
    BestTimesView,
    StatisticsAggregator,
    StatisticsFilter,
)
from .store import PerformanceStore

logger = logging.getLogger(__name__)


class QueryFacade:
    """
    Read and write entry points for the performance engine.

    Stateless beyond its collaborators; safe to construct per request as
    long as the maintainer shares its lock registry.
    """

    def __init__(
        self,
        store: PerformanceStore,
        maintainer: PersonalBestMaintainer,
        aggregator: StatisticsAggregator,
        normalizer: Optional[Normalizer] = None,
    ) -> None:
        self._store = store
        self._maintainer = maintainer
        self._aggregator = aggregator
        self._normalizer = normalizer or Normalizer()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_best_times(
        self,
        athlete_ids: Iterable[str],
        distance_meters: Optional[int] = None,
        pool_length: Optional[PoolLength] = None,
        source: Optional[PerformanceSource] = None,
        now: Optional[datetime] = None,
    ) -> BestTimesView:
        ids = tuple(
            str(athlete_id).strip() for athlete_id in athlete_ids
            if athlete_id is not None and str(athlete_id).strip()
        )
        if not ids:
            raise ValidationError("At least one athlete id is required", field="athlete_id")
        if distance_meters is not None and distance_meters <= 0:
            raise ValidationError("Distance filter must be positive", field="distance")

        filters = StatisticsFilter(
            athlete_ids=ids,
            distance_meters=distance_meters,
            pool_length=pool_length,
            source=source,
        )
        return self._aggregator.aggregate(filters, now=now)

    def get_performance(self, performance_id: UUID) -> TimedPerformance:
        return self._store.get(performance_id)

    def training_history(
        self,
        athlete_id: str,
        year: int,
        month: int,
        stroke: Optional[Stroke] = None,
    ) -> list[TimedPerformance]:
        return self._aggregator.training_history(athlete_id, year, month, stroke)

    def athlete_summary(self, athlete_ids: Iterable[str]) -> dict[str, AthleteSummary]:
        return self._aggregator.athlete_summary(athlete_ids)

    # -----------------------------------------------------------------------
    # Mutation events
    # -----------------------------------------------------------------------

    def on_performance_written(self, event: PerformanceWritten) -> Optional[TimedPerformance]:
        """
        Recompute after an insert or update.

        For an update that moved the row to another key, the old key is
        recomputed first so the vacated scope gets its flag back before
        the new scope is settled. Returns the new key's winner.
        """
        keys: list[PersonalBestKey] = []
        if event.previous is not None and event.previous.counts_for_personal_best:
            keys.append(event.previous.key)
        if event.current.counts_for_personal_best and event.current.key not in keys:
            keys.append(event.current.key)

        winner = None
        for key in keys:
            winner = self._maintainer.recompute(key)

        if event.current.counts_for_personal_best:
            return winner
        return None

    def on_performance_deleted(self, event: PerformanceDeleted) -> Optional[TimedPerformance]:
        """Recompute the deleted row's key from the rows that remain."""
        if not event.performance.counts_for_personal_best:
            return None
        return self._maintainer.recompute(event.performance.key)

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def ingest(self, event: SourceEvent) -> TimedPerformance:
        """
        Normalize a source event, store it, and settle its personal best.

        Raises ValidationError before touching the store if the event is
        malformed. Returns the stored performance with its flag current.
        """
        performance = self._normalizer.normalize(event)
        stored = self._store.insert(performance)

        logger.info(
            "Performance ingested",
            extra={
                "performance_id": str(stored.id),
                "athlete_id": stored.athlete_id,
                "source": stored.source.value,
                "elapsed_seconds": stored.elapsed_seconds,
            }
        )

        self.on_performance_written(PerformanceWritten(current=stored))
        return self._store.get(stored.id)

    def update_performance(
        self,
        performance_id: UUID,
        changes: Mapping[str, Any],
    ) -> TimedPerformance:
        """
        Edit a competition performance in place.

        Only competition results can be edited. Changing time, stroke,
        distance or pool length recomputes both the old and new keys.
        """
        parsed = self._normalizer.coerce_edit(changes)

        existing = self._store.get(performance_id)
        if existing.source not in EDITABLE_SOURCES:
            raise ValidationError(
                f"{existing.source.value} performances cannot be edited",
                field="source",
            )

        if "source_metadata" in parsed:
            parsed["source_metadata"] = {**existing.source_metadata, **parsed["source_metadata"]}

        # The flag is owned by the maintainer, never by an edit
        updated = replace(existing, is_personal_best=existing.is_personal_best, **parsed)
        stored = self._store.update(updated)

        logger.info(
            "Performance updated",
            extra={
                "performance_id": str(performance_id),
                "changed_fields": sorted(changes),
            }
        )

        self.on_performance_written(PerformanceWritten(current=stored, previous=existing))
        return self._store.get(performance_id)

    def delete_performance(self, performance_id: UUID) -> TimedPerformance:
        """Remove a performance and hand its personal best to the next fastest."""
        deleted = self._store.delete(performance_id)

        logger.info(
            "Performance deleted",
            extra={
                "performance_id": str(performance_id),
                "was_personal_best": deleted.is_personal_best,
            }
        )

        self.on_performance_deleted(PerformanceDeleted(performance=deleted))
        return deleted

    def recompute(self, key: PersonalBestKey) -> Optional[TimedPerformance]:
        return self._maintainer.recompute(key)

    def repair_personal_bests(self) -> RepairReport:
        return self._maintainer.repair_all()
