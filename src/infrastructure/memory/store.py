"""
In-memory performance store for local development and tests.

Enables running the full API without provisioning Snowflake. Rows live in
a dictionary guarded by one lock, so set_personal_best is atomic with
respect to every other call on the same store.

Not suitable for production, but perfect for:
- Local development
- Unit tests
- CI/CD environments
"""

import copy
import logging
import threading
from typing import Iterable, Optional
from uuid import UUID

from src.core.performance.errors import NotFoundError
from src.core.performance.models import (
    PerformanceSource,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
)

logger = logging.getLogger(__name__)


class InMemoryPerformanceStore:
    """
    Dictionary-backed PerformanceStore.

    Callers always get copies. Mutating a returned performance never
    changes what is stored; only update and set_personal_best do.
    """

    def __init__(self) -> None:
        self._rows: dict[UUID, TimedPerformance] = {}
        self._lock = threading.RLock()
        logger.info("Initialized in-memory performance store")

    def insert(self, performance: TimedPerformance) -> TimedPerformance:
        with self._lock:
            if performance.id in self._rows:
                raise ValueError(f"Performance {performance.id} already exists")
            self._rows[performance.id] = copy.deepcopy(performance)
            return copy.deepcopy(performance)

    def get(self, performance_id: UUID) -> TimedPerformance:
        with self._lock:
            row = self._rows.get(performance_id)
            if row is None:
                raise NotFoundError(f"Performance {performance_id} not found")
            return copy.deepcopy(row)

    def update(self, performance: TimedPerformance) -> TimedPerformance:
        with self._lock:
            if performance.id not in self._rows:
                raise NotFoundError(f"Performance {performance.id} not found")
            self._rows[performance.id] = copy.deepcopy(performance)
            return copy.deepcopy(performance)

    def delete(self, performance_id: UUID) -> TimedPerformance:
        with self._lock:
            row = self._rows.pop(performance_id, None)
            if row is None:
                raise NotFoundError(f"Performance {performance_id} not found")
            return row

    def find_matching(
        self,
        athlete_ids: Iterable[str],
        stroke: Optional[Stroke] = None,
        distance_meters: Optional[int] = None,
        pool_length: Optional[PoolLength] = None,
        sources: Optional[Iterable[PerformanceSource]] = None,
    ) -> list[TimedPerformance]:
        athletes = set(athlete_ids)
        wanted_sources = set(sources) if sources is not None else None

        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._rows.values()
                if row.athlete_id in athletes
                and (stroke is None or row.stroke == stroke)
                and (distance_meters is None or row.distance_meters == distance_meters)
                and (pool_length is None or row.pool_length == pool_length)
                and (wanted_sources is None or row.source in wanted_sources)
            ]

    def set_personal_best(
        self,
        key: PersonalBestKey,
        winner_id: UUID,
        sources: Iterable[PerformanceSource],
    ) -> int:
        wanted_sources = set(sources)
        touched = 0

        with self._lock:
            for row in self._rows.values():
                if row.key != key or row.source not in wanted_sources:
                    continue
                flag = row.id == winner_id
                if row.is_personal_best != flag:
                    row.is_personal_best = flag
                    touched += 1

        return touched

    def personal_best_keys(self) -> list[PersonalBestKey]:
        with self._lock:
            return list(dict.fromkeys(row.key for row in self._rows.values()))

    # Helper methods for testing
    def _clear(self) -> None:
        """Clear all rows (for test cleanup)."""
        with self._lock:
            self._rows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
