"""
The persistence seam for timed performances.

The engine never talks to a database directly. It asks a PerformanceStore
for what it needs in domain terms, and infrastructure provides either the
Snowflake-backed repository or the in-memory one used in mock mode.
"""

from typing import Iterable, Optional, Protocol
from uuid import UUID

from .models import (
    PerformanceSource,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
)


class PerformanceStore(Protocol):
    """
    Protocol for performance persistence.

    find_matching is the single query shape shared by the maintainer and
    the aggregator. Every None filter means "don't filter on this".
    """

    def insert(self, performance: TimedPerformance) -> TimedPerformance:
        """Persist a new performance."""
        ...

    def get(self, performance_id: UUID) -> TimedPerformance:
        """Load a performance by id. Raises NotFoundError."""
        ...

    def update(self, performance: TimedPerformance) -> TimedPerformance:
        """Replace a stored performance by id. Raises NotFoundError."""
        ...

    def delete(self, performance_id: UUID) -> TimedPerformance:
        """Remove a performance and return it. Raises NotFoundError."""
        ...

    def find_matching(
        self,
        athlete_ids: Iterable[str],
        stroke: Optional[Stroke] = None,
        distance_meters: Optional[int] = None,
        pool_length: Optional[PoolLength] = None,
        sources: Optional[Iterable[PerformanceSource]] = None,
    ) -> list[TimedPerformance]:
        """Find all live performances matching the filters."""
        ...

    def set_personal_best(
        self,
        key: PersonalBestKey,
        winner_id: UUID,
        sources: Iterable[PerformanceSource],
    ) -> int:
        """
        Flag winner_id and clear every other row in the key's scope.

        Must be a single logical operation: a reader never observes the
        clear without the set. Returns the number of rows touched.
        """
        ...

    def personal_best_keys(self) -> list[PersonalBestKey]:
        """Every distinct key that has at least one performance."""
        ...
