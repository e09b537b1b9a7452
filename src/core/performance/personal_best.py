"""
Personal best maintenance.

The invariant: for every (athlete, stroke, distance, pool length) there is
at most one performance flagged as personal best, and when the scope is
non-empty there is exactly one, the fastest.

The maintainer never trusts what is already flagged. Every call re-derives
the winner from the rows in the store, then writes "flag the winner, clear
everyone else" as one store operation. That makes recompute idempotent and
self-healing: if a previous write half-failed, the next call fixes it.

Two recomputes of the same key must not interleave, so each key gets its
own lock. Different keys never block each other.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from .errors import ConcurrencyConflict, PerformanceStoreError, RecomputeError
from .models import PERSONAL_BEST_SOURCES, PersonalBestKey, TimedPerformance
from .store import PerformanceStore

logger = logging.getLogger(__name__)


def select_winner(rows: Iterable[TimedPerformance]) -> Optional[TimedPerformance]:
    """
    Pick the personal best from a scope.

    Fastest time wins. On an exact tie the earliest swim wins, and the id
    breaks any remaining tie so the choice never depends on scan order.
    """
    candidates = list(rows)
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda row: (row.elapsed_seconds, row.occurred_at, str(row.id)),
    )


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyLockRegistry:
    """
    One mutex per personal best key, created on demand.

    Entries are dropped when nobody holds or waits on them, so the
    registry doesn't grow with the number of keys ever touched.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[PersonalBestKey, _KeyLock] = {}

    @contextmanager
    def hold(self, key: PersonalBestKey) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class RepairReport:
    """Outcome of a full personal best repair pass."""
    keys_examined: int = 0
    keys_changed: int = 0
    failed_keys: list[PersonalBestKey] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed_keys


class PersonalBestMaintainer:
    """
    Enforces the single personal best per key.

    Stateless apart from its dependencies. The lock registry must be
    shared by every maintainer that writes to the same store, otherwise
    the per-key serialization means nothing.
    """

    def __init__(
        self,
        store: PerformanceStore,
        locks: Optional[KeyLockRegistry] = None,
        retry_attempts: int = 1,
    ) -> None:
        if retry_attempts < 0:
            raise ValueError("retry_attempts cannot be negative")
        self._store = store
        self._locks = locks or KeyLockRegistry()
        self._retry_attempts = retry_attempts

    def recompute(self, key: PersonalBestKey) -> Optional[TimedPerformance]:
        """
        Restore the invariant for one key and return the winner.

        Returns None when the scope is empty or the key has no pool
        length (nothing to compare against). Raises RecomputeError only
        if the store keeps failing after the retry.
        """
        winner, _ = self._recompute(key)
        return winner

    def repair_all(self) -> RepairReport:
        """
        Recompute every key in the store.

        Used by the maintenance script after imports or to clean up after
        an outage. A failing key is logged and reported, and the pass
        carries on with the rest.
        """
        report = RepairReport()

        for key in self._store.personal_best_keys():
            if not key.has_scope:
                continue
            report.keys_examined += 1
            try:
                _, changed = self._recompute(key)
            except RecomputeError as e:
                logger.error(
                    "Personal best repair failed for key",
                    extra={**key.describe(), "error": str(e)}
                )
                report.failed_keys.append(key)
                continue
            if changed:
                report.keys_changed += 1

        logger.info(
            "Personal best repair finished",
            extra={
                "keys_examined": report.keys_examined,
                "keys_changed": report.keys_changed,
                "keys_failed": len(report.failed_keys),
            }
        )

        return report

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _recompute(self, key: PersonalBestKey) -> tuple[Optional[TimedPerformance], bool]:
        if not key.has_scope:
            return None, False

        with self._locks.hold(key):
            attempt = 0
            while True:
                try:
                    return self._converge(key)
                except ConcurrencyConflict as e:
                    logger.warning(
                        "Personal best scope inconsistent after write",
                        extra={**key.describe(), "flagged_count": e.flagged_count}
                    )
                    failure: Exception = e
                except PerformanceStoreError as e:
                    logger.error(
                        "Personal best write failed",
                        extra={**key.describe(), "error": str(e), "attempt": attempt + 1}
                    )
                    failure = e

                if attempt >= self._retry_attempts:
                    raise RecomputeError(
                        f"Could not restore personal best for {key.describe()}: {failure}"
                    ) from failure
                attempt += 1

    def _converge(self, key: PersonalBestKey) -> tuple[Optional[TimedPerformance], bool]:
        """One read-select-write-verify pass. Returns (winner, wrote)."""
        rows = self._scope(key)
        winner = select_winner(rows)
        if winner is None:
            logger.debug("Empty personal best scope", extra=key.describe())
            return None, False

        flagged = [row.id for row in rows if row.is_personal_best]
        if flagged == [winner.id]:
            return winner, False

        if len(flagged) > 1:
            logger.warning(
                "Multiple personal bests flagged, repairing",
                extra={**key.describe(), "flagged_count": len(flagged)}
            )

        touched = self._store.set_personal_best(key, winner.id, PERSONAL_BEST_SOURCES)
        self._verify(key, winner)
        winner.is_personal_best = True

        logger.info(
            "Personal best recomputed",
            extra={
                **key.describe(),
                "winner_id": str(winner.id),
                "elapsed_seconds": winner.elapsed_seconds,
                "rows_touched": touched,
            }
        )

        return winner, True

    def _verify(self, key: PersonalBestKey, winner: TimedPerformance) -> None:
        flagged = [row.id for row in self._scope(key) if row.is_personal_best]
        if flagged != [winner.id]:
            raise ConcurrencyConflict(
                f"Expected only {winner.id} flagged, found {len(flagged)} flagged rows",
                flagged_count=len(flagged),
            )

    def _scope(self, key: PersonalBestKey) -> list[TimedPerformance]:
        return self._store.find_matching(
            athlete_ids=[key.athlete_id],
            stroke=key.stroke,
            distance_meters=key.distance_meters,
            pool_length=key.pool_length,
            sources=PERSONAL_BEST_SOURCES,
        )
