"""
Unit tests for personal best maintenance.

Runs the maintainer against the in-memory store. The invariant under
test: each (athlete, stroke, distance, pool) scope has exactly one
flagged row when non-empty, and it is the fastest.
"""

import threading
import time
from datetime import datetime, timezone
from uuid import UUID

import pytest

from src.core.performance.errors import PerformanceStoreError, RecomputeError
from src.core.performance.models import (
    PerformanceSource,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
)
from src.core.performance.personal_best import (
    KeyLockRegistry,
    PersonalBestMaintainer,
    select_winner,
)
from src.infrastructure.memory.store import InMemoryPerformanceStore


KEY = PersonalBestKey("athlete-1", Stroke.FREESTYLE, 50, PoolLength.SHORT_25M)


def swim(elapsed, day, source=PerformanceSource.COMPETITION, **overrides) -> TimedPerformance:
    values = dict(
        athlete_id=KEY.athlete_id,
        stroke=KEY.stroke,
        distance_meters=KEY.distance_meters,
        pool_length=KEY.pool_length,
        elapsed_seconds=elapsed,
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc).replace(day=day),
        source=source,
    )
    values.update(overrides)
    return TimedPerformance(**values)


def flagged(store, key=KEY) -> list[TimedPerformance]:
    return [
        row for row in store.find_matching(
            athlete_ids=[key.athlete_id],
            stroke=key.stroke,
            distance_meters=key.distance_meters,
            pool_length=key.pool_length,
        )
        if row.is_personal_best
    ]


@pytest.fixture
def store() -> InMemoryPerformanceStore:
    return InMemoryPerformanceStore()


@pytest.fixture
def maintainer(store) -> PersonalBestMaintainer:
    return PersonalBestMaintainer(store)


# ---------------------------------------------------------------------------
# Winner Selection
# ---------------------------------------------------------------------------

class TestSelectWinner:
    """Pure winner selection."""

    def test_empty_scope_has_no_winner(self):
        assert select_winner([]) is None

    def test_fastest_wins(self):
        rows = [swim(32.45, 15), swim(30.10, 20), swim(31.00, 25)]

        assert select_winner(rows).elapsed_seconds == 30.10

    def test_tie_goes_to_earliest_swim(self):
        later = swim(30.10, 20)
        earlier = swim(30.10, 5)

        assert select_winner([later, earlier]) is earlier

    def test_exact_tie_broken_by_id_regardless_of_order(self):
        """Same time, same moment: the choice must not depend on scan order."""
        a = swim(30.10, 5, id=UUID("00000000-0000-0000-0000-000000000001"))
        b = swim(30.10, 5, id=UUID("00000000-0000-0000-0000-000000000002"))

        assert select_winner([a, b]) is a
        assert select_winner([b, a]) is a


# ---------------------------------------------------------------------------
# Recompute
# ---------------------------------------------------------------------------

class TestRecompute:
    """Recompute restores the single-flag invariant."""

    def test_faster_swim_takes_the_flag(self, store, maintainer):
        """Two competition swims: only the faster one is flagged."""
        first = store.insert(swim(32.45, 15))
        maintainer.recompute(KEY)
        second = store.insert(swim(30.10, 20))
        maintainer.recompute(KEY)

        assert [row.id for row in flagged(store)] == [second.id]
        assert store.get(first.id).is_personal_best is False

    def test_deleting_the_best_hands_flag_to_next_fastest(self, store, maintainer):
        first = store.insert(swim(32.45, 15))
        second = store.insert(swim(30.10, 20))
        maintainer.recompute(KEY)

        store.delete(second.id)
        winner = maintainer.recompute(KEY)

        assert winner.id == first.id
        assert [row.id for row in flagged(store)] == [first.id]

    def test_slowing_the_best_flips_flag_back(self, store, maintainer):
        first = store.insert(swim(32.45, 15))
        second = store.insert(swim(30.10, 20))
        maintainer.recompute(KEY)

        edited = store.get(second.id)
        edited.elapsed_seconds = 33.00
        store.update(edited)
        maintainer.recompute(KEY)

        assert [row.id for row in flagged(store)] == [first.id]

    def test_empty_scope_returns_none(self, maintainer):
        assert maintainer.recompute(KEY) is None

    def test_key_without_pool_is_a_no_op(self, store, maintainer):
        store.insert(swim(30.0, 3, source=PerformanceSource.TRAINING, pool_length=None))

        assert maintainer.recompute(PersonalBestKey(KEY.athlete_id, KEY.stroke, 50, None)) is None
        assert store.find_matching(athlete_ids=[KEY.athlete_id])[0].is_personal_best is False

    def test_training_competes_with_competition(self, store, maintainer):
        store.insert(swim(31.00, 10))
        training = store.insert(swim(30.50, 12, source=PerformanceSource.TRAINING))

        winner = maintainer.recompute(KEY)

        assert winner.id == training.id

    def test_internal_meet_is_never_flagged(self, store, maintainer):
        """Internal meets have no pool, so they cannot enter any scope."""
        store.insert(swim(31.00, 10))
        meet = store.insert(swim(25.00, 12, source=PerformanceSource.INTERNAL_MEET, pool_length=None))

        maintainer.recompute(KEY)

        assert store.get(meet.id).is_personal_best is False

    def test_other_pool_lengths_are_untouched(self, store, maintainer):
        short = store.insert(swim(31.00, 10))
        long = store.insert(swim(29.00, 11, pool_length=PoolLength.LONG_50M))

        maintainer.recompute(KEY)

        assert store.get(short.id).is_personal_best is True
        assert store.get(long.id).is_personal_best is False

    def test_second_recompute_writes_nothing(self):
        """Already-correct scopes are left alone."""
        calls = []

        class CountingStore(InMemoryPerformanceStore):
            def set_personal_best(self, key, winner_id, sources):
                calls.append(winner_id)
                return super().set_personal_best(key, winner_id, sources)

        counting = CountingStore()
        counting.insert(swim(32.45, 15))
        counting.insert(swim(30.10, 20))
        maintainer = PersonalBestMaintainer(counting)

        first = maintainer.recompute(KEY)
        second = maintainer.recompute(KEY)

        assert first.id == second.id
        assert len(calls) == 1

    def test_repairs_double_flag(self, store, maintainer):
        """Two flagged rows from an earlier half-finished write get fixed."""
        slow = store.insert(swim(32.45, 15, is_personal_best=True))
        fast = store.insert(swim(30.10, 20, is_personal_best=True))

        maintainer.recompute(KEY)

        assert [row.id for row in flagged(store)] == [fast.id]
        assert store.get(slow.id).is_personal_best is False

    def test_winner_is_returned_flagged(self, store, maintainer):
        store.insert(swim(30.10, 20))

        assert maintainer.recompute(KEY).is_personal_best is True


# ---------------------------------------------------------------------------
# Failure Handling
# ---------------------------------------------------------------------------

class FlakyStore(InMemoryPerformanceStore):
    """Fails the first N flag writes, then behaves."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def set_personal_best(self, key, winner_id, sources):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise PerformanceStoreError("connection reset")
        return super().set_personal_best(key, winner_id, sources)


class TestRecomputeFailures:
    """Store failures get one synchronous retry."""

    def test_single_failure_is_retried(self):
        store = FlakyStore(failures=1)
        row = store.insert(swim(30.10, 20))

        winner = PersonalBestMaintainer(store).recompute(KEY)

        assert winner.id == row.id
        assert store.attempts == 2
        assert store.get(row.id).is_personal_best is True

    def test_persistent_failure_raises_recompute_error(self):
        store = FlakyStore(failures=10)
        store.insert(swim(30.10, 20))

        with pytest.raises(RecomputeError) as exc_info:
            PersonalBestMaintainer(store).recompute(KEY)

        assert isinstance(exc_info.value.__cause__, PerformanceStoreError)
        assert store.attempts == 2

    def test_retry_attempts_are_configurable(self):
        store = FlakyStore(failures=2)
        store.insert(swim(30.10, 20))

        PersonalBestMaintainer(store, retry_attempts=2).recompute(KEY)

        assert store.attempts == 3

    def test_negative_retry_attempts_rejected(self, store):
        with pytest.raises(ValueError):
            PersonalBestMaintainer(store, retry_attempts=-1)

    def test_lost_write_is_detected_and_retried(self):
        """A write that silently did nothing shows up on verification."""

        class LosesFirstWrite(InMemoryPerformanceStore):
            writes = 0

            def set_personal_best(self, key, winner_id, sources):
                self.writes += 1
                if self.writes == 1:
                    return 0
                return super().set_personal_best(key, winner_id, sources)

        store = LosesFirstWrite()
        row = store.insert(swim(30.10, 20))

        winner = PersonalBestMaintainer(store).recompute(KEY)

        assert winner.id == row.id
        assert store.writes == 2


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrentRecompute:
    """Concurrent writers on one key never leave two flags behind."""

    def test_parallel_inserts_and_recomputes_converge(self, store):
        locks = KeyLockRegistry()
        errors = []
        times = [33.0 - i * 0.1 for i in range(20)]

        def writer(elapsed, day):
            try:
                store.insert(swim(elapsed, day))
                PersonalBestMaintainer(store, locks=locks).recompute(KEY)
            except Exception as e:  # surfaced through the errors list
                errors.append(e)

        threads = [
            threading.Thread(target=writer, args=(elapsed, (i % 28) + 1))
            for i, elapsed in enumerate(times)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        best = flagged(store)
        assert len(best) == 1
        assert best[0].elapsed_seconds == pytest.approx(min(times))

    def test_registry_forgets_released_keys(self):
        locks = KeyLockRegistry()

        with locks.hold(KEY):
            assert len(locks) == 1

        assert len(locks) == 0

    def test_same_key_is_mutually_exclusive(self):
        locks = KeyLockRegistry()
        inside = []
        overlap = []

        def worker():
            with locks.hold(KEY):
                if inside:
                    overlap.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlap == []
        assert len(locks) == 0


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

class TestRepairAll:
    """Full repair pass over every key."""

    def test_repairs_every_scope(self, store, maintainer):
        store.insert(swim(32.0, 1))
        store.insert(swim(31.0, 2))
        store.insert(swim(60.0, 3, distance_meters=100))
        store.insert(swim(29.0, 4, pool_length=PoolLength.LONG_50M))
        store.insert(swim(28.0, 5, source=PerformanceSource.INTERNAL_MEET, pool_length=None))

        report = maintainer.repair_all()

        assert report.keys_examined == 3
        assert report.keys_changed == 3
        assert report.succeeded

    def test_second_pass_changes_nothing(self, store, maintainer):
        store.insert(swim(32.0, 1))
        maintainer.repair_all()

        report = maintainer.repair_all()

        assert report.keys_examined == 1
        assert report.keys_changed == 0

    def test_failing_key_is_reported_and_pass_continues(self):
        store = FlakyStore(failures=2)
        store.insert(swim(32.0, 1))
        store.insert(swim(60.0, 3, distance_meters=100))

        report = PersonalBestMaintainer(store).repair_all()

        assert report.keys_examined == 2
        assert len(report.failed_keys) == 1
        assert report.keys_changed == 1
        assert not report.succeeded
