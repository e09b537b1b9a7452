"""
Snowflake repository for timed performances.

This module implements the repository pattern for performance data access.
The repository:
1. Translates between domain models and database rows
2. Encapsulates all SQL queries
3. Implements the PerformanceStore protocol the engine depends on

Deletes are soft (deleted_at is stamped) so results stay auditable; every
read filters them out.
"""

import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Protocol
from uuid import UUID

from src.core.performance.errors import NotFoundError, PerformanceStoreError
from src.core.performance.models import (
    PerformanceSource,
    PersonalBestKey,
    PoolLength,
    Stroke,
    TimedPerformance,
)


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

_COLUMNS = """
    performance_id,
    athlete_id,
    stroke,
    distance_meters,
    pool_length,
    elapsed_seconds,
    occurred_at,
    source,
    is_personal_best,
    source_metadata
"""


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a fake without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "SWIMCLUB"
    schema: str = "PERFORMANCE"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


class PerformanceRepository:
    """
    Snowflake-backed PerformanceStore.

    set_personal_best is one UPDATE statement that flags the winner and
    clears everyone else in the scope in the same write, inside its own
    transaction. There is no window where a reader sees the clear
    without the set.
    """

    def __init__(self, connection: SnowflakeConnection, table: str = "performances") -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self._conn = connection
        self._table = table

    def create_table(self) -> None:
        """Create the performances table if it doesn't exist yet."""
        with self._cursor(commit=True) as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    performance_id VARCHAR(36) PRIMARY KEY,
                    athlete_id VARCHAR(64) NOT NULL,
                    stroke VARCHAR(32) NOT NULL,
                    distance_meters INTEGER NOT NULL,
                    pool_length VARCHAR(16),
                    elapsed_seconds FLOAT NOT NULL,
                    occurred_at TIMESTAMP_TZ NOT NULL,
                    source VARCHAR(16) NOT NULL,
                    is_personal_best BOOLEAN NOT NULL DEFAULT FALSE,
                    source_metadata VARIANT,
                    created_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP(),
                    updated_at TIMESTAMP_TZ DEFAULT CURRENT_TIMESTAMP(),
                    deleted_at TIMESTAMP_TZ
                )
            """)

    def insert(self, performance: TimedPerformance) -> TimedPerformance:
        with self._cursor(commit=True) as cursor:
            cursor.execute(f"""
                INSERT INTO {self._table} ({_COLUMNS})
                SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, PARSE_JSON(%s)
            """, self._to_params(performance))

        logger.debug(
            "Inserted performance",
            extra={"performance_id": str(performance.id)}
        )
        return performance

    def get(self, performance_id: UUID) -> TimedPerformance:
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT {_COLUMNS}
                FROM {self._table}
                WHERE performance_id = %s
                  AND deleted_at IS NULL
            """, (str(performance_id),))
            row = cursor.fetchone()

        if not row:
            raise NotFoundError(f"Performance {performance_id} not found")
        return self._build_performance(row)

    def update(self, performance: TimedPerformance) -> TimedPerformance:
        with self._cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE {self._table} SET
                    athlete_id = %s,
                    stroke = %s,
                    distance_meters = %s,
                    pool_length = %s,
                    elapsed_seconds = %s,
                    occurred_at = %s,
                    source = %s,
                    is_personal_best = %s,
                    source_metadata = PARSE_JSON(%s),
                    updated_at = CURRENT_TIMESTAMP()
                WHERE performance_id = %s
                  AND deleted_at IS NULL
            """, self._to_params(performance)[1:] + (str(performance.id),))
            updated = cursor.rowcount

        if not updated:
            raise NotFoundError(f"Performance {performance.id} not found")
        return performance

    def delete(self, performance_id: UUID) -> TimedPerformance:
        performance = self.get(performance_id)

        with self._cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE {self._table} SET
                    deleted_at = CURRENT_TIMESTAMP(),
                    is_personal_best = FALSE
                WHERE performance_id = %s
                  AND deleted_at IS NULL
            """, (str(performance_id),))
            deleted = cursor.rowcount

        if not deleted:
            raise NotFoundError(f"Performance {performance_id} not found")
        return performance

    def find_matching(
        self,
        athlete_ids: Iterable[str],
        stroke: Optional[Stroke] = None,
        distance_meters: Optional[int] = None,
        pool_length: Optional[PoolLength] = None,
        sources: Optional[Iterable[PerformanceSource]] = None,
    ) -> list[TimedPerformance]:
        athletes = list(dict.fromkeys(athlete_ids))
        if not athletes:
            return []

        clauses = [f"athlete_id IN ({', '.join(['%s'] * len(athletes))})", "deleted_at IS NULL"]
        params: list[Any] = list(athletes)

        if stroke is not None:
            clauses.append("stroke = %s")
            params.append(stroke.value)
        if distance_meters is not None:
            clauses.append("distance_meters = %s")
            params.append(distance_meters)
        if pool_length is not None:
            clauses.append("pool_length = %s")
            params.append(pool_length.value)
        if sources is not None:
            source_values = [s.value for s in sources]
            if not source_values:
                return []
            clauses.append(f"source IN ({', '.join(['%s'] * len(source_values))})")
            params.extend(source_values)

        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT {_COLUMNS}
                FROM {self._table}
                WHERE {' AND '.join(clauses)}
                ORDER BY occurred_at, performance_id
            """, tuple(params))
            rows = cursor.fetchall()

        return [self._build_performance(row) for row in rows]

    def set_personal_best(
        self,
        key: PersonalBestKey,
        winner_id: UUID,
        sources: Iterable[PerformanceSource],
    ) -> int:
        if key.pool_length is None:
            raise ValueError("Personal best keys require a pool length")

        source_values = [s.value for s in sources]
        placeholders = ", ".join(["%s"] * len(source_values))

        with self._cursor(commit=True) as cursor:
            cursor.execute(f"""
                UPDATE {self._table}
                SET is_personal_best = (performance_id = %s),
                    updated_at = CURRENT_TIMESTAMP()
                WHERE athlete_id = %s
                  AND stroke = %s
                  AND distance_meters = %s
                  AND pool_length = %s
                  AND source IN ({placeholders})
                  AND deleted_at IS NULL
                  AND is_personal_best <> (performance_id = %s)
            """, (
                str(winner_id),
                key.athlete_id,
                key.stroke.value,
                key.distance_meters,
                key.pool_length.value,
                *source_values,
                str(winner_id),
            ))
            return cursor.rowcount or 0

    def personal_best_keys(self) -> list[PersonalBestKey]:
        with self._cursor() as cursor:
            cursor.execute(f"""
                SELECT DISTINCT athlete_id, stroke, distance_meters, pool_length
                FROM {self._table}
                WHERE deleted_at IS NULL
                  AND pool_length IS NOT NULL
            """)
            rows = cursor.fetchall()

        return [
            PersonalBestKey(
                athlete_id=row[0],
                stroke=Stroke(row[1]),
                distance_meters=int(row[2]),
                pool_length=PoolLength(row[3]),
            )
            for row in rows
        ]

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    @contextmanager
    def _cursor(self, commit: bool = False) -> Iterator[Any]:
        """
        Open a cursor, committing or rolling back around the block.

        Driver errors are logged and re-raised as PerformanceStoreError so
        the engine can retry without knowing about Snowflake.
        """
        cursor = self._conn.cursor()
        try:
            yield cursor
            if commit:
                self._conn.commit()
        except NotFoundError:
            raise
        except Exception as e:
            if commit:
                self._conn.rollback()
            logger.error(
                "Performance query failed",
                extra={"table": self._table, "error": str(e)}
            )
            raise PerformanceStoreError(f"Performance query failed: {e}") from e
        finally:
            cursor.close()

    def _to_params(self, performance: TimedPerformance) -> tuple:
        return (
            str(performance.id),
            performance.athlete_id,
            performance.stroke.value,
            performance.distance_meters,
            performance.pool_length.value if performance.pool_length else None,
            performance.elapsed_seconds,
            performance.occurred_at,
            performance.source.value,
            performance.is_personal_best,
            json.dumps(performance.source_metadata, default=str),
        )

    def _build_performance(self, row) -> TimedPerformance:
        """Construct a TimedPerformance from a database row."""
        return TimedPerformance(
            id=UUID(row[0]),
            athlete_id=row[1],
            stroke=Stroke(row[2]),
            distance_meters=int(row[3]),
            pool_length=PoolLength(row[4]) if row[4] else None,
            elapsed_seconds=float(row[5]),
            occurred_at=row[6],
            source=PerformanceSource(row[7]),
            is_personal_best=bool(row[8]),
            source_metadata=self._parse_variant_json(row[9]) or {},
        )

    def _parse_variant_json(self, variant_data):
        """
        Parse Snowflake VARIANT data that might be a string or already parsed.

        snowflake-connector-python returns VARIANT columns as JSON strings;
        other drivers and fakes may hand back the parsed dict.
        """
        if not variant_data:
            return None

        if isinstance(variant_data, str):
            try:
                return json.loads(variant_data)
            except json.JSONDecodeError as e:
                logger.error(
                    "Failed to parse VARIANT JSON string",
                    extra={"variant_data": variant_data[:100], "error": str(e)}
                )
                return None

        return variant_data
