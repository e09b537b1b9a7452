"""
FastAPI dependency injection.

Dependencies provide instances of the store, the engine services, and
configuration to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests
- Resource lifecycle (connections) is managed properly

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from functools import lru_cache
from typing import Annotated, Generator

from fastapi import Depends

from ..config.settings import Settings, get_settings
from ..core.performance.facade import QueryFacade
from ..core.performance.normalizer import Normalizer
from ..core.performance.personal_best import KeyLockRegistry, PersonalBestMaintainer
from ..core.performance.statistics import StatisticsAggregator
from ..core.performance.store import PerformanceStore
from ..infrastructure.memory.store import InMemoryPerformanceStore
from ..infrastructure.snowflake.client import get_snowflake_connection
from ..infrastructure.snowflake.repositories.performances import (
    PerformanceRepository,
    SnowflakeConfig,
)

logger = logging.getLogger(__name__)

# Global mock store (shared across requests so data persists in mock mode)
_mock_store = None


def build_snowflake_config(settings: Settings) -> SnowflakeConfig:
    """Translate settings into the connection config the repository needs."""
    return SnowflakeConfig(
        account=settings.snowflake_account,
        user=settings.snowflake_user,
        password=settings.snowflake_password or None,
        private_key_path=settings.snowflake_private_key_path,
        private_key_base64=settings.snowflake_private_key_base64,
        database=settings.snowflake_database,
        schema=settings.snowflake_schema,
        warehouse=settings.snowflake_warehouse,
        role=settings.snowflake_role,
    )


@lru_cache()
def get_lock_registry() -> KeyLockRegistry:
    """
    Process-wide personal best locks.

    Every request must share one registry, otherwise two requests editing
    the same swimmer's 50m freestyle would each hold their own lock.
    """
    return KeyLockRegistry()


def get_performance_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Generator[PerformanceStore, None, None]:
    """
    Provide a PerformanceStore for the request.

    This is a generator function (yields instead of returns) because
    we need to manage the connection lifecycle:
    1. Create connection
    2. Create repository
    3. Yield repository (FastAPI injects it)
    4. Close connection (cleanup after request)

    In mock mode, we reuse the same in-memory store across requests
    so that data persists during the testing session.
    """
    global _mock_store

    if settings.snowflake_mock_mode:
        if _mock_store is None:
            _mock_store = InMemoryPerformanceStore()
            logger.info("Created shared in-memory performance store")

        logger.debug("Using shared in-memory performance store")
        yield _mock_store
    else:
        with get_snowflake_connection(build_snowflake_config(settings)) as conn:
            repo = PerformanceRepository(conn, table=settings.performances_table)
            logger.debug("Created PerformanceRepository with Snowflake connection")
            yield repo


def get_query_facade(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[PerformanceStore, Depends(get_performance_store)],
) -> QueryFacade:
    """
    Provide the QueryFacade wired to this request's store.

    The services are stateless, so we create new instances per request.
    Only the lock registry is shared.
    """
    maintainer = PersonalBestMaintainer(
        store=store,
        locks=get_lock_registry(),
        retry_attempts=settings.recompute_retry_attempts,
    )
    aggregator = StatisticsAggregator(
        store=store,
        window_size=settings.rolling_window_size,
    )

    return QueryFacade(
        store=store,
        maintainer=maintainer,
        aggregator=aggregator,
        normalizer=Normalizer(),
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
SettingsDep = Annotated[Settings, Depends(get_settings)]
PerformanceStoreDep = Annotated[PerformanceStore, Depends(get_performance_store)]
QueryFacadeDep = Annotated[QueryFacade, Depends(get_query_facade)]
