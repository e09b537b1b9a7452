"""
Repository pattern implementations for Snowflake.

Repositories translate between domain models and database representations.
"""

from .performances import PerformanceRepository, SnowflakeConfig

__all__ = ["PerformanceRepository", "SnowflakeConfig"]
