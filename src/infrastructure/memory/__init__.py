"""
In-memory storage for local development without Snowflake.
"""

from .store import InMemoryPerformanceStore

__all__ = ["InMemoryPerformanceStore"]
