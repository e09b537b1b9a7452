"""
Infrastructure layer - external service integrations.

Each subdirectory wraps a storage backend for timed performances:
- snowflake: Durable persistence
- memory: In-process store for mock mode and tests

These wrappers translate between external formats and our domain models.
"""
