"""
SwimClub Performance - personal bests and performance statistics for a swim club.

This package contains the complete application:
- core: Framework-agnostic performance engine
- infrastructure: Performance stores (Snowflake, in-memory)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
