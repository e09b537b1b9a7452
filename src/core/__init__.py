"""
Core business logic for swim performances.

This module is framework-agnostic - it doesn't import FastAPI, Snowflake,
or any infrastructure concerns. Personal best maintenance and statistics
only see the PerformanceStore protocol, so they can be tested against the
in-memory store.
"""
