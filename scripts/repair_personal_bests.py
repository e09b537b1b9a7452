#!/usr/bin/env python3
"""
Recompute every personal best flag in the performance store.

Run after a bulk import, after restoring a backup, or whenever a recompute
failed and left a scope with a stale flag. Safe to run repeatedly: scopes
that are already correct are not written.

Usage:
    python scripts/repair_personal_bests.py
    python scripts/repair_personal_bests.py --create-table

Requires:
    - .env file with Snowflake credentials (or SNOWFLAKE_MOCK_MODE=true)
"""

import logging
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.api.dependencies import build_snowflake_config  # noqa: E402
from src.config.settings import get_settings  # noqa: E402
from src.core.performance.personal_best import (  # noqa: E402
    PersonalBestMaintainer,
    RepairReport,
)
from src.core.performance.store import PerformanceStore  # noqa: E402
from src.infrastructure.memory.store import InMemoryPerformanceStore  # noqa: E402
from src.infrastructure.snowflake.client import get_snowflake_connection  # noqa: E402
from src.infrastructure.snowflake.repositories.performances import (  # noqa: E402
    PerformanceRepository,
)


def run_repair(store: PerformanceStore, retry_attempts: int) -> RepairReport:
    maintainer = PersonalBestMaintainer(store, retry_attempts=retry_attempts)
    return maintainer.repair_all()


def print_report(report: RepairReport) -> None:
    print("\n=== Repair Complete ===")
    print(f"Keys examined: {report.keys_examined}")
    print(f"Keys changed: {report.keys_changed}")
    print(f"Keys failed: {len(report.failed_keys)}")
    for key in report.failed_keys:
        print(
            f"[ERR] {key.athlete_id} {key.stroke.value} "
            f"{key.distance_meters}m {key.pool_length.value}"
        )


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Recompute personal best flags')
    parser.add_argument(
        '--create-table',
        action='store_true',
        help='Create the performances table first if it does not exist',
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )

    if settings.snowflake_mock_mode:
        # Nothing persists in mock mode; this only checks the wiring
        print("Mock mode: repairing an empty in-memory store")
        report = run_repair(InMemoryPerformanceStore(), settings.recompute_retry_attempts)
        print_report(report)
        sys.exit(0 if report.succeeded else 1)

    missing = settings.validate_required_fields()
    if missing:
        print(f"ERROR: Missing configuration: {', '.join(missing)}")
        sys.exit(1)

    try:
        print(f"Connecting to Snowflake account: {settings.snowflake_account}")
        with get_snowflake_connection(build_snowflake_config(settings)) as conn:
            repo = PerformanceRepository(conn, table=settings.performances_table)
            if args.create_table:
                print(f"Ensuring table {settings.performances_table} exists")
                repo.create_table()
            report = run_repair(repo, settings.recompute_retry_attempts)
    except Exception as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report(report)
    sys.exit(0 if report.succeeded else 1)


if __name__ == '__main__':
    main()
