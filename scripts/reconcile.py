#!/usr/bin/env python3
"""
ResearchOps Reconciliation Runner

Runs one reconciliation sweep against the Postgres replica and Airtable:
placeholder ('pending-') journal entries are created upstream and renamed
to their Airtable ids.

Usage:
    python scripts/reconcile.py
    python scripts/reconcile.py --limit 50

Intended for cron. Exits 1 if any row failed or the scan could not run.
"""

import argparse
import sys

from dotenv import load_dotenv

from researchops.api.dependencies import (
    init_connection_pool,
    close_connection_pool,
    init_services
)
from researchops.config import get_config


def main():
    parser = argparse.ArgumentParser(description="Promote pending journal entries to Airtable")
    parser.add_argument("--limit", type=int, default=None, help="Max pending rows to scan (default: all)")
    args = parser.parse_args()

    load_dotenv()

    try:
        config = get_config()
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    if not config.airtable.is_enabled():
        print("⚠️  Airtable not configured: nothing to reconcile")
        sys.exit(0)

    init_connection_pool(
        database_url=config.replica.database_url,
        min_size=1,
        max_size=2,
        timeout=config.replica.pool_timeout,
        statement_timeout_ms=config.replica.statement_timeout_ms
    )

    try:
        services = init_services(config)
        print(f"🔍 Reconciling pending journal entries (limit: {args.limit or 'all'})...")
        report = services.sweep.run(limit=args.limit)
    finally:
        close_connection_pool()

    print()
    print("=== Reconciliation Complete ===")
    print(f"Scanned:  {report.scanned}")
    print(f"Promoted: {report.promoted}")
    print(f"Failed:   {report.failed}")
    print(f"Skipped:  {report.skipped}")
    print(f"Vanished: {report.vanished}")
    if report.rate_limited:
        print("⚠️  Stopped early: Airtable rate limit")

    if report.errors:
        print()
        print("Errors:")
        for error in report.errors:
            print(f"  - {error}")

    if report.failed or report.errors:
        sys.exit(1)

    print("✅ Replica converged")


if __name__ == "__main__":
    main()
