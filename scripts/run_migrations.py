#!/usr/bin/env python3
"""
Apply the replica schema.

Runs every db/migrations/NNN_name.sql file in name order, one transaction
per file, then checks that the tables the dual-write service reads exist.
Migrations are written to be re-runnable (IF NOT EXISTS, CREATE OR REPLACE).

Usage:
    python scripts/run_migrations.py
    python scripts/run_migrations.py --check-only
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List

import psycopg
from dotenv import load_dotenv

MIGRATIONS_DIR = Path(__file__).parent.parent / 'db' / 'migrations'

# Tables the coordinator, directory and sweep query
REQUIRED_TABLES = ('projects', 'journal_entries')


def pending_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> List[Path]:
    """Migration files in the order they are applied."""
    if not migrations_dir.is_dir():
        raise FileNotFoundError(f"No migrations directory at {migrations_dir}")
    return sorted(migrations_dir.glob('*.sql'))


def apply_migrations(conn: psycopg.Connection, files: List[Path]) -> int:
    """
    Apply migration files in order.

    Stops at the first failing file after rolling it back; earlier files stay
    committed.

    Returns:
        Number of files applied
    """
    applied = 0
    for path in files:
        print(f"  {path.name} ... ", end='')
        try:
            with conn.cursor() as cur:
                cur.execute(path.read_text(encoding='utf-8'))
            conn.commit()
        except psycopg.Error:
            conn.rollback()
            print("failed")
            raise
        print("ok")
        applied += 1
    return applied


def missing_tables(conn: psycopg.Connection, tables=REQUIRED_TABLES) -> List[str]:
    """Required tables absent from the connected database."""
    with conn.cursor() as cur:
        cur.execute("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema()
            AND table_name = ANY(%s)
        """, (list(tables),))
        present = {row[0] for row in cur.fetchall()}
    return [t for t in tables if t not in present]


def main():
    parser = argparse.ArgumentParser(description="Apply the journal replica schema")
    parser.add_argument("--check-only", action="store_true", help="Only check required tables")
    parser.add_argument("--database-url", help="Database URL (or set DATABASE_URL env var)")
    args = parser.parse_args()

    load_dotenv()
    db_url = args.database_url or os.environ.get("DATABASE_URL")
    if not db_url:
        print("Error: DATABASE_URL not set. Use --database-url or set environment variable.")
        sys.exit(1)

    with psycopg.connect(db_url) as conn:
        if not args.check_only:
            try:
                files = pending_migrations()
                print(f"Applying {len(files)} migration file(s) from {MIGRATIONS_DIR}")
                apply_migrations(conn, files)
            except (FileNotFoundError, psycopg.Error) as e:
                print(f"Migration halted: {e}")
                sys.exit(1)

        missing = missing_tables(conn)

    if missing:
        print(f"Missing tables: {', '.join(missing)}")
        sys.exit(1)

    print(f"Replica schema ready ({', '.join(REQUIRED_TABLES)})")


if __name__ == '__main__':
    main()
