#!/usr/bin/env python3
"""
Database Migration Runner

Applies migrations/*.sql in filename order, each in its own transaction.
Applied files are recorded in a `schema_migrations` table, so running the
script twice is a no-op.

    DATABASE_URL=postgresql://... python scripts/run_migrations.py [--dry-run]
"""
import argparse
import os
import sys
from pathlib import Path

import psycopg2

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def normalize_database_url(database_url: str) -> str:
    """psycopg2 understands neither postgres:// nor the +asyncpg driver suffix"""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url.replace("postgresql+asyncpg://", "postgresql://", 1)


def get_db_connection():
    """Connection from DATABASE_URL, the same variable the service reads"""
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)
    return psycopg2.connect(normalize_database_url(database_url))


def ensure_migrations_table(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                id SERIAL PRIMARY KEY,
                filename VARCHAR(255) UNIQUE NOT NULL,
                executed_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
            )
        """)
    conn.commit()


def applied_migrations(conn) -> set[str]:
    with conn.cursor() as cur:
        cur.execute("SELECT filename FROM schema_migrations")
        return {row[0] for row in cur.fetchall()}


def pending_migrations(migrations_dir: Path, applied: set[str]) -> list[Path]:
    if not migrations_dir.exists():
        return []
    return [f for f in sorted(migrations_dir.glob("*.sql")) if f.name not in applied]


def apply_migration(conn, migration_file: Path) -> None:
    """Run one file and record it in the same transaction"""
    print(f"  Applying: {migration_file.name}")
    with conn.cursor() as cur:
        cur.execute(migration_file.read_text())
        cur.execute(
            "INSERT INTO schema_migrations (filename) VALUES (%s)",
            (migration_file.name,)
        )
    conn.commit()
    print(f"  Done: {migration_file.name}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Apply pending SQL migrations")
    parser.add_argument("--dry-run", action="store_true", help="list pending files only")
    parser.add_argument(
        "--dir", type=Path, default=MIGRATIONS_DIR, help="migrations directory"
    )
    args = parser.parse_args(argv)

    print(f"Migrations directory: {args.dir}")
    conn = get_db_connection()

    try:
        ensure_migrations_table(conn)
        pending = pending_migrations(args.dir, applied_migrations(conn))

        if not pending:
            print("No pending migrations")
            return 0

        if args.dry_run:
            for migration_file in pending:
                print(f"  Pending: {migration_file.name}")
            return 0

        for migration_file in pending:
            apply_migration(conn, migration_file)

        print(f"Applied {len(pending)} migrations")
        return 0

    except psycopg2.Error as e:
        print(f"ERROR: Migration failed: {e}")
        conn.rollback()
        return 1
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
