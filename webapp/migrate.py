#!/usr/bin/env python3
"""
Database Migration Runner for the status page

Applies the SQL files in migrations/ in filename order and records each one
in schema_migrations with its checksum, so re-running is a no-op.

Usage:
    python migrate.py              # Apply all pending migrations
    python migrate.py --status     # Show migration status
    python migrate.py --dry-run    # Show what would be applied
"""

import os
import sys
import glob
import hashlib
import time
import argparse
import mysql.connector
from mysql.connector import Error as MySQLError

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'migrations')
TRACKING_MIGRATION = '000_migrations_tracking.sql'

# Duplicate column/key/entry errors are expected from idempotent migrations
IGNORED_ERRNOS = (1060, 1061, 1062, 1068)


def get_db_connection():
    """Get a database connection using environment variables"""
    return mysql.connector.connect(
        host=os.getenv('DB_HOST', 'localhost'),
        user=os.getenv('DB_USER', 'statuspage_app'),
        password=os.getenv('DB_PASSWORD'),
        database=os.getenv('DB_NAME', 'statuspage_db'),
        autocommit=False,
        consume_results=True
    )


def calculate_checksum(filepath):
    """Calculate SHA256 checksum of a file"""
    with open(filepath, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()


def split_statements(sql_content):
    """Split a migration into statements, dropping comment-only lines"""
    statements = []
    current = []

    for line in sql_content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('--'):
            continue
        current.append(line)
        if stripped.endswith(';'):
            statement = '\n'.join(current).strip().rstrip(';').strip()
            if statement:
                statements.append(statement)
            current = []

    trailing = '\n'.join(current).strip()
    if trailing:
        statements.append(trailing)
    return statements


def migration_files():
    """All migration files except the tracking table, in order"""
    return [
        path for path in sorted(glob.glob(os.path.join(MIGRATIONS_DIR, '*.sql')))
        if os.path.basename(path) != TRACKING_MIGRATION
    ]


def ensure_migrations_table(conn, cursor):
    """Create schema_migrations if it does not exist yet"""
    with open(os.path.join(MIGRATIONS_DIR, TRACKING_MIGRATION), 'r') as f:
        for statement in split_statements(f.read()):
            cursor.execute(statement)
    conn.commit()


def get_applied_migrations(cursor):
    """Map of applied migration filename to checksum"""
    cursor.execute("SELECT filename, checksum FROM schema_migrations")
    return {row[0]: row[1] for row in cursor.fetchall()}


def get_pending_migrations(applied):
    """Migration files that have not been applied, warning on edited ones"""
    pending = []
    for filepath in migration_files():
        filename = os.path.basename(filepath)
        if filename not in applied:
            pending.append(filepath)
        elif applied[filename] != calculate_checksum(filepath):
            print(f"WARNING: Migration {filename} has been modified since it was applied!")
    return pending


def apply_migration(cursor, filepath):
    """Apply a single migration file and record it"""
    filename = os.path.basename(filepath)
    print(f"Applying migration: {filename}")

    with open(filepath, 'r') as f:
        statements = split_statements(f.read())

    start_time = time.time()
    for statement in statements:
        try:
            cursor.execute(statement)
        except MySQLError as e:
            if e.errno in IGNORED_ERRNOS:
                print(f"  Note: {e.msg} (continuing)")
            else:
                raise
    execution_time_ms = int((time.time() - start_time) * 1000)

    cursor.execute("""
        INSERT INTO schema_migrations (filename, checksum, applied_by, execution_time_ms)
        VALUES (%s, %s, %s, %s)
    """, (filename, calculate_checksum(filepath), os.getenv('USER', 'migrate.py'), execution_time_ms))

    print(f"  Applied in {execution_time_ms}ms")


def run_migrations(dry_run=False):
    """Run all pending migrations, stopping at the first failure"""
    conn = None
    try:
        conn = get_db_connection()
        cursor = conn.cursor()
        ensure_migrations_table(conn, cursor)

        pending = get_pending_migrations(get_applied_migrations(cursor))
        if not pending:
            print("No pending migrations.")
            return True

        print(f"Found {len(pending)} pending migration(s):")
        for filepath in pending:
            print(f"  - {os.path.basename(filepath)}")

        if dry_run:
            print("\nDry run mode - no changes applied.")
            return True

        for filepath in pending:
            try:
                apply_migration(cursor, filepath)
                conn.commit()
            except Exception as e:
                conn.rollback()
                print(f"ERROR applying {os.path.basename(filepath)}: {e}")
                return False

        print(f"\nSuccessfully applied {len(pending)} migration(s).")
        return True

    except MySQLError as e:
        print(f"Database error: {e}")
        return False
    finally:
        if conn:
            conn.close()


def show_status():
    """Print applied and pending migrations"""
    conn = None
    try:
        conn = get_db_connection()
        cursor = conn.cursor()
        ensure_migrations_table(conn, cursor)
        applied = get_applied_migrations(cursor)

        print("Migration Status:")
        print("=" * 60)
        for filepath in migration_files():
            filename = os.path.basename(filepath)
            mark = 'x' if filename in applied else ' '
            print(f"  [{mark}] {filename}")
    except MySQLError as e:
        print(f"Database error: {e}")
    finally:
        if conn:
            conn.close()


def main():
    parser = argparse.ArgumentParser(description='Database Migration Runner')
    parser.add_argument('--status', action='store_true', help='Show migration status')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be applied without applying')
    args = parser.parse_args()

    if not os.getenv('DB_PASSWORD'):
        print("ERROR: DB_PASSWORD environment variable is required.")
        sys.exit(1)

    if args.status:
        show_status()
    else:
        success = run_migrations(dry_run=args.dry_run)
        sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
