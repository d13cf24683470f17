#!/usr/bin/env python3
import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from finance_tracker.db import connect_db, parse_database_config
from finance_tracker.db_migrations import apply_migrations, get_db_health


def table_counts(config):
    conn = connect_db(config)
    try:
        rows = conn.execute(
            """
            SELECT u.username, COUNT(t.id) AS total
            FROM users u
            LEFT JOIN transactions t ON t.user_id = u.id
            GROUP BY u.id, u.username
            ORDER BY u.username
            """
        ).fetchall()
        return {row["username"]: row["total"] for row in rows}
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Check and print DB schema health")
    parser.add_argument("db_path", nargs="?", default="instance/finance_tracker.sqlite", help="Path to SQLite DB (ignored when DATABASE_URL is postgres)")
    parser.add_argument("--migrate", action="store_true", help="Apply migrations before checking")
    parser.add_argument("--counts", action="store_true", help="Also print transaction counts per user")
    args = parser.parse_args()

    config = parse_database_config(args.db_path)
    if args.migrate:
        apply_migrations(config)

    report = get_db_health(config)
    if args.counts and not report["missing_tables"]:
        report["transactions_per_user"] = table_counts(config)
    print(json.dumps(report, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
