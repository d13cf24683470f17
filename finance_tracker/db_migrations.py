import argparse
from datetime import datetime

from .db import connect_db, parse_database_config


REQUIRED_TABLES = {
    "users": {
        "columns": {"id", "username", "password_hash"},
        "indexes": set(),
    },
    "transactions": {
        "columns": {
            "id",
            "user_id",
            "external_id",
            "date",
            "time",
            "account",
            "from_account",
            "to_account",
            "category",
            "subcategory",
            "note",
            "description",
            "inr",
            "amount",
            "kind",
            "currency",
            "created_at",
        },
        "indexes": {"uq_transactions_user_external_id", "idx_transactions_user_date"},
    },
    "user_settings": {
        "columns": {"id", "user_id", "document", "version", "updated_at"},
        "indexes": set(),
    },
    "audit_logs": {
        "columns": {"id", "user_id", "action", "meta_json", "created_at"},
        "indexes": {"idx_audit_logs_user_id"},
    },
}


def backend_name(conn):
    return getattr(conn, "backend", "sqlite")


def table_exists(conn, name):
    if backend_name(conn) == "postgres":
        sql = "SELECT 1 FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = ?"
    else:
        sql = "SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?"
    return conn.execute(sql, (name,)).fetchone() is not None


def index_exists(conn, index_name):
    if backend_name(conn) == "postgres":
        sql = "SELECT 1 FROM pg_indexes WHERE schemaname = current_schema() AND indexname = ?"
    else:
        sql = "SELECT 1 FROM sqlite_master WHERE type='index' AND name = ?"
    return conn.execute(sql, (index_name,)).fetchone() is not None


def get_table_columns(conn, table):
    if backend_name(conn) == "postgres":
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_schema = current_schema() AND table_name = ?",
            (table,),
        ).fetchall()
        return {row[0] for row in rows}

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}


def ensure_table(conn, create_sql):
    if backend_name(conn) == "postgres":
        create_sql = create_sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGSERIAL PRIMARY KEY")
    conn.execute(create_sql)


def create_index_if_missing(conn, index_name, create_sql):
    if not index_exists(conn, index_name):
        conn.execute(create_sql)


def migration_001(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            external_id TEXT NOT NULL,
            date TEXT NOT NULL,
            time TEXT NOT NULL DEFAULT '',
            account TEXT NOT NULL DEFAULT '',
            from_account TEXT NOT NULL DEFAULT '',
            to_account TEXT NOT NULL DEFAULT '',
            category TEXT NOT NULL DEFAULT '',
            subcategory TEXT NOT NULL DEFAULT '',
            note TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            inr DOUBLE PRECISION NOT NULL DEFAULT 0,
            amount TEXT NOT NULL DEFAULT '0',
            kind TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'INR',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS user_settings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER UNIQUE NOT NULL,
            document TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT,
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            action TEXT NOT NULL,
            meta_json TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
        """,
    )


def migration_002(conn):
    create_index_if_missing(
        conn,
        "uq_transactions_user_external_id",
        "CREATE UNIQUE INDEX uq_transactions_user_external_id ON transactions(user_id, external_id)",
    )
    create_index_if_missing(
        conn,
        "idx_transactions_user_date",
        "CREATE INDEX idx_transactions_user_date ON transactions(user_id, date)",
    )
    create_index_if_missing(
        conn,
        "idx_audit_logs_user_id",
        "CREATE INDEX idx_audit_logs_user_id ON audit_logs(user_id)",
    )


MIGRATIONS = [
    (1, migration_001),
    (2, migration_002),
]


def _ensure_schema_version_table(conn):
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )


def current_schema_version(conn):
    _ensure_schema_version_table(conn)
    row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
    return int(row[0] or 0)


def _run_migrations(conn):
    _ensure_schema_version_table(conn)
    applied_versions = {row[0] for row in conn.execute("SELECT version FROM schema_version").fetchall()}

    for version, migration_fn in MIGRATIONS:
        if version in applied_versions:
            continue
        try:
            migration_fn(conn)
            conn.execute(
                "INSERT INTO schema_version(version, applied_at) VALUES (?, ?)",
                (version, datetime.utcnow().isoformat(timespec="seconds") + "Z"),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    health = inspect_db_health(conn)
    if health["missing_tables"] or any(health["missing_columns"].values()):
        raise RuntimeError(
            "Schema invariants failed after migrations. "
            f"Missing tables={health['missing_tables']}, missing columns={health['missing_columns']}"
        )


def apply_migrations(db_or_config_or_path):
    if hasattr(db_or_config_or_path, "execute"):
        _run_migrations(db_or_config_or_path)
        return

    config = db_or_config_or_path if isinstance(db_or_config_or_path, dict) else parse_database_config(db_or_config_or_path)
    conn = connect_db(config)
    try:
        _run_migrations(conn)
    finally:
        conn.close()


def inspect_db_health(conn):
    _ensure_schema_version_table(conn)
    missing_tables = []
    missing_columns = {}
    missing_indexes = []

    for table_name, table_spec in REQUIRED_TABLES.items():
        if not table_exists(conn, table_name):
            missing_tables.append(table_name)
            missing_columns[table_name] = sorted(table_spec["columns"])
            missing_indexes.extend(table_spec["indexes"])
            continue

        table_cols = get_table_columns(conn, table_name)
        missing_columns[table_name] = sorted(col for col in table_spec["columns"] if col not in table_cols)
        missing_indexes.extend(idx for idx in table_spec["indexes"] if not index_exists(conn, idx))

    return {
        "ok": not missing_tables and not any(missing_columns.values()) and not missing_indexes,
        "schema_version": current_schema_version(conn),
        "missing_tables": missing_tables,
        "missing_columns": missing_columns,
        "missing_indexes": sorted(set(missing_indexes)),
    }


def get_db_health(db_config_or_path):
    config = db_config_or_path if isinstance(db_config_or_path, dict) else parse_database_config(db_config_or_path)
    conn = connect_db(config)
    try:
        return inspect_db_health(conn)
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Check finance tracker DB schema health")
    parser.add_argument("db_path", help="Path to SQLite DB file")
    args = parser.parse_args()
    print(get_db_health(args.db_path))


if __name__ == "__main__":
    main()
