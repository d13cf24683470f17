import json
from datetime import datetime

from .errors import SettingsConflictError
from .models import Transaction, UserSettings

# table column -> transaction document key
TRANSACTION_COLUMNS = {
    "external_id": "ID",
    "date": "Date",
    "time": "Time",
    "account": "Account",
    "from_account": "FromAccount",
    "to_account": "ToAccount",
    "category": "Category",
    "subcategory": "Subcategory",
    "note": "Note",
    "inr": "INR",
    "amount": "Amount",
    "kind": "Income/Expense",
    "description": "Description",
    "currency": "Currency",
}


def _utc_now():
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"


def insert_transactions(db, user_id, transactions):
    columns = ["user_id", *TRANSACTION_COLUMNS]
    placeholders = ", ".join("?" for _ in columns)
    rows = []
    for transaction in transactions:
        document = transaction.to_document()
        rows.append((user_id, *(document[key] for key in TRANSACTION_COLUMNS.values())))
    db.executemany(
        f"INSERT INTO transactions ({', '.join(columns)}) VALUES ({placeholders})",
        rows,
    )
    return len(rows)


def delete_transactions(db, user_id):
    cur = db.execute("DELETE FROM transactions WHERE user_id = ?", (user_id,))
    return max(cur.rowcount, 0)


def find_transactions(db, user_id):
    rows = db.execute(
        f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM transactions WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()
    transactions = []
    for row in rows:
        document = {key: row[column] for column, key in TRANSACTION_COLUMNS.items()}
        document["user"] = user_id
        transactions.append(Transaction.from_document(document))
    return transactions


def find_external_ids(db, user_id):
    rows = db.execute("SELECT external_id FROM transactions WHERE user_id = ?", (user_id,)).fetchall()
    return {row["external_id"] for row in rows}


def count_transactions(db, user_id):
    row = db.execute("SELECT COUNT(*) AS total FROM transactions WHERE user_id = ?", (user_id,)).fetchone()
    return int(row["total"] or 0)


def load_settings(db, user_id):
    row = db.execute(
        "SELECT document, version FROM user_settings WHERE user_id = ?",
        (user_id,),
    ).fetchone()
    if row is None:
        return None
    return UserSettings.from_document(json.loads(row["document"] or "{}"), version=int(row["version"]))


def save_settings(db, user_id, settings):
    """Write ``settings`` only if the stored version still matches ``settings.version``.

    Version 0 means the document has never been saved. On success the
    version is bumped in place; on a lost race :class:`SettingsConflictError`
    is raised and nothing is written.
    """
    payload = json.dumps(settings.to_document())
    if settings.version == 0:
        cur = db.execute(
            """
            INSERT INTO user_settings (user_id, document, version, updated_at)
            VALUES (?, ?, 1, ?)
            ON CONFLICT(user_id) DO NOTHING
            """,
            (user_id, payload, _utc_now()),
        )
    else:
        cur = db.execute(
            "UPDATE user_settings SET document = ?, version = version + 1, updated_at = ? WHERE user_id = ? AND version = ?",
            (payload, _utc_now(), user_id, settings.version),
        )
    if cur.rowcount != 1:
        raise SettingsConflictError(f"Settings for user {user_id} changed since version {settings.version}")
    settings.version += 1
    return settings


def get_or_create_settings(db, user_id, factory=UserSettings):
    settings = load_settings(db, user_id)
    if settings is not None:
        return settings
    settings = factory()
    try:
        save_settings(db, user_id, settings)
    except SettingsConflictError:
        # created by a concurrent request
        return load_settings(db, user_id)
    return settings


def reset_settings(db, user_id):
    current = load_settings(db, user_id)
    settings = UserSettings(version=current.version if current else 0)
    return save_settings(db, user_id, settings)


def log_audit(db, user_id, action, details=None):
    db.execute(
        "INSERT INTO audit_logs (user_id, action, meta_json) VALUES (?, ?, ?)",
        (user_id, action, json.dumps(details or {})),
    )


def find_audit_entries(db, user_id, action=None):
    sql = "SELECT action, meta_json, created_at FROM audit_logs WHERE user_id = ?"
    params = [user_id]
    if action is not None:
        sql += " AND action = ?"
        params.append(action)
    rows = db.execute(sql + " ORDER BY id", tuple(params)).fetchall()
    return [
        {"action": row["action"], "details": json.loads(row["meta_json"] or "{}"), "created_at": row["created_at"]}
        for row in rows
    ]
