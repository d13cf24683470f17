"""Import pipeline: parse a file, transform rows, write them, reconcile settings.

The write phase (transactions, settings and the audit entry) runs inside a
single database transaction. Any failure rolls the whole import back,
including the delete step of an override import.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .duplicates import find_new
from .errors import ImportFileError, ImportModeError, SettingsConflictError
from .files import read_import_file
from .models import IMPORT_MODES, MERGE, OVERRIDE, Rejected, Transaction, UserSettings
from .reconcile import added_accounts, added_categories, reconcile
from .rows import transform_rows
from .store import (
    delete_transactions,
    find_external_ids,
    find_transactions,
    insert_transactions,
    load_settings,
    log_audit,
    save_settings,
)

logger = logging.getLogger(__name__)

SETTINGS_UPDATE_ATTEMPTS = 3


@dataclass
class ImportReport:
    mode: str
    total_rows: int
    accepted: int
    inserted: int = 0
    new: Optional[int] = None
    duplicates: Optional[int] = None
    deleted: int = 0
    rejections: List[Rejected] = field(default_factory=list)
    new_accounts: List[str] = field(default_factory=list)
    new_categories: List[str] = field(default_factory=list)
    regenerated_ids: int = 0

    @property
    def skipped(self) -> int:
        return self.total_rows - self.accepted

    @property
    def errors(self) -> List[str]:
        return [rejection.message for rejection in self.rejections]

    @property
    def message(self) -> str:
        if self.mode == MERGE:
            return (
                f"Import completed: {self.new} new transactions added, "
                f"{self.duplicates} duplicates skipped, {self.skipped} invalid rows skipped"
            )
        return f"Import completed: {self.inserted} transactions imported, {self.skipped} rows skipped"

    def to_stats(self) -> dict:
        stats = {"total": self.accepted, "skipped": self.skipped}
        if self.mode == MERGE:
            stats["new"] = self.new
            stats["duplicates"] = self.duplicates
        return stats


def validate_mode(mode):
    mode = str(mode or OVERRIDE).strip().lower()
    if mode not in IMPORT_MODES:
        raise ImportModeError(f"Unsupported import mode: {mode}. Use one of: {', '.join(IMPORT_MODES)}")
    return mode


def run_import(db, user_id, filename, payload, mode=OVERRIDE, timestamp=None, mimetype=None):
    mode = validate_mode(mode)
    rows, positions = read_import_file(filename, payload, mimetype)
    logger.info("Parsed %s rows from %s for user %s", len(rows), filename, user_id)
    return import_rows(db, user_id, rows, mode, timestamp=timestamp, positions=positions)


def import_rows(db, user_id, rows, mode=OVERRIDE, timestamp=None, positions=None):
    mode = validate_mode(mode)
    if timestamp is None:
        timestamp = int(time.time() * 1000)

    accepted, rejections = transform_rows(rows, user_id, timestamp, positions)
    if not accepted:
        raise ImportFileError(
            "No valid transactions found in file",
            errors=[rejection.message for rejection in rejections],
        )

    report = ImportReport(mode=mode, total_rows=len(rows), accepted=len(accepted), rejections=rejections)
    try:
        if mode == OVERRIDE:
            report.regenerated_ids = ensure_unique_ids(accepted, set(), timestamp)
            report.deleted = delete_transactions(db, user_id)
            report.inserted = insert_transactions(db, user_id, accepted)
        else:
            partition = find_new(find_transactions(db, user_id), accepted)
            report.regenerated_ids = ensure_unique_ids(partition["new"], find_external_ids(db, user_id), timestamp)
            report.inserted = insert_transactions(db, user_id, partition["new"])
            report.new = len(partition["new"])
            report.duplicates = len(partition["duplicates"])

        before, after = reconcile_settings(db, user_id, accepted, mode)
        report.new_accounts = added_accounts(before, after)
        report.new_categories = added_categories(before, after)

        log_audit(db, user_id, "import", {"mode": mode, **report.to_stats()})
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Import for user %s failed, rolled back", user_id)
        raise

    logger.info(
        "Imported %s of %s rows for user %s (mode=%s, inserted=%s, skipped=%s)",
        report.accepted,
        report.total_rows,
        user_id,
        mode,
        report.inserted,
        report.skipped,
    )
    return report


def ensure_unique_ids(transactions, taken_ids, timestamp):
    """Give every transaction an ID not in ``taken_ids`` and not repeated in the batch."""
    taken = set(taken_ids)
    regenerated = 0
    for transaction in transactions:
        if transaction.id not in taken:
            taken.add(transaction.id)
            continue
        candidate = f"{transaction.id}_{timestamp}"
        suffix = 1
        while candidate in taken:
            candidate = f"{transaction.id}_{timestamp}_{suffix}"
            suffix += 1
        logger.warning("Transaction ID %s already in use, stored as %s", transaction.id, candidate)
        transaction.id = candidate
        taken.add(candidate)
        regenerated += 1
    return regenerated


def reconcile_settings(db, user_id, transactions: List[Transaction], mode):
    """Fold the imported accounts and categories into the stored settings.

    Returns ``(before, after)``. A concurrent writer bumping the version
    makes us reload and recompute, up to ``SETTINGS_UPDATE_ATTEMPTS`` times.
    """
    for attempt in range(1, SETTINGS_UPDATE_ATTEMPTS + 1):
        before = load_settings(db, user_id) or UserSettings()
        after = reconcile(transactions, before, mode)
        try:
            save_settings(db, user_id, after)
        except SettingsConflictError:
            logger.warning("Settings conflict for user %s (attempt %s/%s)", user_id, attempt, SETTINGS_UPDATE_ATTEMPTS)
            continue
        return before, after
    raise SettingsConflictError(
        f"Settings for user {user_id} could not be updated after {SETTINGS_UPDATE_ATTEMPTS} attempts"
    )
