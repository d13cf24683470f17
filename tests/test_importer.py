import json

import pytest

from finance_tracker import importer
from finance_tracker.errors import ImportFileError, ImportModeError, SettingsConflictError
from finance_tracker.importer import import_rows, run_import
from finance_tracker.models import UserSettings
from finance_tracker.store import (
    count_transactions,
    find_audit_entries,
    find_transactions,
    load_settings,
    save_settings,
)

ROWS = [
    {"Date": "15/01/2024", "Account": "Cash", "Category": "Food", "INR": "-250", "Income/Expense": "Expense"},
    {"Date": "16/01/2024", "Account": "Bank", "Category": "Salary", "INR": "5000", "Income/Expense": "Income"},
    {"Date": "17/01/2024", "Account": "Bank", "Category": "Cash", "INR": "1000", "Income/Expense": "Transfer"},
]


def test_override_replaces_transactions_and_settings(db, user_id):
    import_rows(db, user_id, ROWS, "override", timestamp=1)
    report = import_rows(db, user_id, ROWS[:1], "override", timestamp=2)

    assert report.inserted == 1
    assert report.deleted == 3
    assert count_transactions(db, user_id) == 1
    settings = load_settings(db, user_id)
    assert settings.accounts == ["Cash"]
    assert list(settings.categories) == ["Food"]
    assert report.to_stats() == {"total": 1, "skipped": 0}


def test_merge_inserts_only_new_rows(db, user_id):
    import_rows(db, user_id, ROWS[:2], "override", timestamp=1)

    report = import_rows(db, user_id, ROWS, "merge", timestamp=2)

    assert (report.new, report.duplicates) == (1, 2)
    assert count_transactions(db, user_id) == 3
    assert report.new_accounts == []
    assert report.to_stats() == {"total": 3, "skipped": 0, "new": 1, "duplicates": 2}


def test_rejected_rows_are_reported(db, user_id):
    rows = ROWS + [{"Date": "someday", "Account": "Cash"}, {"Date": "18/01/2024", "Account": "Cash"}]

    report = import_rows(db, user_id, rows, "override", timestamp=1)

    assert report.skipped == 2
    assert report.errors == ["Row 4: invalid_date (someday)", "Row 5: missing_type"]


def test_no_valid_rows_writes_nothing(db, user_id):
    import_rows(db, user_id, ROWS, "override", timestamp=1)

    with pytest.raises(ImportFileError) as excinfo:
        import_rows(db, user_id, [{"Date": "bad"}], "override", timestamp=2)

    assert excinfo.value.errors == ["Row 1: invalid_date (bad)"]
    assert count_transactions(db, user_id) == 3


def test_unknown_mode_fails_before_parsing(db, user_id):
    with pytest.raises(ImportModeError):
        run_import(db, user_id, "x.csv", b"not even read", "replace")


def test_override_rolls_back_when_insert_fails(db, user_id, monkeypatch):
    import_rows(db, user_id, ROWS, "override", timestamp=1)
    before = load_settings(db, user_id).to_document()

    def broken_insert(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(importer, "insert_transactions", broken_insert)

    with pytest.raises(RuntimeError, match="disk full"):
        import_rows(db, user_id, ROWS[:1], "override", timestamp=2)

    assert count_transactions(db, user_id) == 3
    assert load_settings(db, user_id).to_document() == before


def test_settings_conflict_is_retried(db, user_id, monkeypatch):
    calls = []
    real_save = importer.save_settings

    def flaky_save(db_, user_id_, settings):
        calls.append(settings.version)
        if len(calls) == 1:
            raise SettingsConflictError("lost race")
        return real_save(db_, user_id_, settings)

    monkeypatch.setattr(importer, "save_settings", flaky_save)

    import_rows(db, user_id, ROWS, "override", timestamp=1)

    assert len(calls) == 2
    assert count_transactions(db, user_id) == 3


def test_settings_conflict_gives_up_after_retries(db, user_id, monkeypatch):
    def always_conflict(*_args):
        raise SettingsConflictError("lost race")

    monkeypatch.setattr(importer, "save_settings", always_conflict)

    with pytest.raises(SettingsConflictError):
        import_rows(db, user_id, ROWS, "override", timestamp=1)

    assert count_transactions(db, user_id) == 0


def test_stale_settings_version_is_detected(db, user_id):
    save_settings(db, user_id, UserSettings(accounts=["Cash"]))
    stale = load_settings(db, user_id)
    fresh = load_settings(db, user_id)
    fresh.accounts.append("Bank")
    save_settings(db, user_id, fresh)

    stale.accounts.append("Wallet")
    with pytest.raises(SettingsConflictError):
        save_settings(db, user_id, stale)

    assert load_settings(db, user_id).accounts == ["Cash", "Bank"]


def test_colliding_ids_are_regenerated(db, user_id):
    rows = [dict(ROWS[0], ID="dup"), dict(ROWS[1], ID="dup")]
    report = import_rows(db, user_id, rows, "override", timestamp=5)

    assert report.regenerated_ids == 1
    assert [t.id for t in find_transactions(db, user_id)] == ["dup", "dup_5"]

    report = import_rows(db, user_id, [dict(ROWS[2], ID="dup")], "merge", timestamp=6)

    assert report.regenerated_ids == 1
    assert [t.id for t in find_transactions(db, user_id)][-1] == "dup_6"


def test_each_import_is_audited(db, user_id):
    import_rows(db, user_id, ROWS, "override", timestamp=1)
    import_rows(db, user_id, ROWS, "merge", timestamp=2)

    entries = find_audit_entries(db, user_id, "import")

    assert [entry["details"]["mode"] for entry in entries] == ["override", "merge"]
    assert entries[1]["details"]["duplicates"] == 3


def test_run_import_parses_csv(db, user_id):
    payload = "Date,Account,Category,INR,Income/Expense\n15/01/2024,Cash,Food,-250,Expense\n"

    report = run_import(db, user_id, "one.csv", payload.encode(), "merge", timestamp=1)

    assert report.to_stats() == {"total": 1, "skipped": 0, "new": 1, "duplicates": 0}
    stored = find_transactions(db, user_id)[0]
    assert json.loads(json.dumps(stored.to_document()))["INR"] == -250.0


def test_merge_reimport_matches_fractional_amounts(db, user_id):
    rows = [dict(ROWS[1], INR="12345.67")]
    import_rows(db, user_id, rows, "override", timestamp=1)

    report = import_rows(db, user_id, rows, "merge", timestamp=2)

    assert (report.new, report.duplicates) == (0, 1)


def test_file_row_numbers_include_blank_lines(db, user_id):
    payload = "Date,Account,Category,INR,Income/Expense\n15/01/2024,Cash,Food,-250,Expense\n\n\nsomeday,Cash,Food,-1,Expense\n"

    report = run_import(db, user_id, "gaps.csv", payload.encode(), "override", timestamp=1)

    assert report.errors == ["Row 4: invalid_date (someday)"]
    assert report.to_stats() == {"total": 1, "skipped": 1}
