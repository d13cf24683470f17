import pytest

from finance_tracker.errors import ImportModeError
from finance_tracker.models import EXPENSE, INCOME, TRANSFER, IncomeExpense, Transaction, Transfer, UserSettings, default_settings
from finance_tracker.reconcile import added_accounts, extract_accounts, extract_categories, reconcile


def expense(account, category, subcategory=""):
    return Transaction(1, "e", "15/01/2024", EXPENSE, IncomeExpense(account, category, subcategory), inr=-10.0)


def income(account, category):
    return Transaction(1, "i", "15/01/2024", INCOME, IncomeExpense(account, category), inr=10.0)


def transfer(from_account, to_account):
    return Transaction(1, "t", "15/01/2024", TRANSFER, Transfer(from_account, to_account), inr=10.0)


BATCH = [
    expense("Cash", "Food", "Lunch"),
    expense("Cash", "Food", "Dinner"),
    expense("Cash", "Food", "Lunch"),
    income("Bank", "Salary"),
    transfer("Bank", "Wallet"),
]


def test_extract_accounts_includes_transfer_endpoints():
    assert extract_accounts(BATCH) == ["Cash", "Bank", "Wallet"]


def test_extract_categories_skips_transfers():
    categories = extract_categories(BATCH)

    assert categories == {
        "Food": {"type": EXPENSE, "subcategories": ["Lunch", "Dinner"]},
        "Salary": {"type": INCOME, "subcategories": []},
    }
    assert "Wallet" not in categories


def test_override_ignores_prior_settings():
    from_defaults = reconcile(BATCH, default_settings(), "override")
    from_empty = reconcile(BATCH, UserSettings(), "override")

    assert from_defaults.accounts == from_empty.accounts == ["Cash", "Bank", "Wallet"]
    assert from_defaults.categories == from_empty.categories
    assert from_defaults.account_groups == default_settings().account_groups


def test_merge_is_monotonic():
    current = default_settings()
    current.categories["Food"] = {"type": EXPENSE, "subcategories": ["Snacks"]}

    merged = reconcile(BATCH, current, "merge")

    assert set(current.accounts) <= set(merged.accounts)
    assert merged.accounts[: len(current.accounts)] == current.accounts
    for name, entry in current.categories.items():
        assert name in merged.categories
        assert set(entry["subcategories"]) <= set(merged.categories[name]["subcategories"])
    assert merged.categories["Food"]["subcategories"] == ["Snacks", "Lunch", "Dinner"]
    assert added_accounts(current, merged) == ["Bank", "Wallet"]


def test_merge_keeps_existing_category_type():
    current = UserSettings(categories={"Salary": {"type": EXPENSE, "subcategories": []}})

    merged = reconcile([income("Bank", "Salary")], current, "merge")

    assert merged.categories["Salary"]["type"] == EXPENSE


def test_reconcile_does_not_mutate_input():
    current = default_settings()
    snapshot = current.to_document()

    reconcile(BATCH, current, "merge")

    assert current.to_document() == snapshot


def test_unknown_mode_is_rejected():
    with pytest.raises(ImportModeError):
        reconcile(BATCH, UserSettings(), "append")
