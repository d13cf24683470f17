from .errors import ImportModeError
from .models import MERGE, OVERRIDE


def extract_accounts(transactions):
    accounts = []
    seen = set()
    for transaction in transactions:
        for name in (transaction.account, transaction.from_account, transaction.to_account):
            if name and name not in seen:
                seen.add(name)
                accounts.append(name)
    return accounts


def extract_categories(transactions):
    categories = {}
    for transaction in transactions:
        # A transfer's Category is the destination account, not a classification.
        if transaction.is_transfer or not transaction.category:
            continue
        entry = categories.setdefault(transaction.category, {"type": transaction.kind, "subcategories": []})
        if transaction.subcategory and transaction.subcategory not in entry["subcategories"]:
            entry["subcategories"].append(transaction.subcategory)
    return categories


def reconcile(transactions, current_settings, mode):
    settings = current_settings.copy()
    accounts = extract_accounts(transactions)
    categories = extract_categories(transactions)

    if mode == OVERRIDE:
        settings.accounts = accounts
        settings.categories = categories
        return settings
    if mode != MERGE:
        raise ImportModeError(f"Unsupported import mode: {mode}")

    known_accounts = set(settings.accounts)
    for name in accounts:
        if name not in known_accounts:
            known_accounts.add(name)
            settings.accounts.append(name)

    for name, extracted in categories.items():
        existing = settings.categories.get(name)
        if existing is None:
            settings.categories[name] = extracted
            continue
        subcategories = existing.setdefault("subcategories", [])
        for subcategory in extracted["subcategories"]:
            if subcategory not in subcategories:
                subcategories.append(subcategory)
    return settings


def added_accounts(before, after):
    known = set(before.accounts)
    return [name for name in after.accounts if name not in known]


def added_categories(before, after):
    return [name for name in after.categories if name not in before.categories]
