"""Typed records for transactions and per-user settings.

Rows coming out of a spreadsheet are loose string-keyed mappings; everything
past the row transformer works with :class:`Transaction` instead.  The flat
legacy shape (``Account``/``Category`` doubling as transfer endpoints) only
exists in :meth:`Transaction.to_document` and :meth:`Transaction.from_document`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

INCOME = "Income"
EXPENSE = "Expense"
TRANSFER = "Transfer"
TRANSFER_OUT = "Transfer-Out"
TRANSACTION_KINDS = (INCOME, EXPENSE, TRANSFER, TRANSFER_OUT)
TRANSFER_KINDS = frozenset({TRANSFER, TRANSFER_OUT})

OVERRIDE = "override"
MERGE = "merge"
IMPORT_MODES = (OVERRIDE, MERGE)

DEFAULT_CURRENCY = "INR"
DEFAULT_CSV_CONVERSION_DETAILS = {
    "dateFormat": "DD/MM/YYYY",
    "currency": DEFAULT_CURRENCY,
    "delimiter": ",",
}

DEFAULT_ACCOUNTS = [
    "Cash",
    "Bank Account",
    "Credit Card",
    "Savings Account",
    "Investment Account",
    "Digital Wallet",
]
DEFAULT_CATEGORIES = {
    "Housing": {"type": EXPENSE, "subcategories": ["Rent", "Groceries", "Electricity", "Gas"]},
    "Travel": {"type": EXPENSE, "subcategories": []},
    "Utilities": {"type": EXPENSE, "subcategories": ["Recharge", "DTH", "Water"]},
    "Shopping": {"type": EXPENSE, "subcategories": []},
    "Health": {"type": EXPENSE, "subcategories": ["Medicines", "Hospital"]},
    "Subscriptions": {"type": EXPENSE, "subcategories": ["Netflix", "Prime"]},
    "Entertainment": {"type": EXPENSE, "subcategories": ["Cinema", "Outing"]},
    "Groceries": {"type": EXPENSE, "subcategories": []},
    "Dining": {"type": EXPENSE, "subcategories": []},
    "Salary": {"type": INCOME, "subcategories": []},
    "Bonus": {"type": INCOME, "subcategories": []},
    "Petty Cash": {"type": INCOME, "subcategories": []},
}
DEFAULT_ACCOUNT_GROUPS = [
    {"id": 1, "name": "Cash & Bank"},
    {"id": 2, "name": "Credit Cards"},
    {"id": 3, "name": "Investments"},
]
DEFAULT_ACCOUNT_MAPPING = {name: [name] for name in DEFAULT_ACCOUNTS}


@dataclass(frozen=True)
class IncomeExpense:
    account: str
    category: str
    subcategory: str = ""


@dataclass(frozen=True)
class Transfer:
    from_account: str
    to_account: str


@dataclass
class Transaction:
    user_id: Optional[int]
    id: str
    date: str
    kind: str
    detail: Union[IncomeExpense, Transfer]
    inr: float = 0.0
    amount: str = "0"
    time: str = ""
    note: str = ""
    description: str = ""
    currency: str = DEFAULT_CURRENCY

    @property
    def is_transfer(self) -> bool:
        return isinstance(self.detail, Transfer)

    @property
    def account(self) -> str:
        if self.is_transfer:
            return self.detail.from_account
        return self.detail.account

    @property
    def category(self) -> str:
        # Transfers keep the destination account in Category for older clients.
        if self.is_transfer:
            return self.detail.to_account
        return self.detail.category

    @property
    def subcategory(self) -> str:
        if self.is_transfer:
            return ""
        return self.detail.subcategory

    @property
    def from_account(self) -> str:
        return self.detail.from_account if self.is_transfer else ""

    @property
    def to_account(self) -> str:
        return self.detail.to_account if self.is_transfer else ""

    def fingerprint(self) -> tuple:
        return (
            self.date,
            self.account,
            self.category,
            self.subcategory,
            self.note,
            self.inr,
            self.kind,
        )

    def to_document(self) -> dict:
        return {
            "user": self.user_id,
            "Date": self.date,
            "Time": self.time,
            "Account": self.account,
            "FromAccount": self.from_account,
            "ToAccount": self.to_account,
            "Category": self.category,
            "Subcategory": self.subcategory,
            "Note": self.note,
            "INR": self.inr,
            "Income/Expense": self.kind,
            "Description": self.description,
            "Amount": self.amount,
            "Currency": self.currency,
            "ID": self.id,
        }

    @classmethod
    def from_document(cls, document) -> "Transaction":
        kind = document.get("Income/Expense") or ""
        if kind in TRANSFER_KINDS:
            detail = Transfer(
                from_account=document.get("FromAccount") or document.get("Account") or "",
                to_account=document.get("ToAccount") or document.get("Category") or "",
            )
        else:
            detail = IncomeExpense(
                account=document.get("Account") or "",
                category=document.get("Category") or "",
                subcategory=document.get("Subcategory") or "",
            )
        return cls(
            user_id=document.get("user"),
            id=document.get("ID") or "",
            date=document.get("Date") or "",
            kind=kind,
            detail=detail,
            inr=float(document.get("INR") or 0),
            amount=document.get("Amount") or "0",
            time=document.get("Time") or "",
            note=document.get("Note") or "",
            description=document.get("Description") or "",
            currency=document.get("Currency") or DEFAULT_CURRENCY,
        )


@dataclass(frozen=True)
class Rejected:
    row_index: int
    reason: str
    value: str = ""

    @property
    def row_number(self) -> int:
        return self.row_index + 1

    @property
    def message(self) -> str:
        if self.value:
            return f"Row {self.row_number}: {self.reason} ({self.value})"
        return f"Row {self.row_number}: {self.reason}"


@dataclass
class UserSettings:
    accounts: List[str] = field(default_factory=list)
    categories: Dict[str, dict] = field(default_factory=dict)
    account_groups: List[dict] = field(default_factory=list)
    account_mapping: Dict[str, List[str]] = field(default_factory=dict)
    csv_conversion_details: dict = field(default_factory=lambda: dict(DEFAULT_CSV_CONVERSION_DETAILS))
    version: int = 0

    def to_document(self) -> dict:
        return {
            "accounts": list(self.accounts),
            "categories": copy.deepcopy(self.categories),
            "accountGroups": copy.deepcopy(self.account_groups),
            "accountMapping": copy.deepcopy(self.account_mapping),
            "csvConversionDetails": dict(self.csv_conversion_details),
        }

    @classmethod
    def from_document(cls, document, version=0) -> "UserSettings":
        document = copy.deepcopy(document or {})
        categories = {}
        for name, entry in (document.get("categories") or {}).items():
            entry = entry or {}
            categories[name] = {
                "type": entry.get("type") or EXPENSE,
                "subcategories": list(entry.get("subcategories") or []),
            }
        return cls(
            accounts=list(document.get("accounts") or []),
            categories=categories,
            account_groups=list(document.get("accountGroups") or []),
            account_mapping={k: list(v or []) for k, v in (document.get("accountMapping") or {}).items()},
            csv_conversion_details=dict(document.get("csvConversionDetails") or DEFAULT_CSV_CONVERSION_DETAILS),
            version=version,
        )

    def copy(self) -> "UserSettings":
        return UserSettings.from_document(self.to_document(), version=self.version)


def default_settings():
    return UserSettings.from_document(
        {
            "accounts": DEFAULT_ACCOUNTS,
            "categories": DEFAULT_CATEGORIES,
            "accountGroups": DEFAULT_ACCOUNT_GROUPS,
            "accountMapping": DEFAULT_ACCOUNT_MAPPING,
            "csvConversionDetails": DEFAULT_CSV_CONVERSION_DETAILS,
        }
    )
