import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime, time

from .dates import split_date_time
from .models import (
    DEFAULT_CURRENCY,
    TRANSACTION_KINDS,
    TRANSFER_KINDS,
    TRANSFER_OUT,
    IncomeExpense,
    Rejected,
    Transaction,
    Transfer,
)

logger = logging.getLogger(__name__)

INVALID_ROW = "invalid_row"
INVALID_DATE = "invalid_date"
MISSING_TYPE = "missing_type"
UNKNOWN_TYPE = "unknown_type"
INCOMPLETE_TRANSFER = "incomplete_transfer"
MISSING_ACCOUNT_OR_CATEGORY = "missing_account_or_category"

FIELD_NAMES = [
    "Date",
    "Time",
    "Account",
    "FromAccount",
    "ToAccount",
    "Category",
    "Subcategory",
    "Note",
    "INR",
    "Income/Expense",
    "Description",
    "Amount",
    "Currency",
    "ID",
]
HEADER_ALIASES = {
    "Date": ["date", "transaction date", "date/time"],
    "Time": ["time"],
    "Account": ["account", "account name"],
    "FromAccount": ["fromaccount", "from account", "from_account"],
    "ToAccount": ["toaccount", "to account", "to_account"],
    "Category": ["category"],
    "Subcategory": ["subcategory", "sub category", "sub-category"],
    "Note": ["note", "notes", "memo"],
    "INR": ["inr"],
    "Income/Expense": ["income/expense", "income / expense", "type", "transaction type"],
    "Description": ["description", "details"],
    "Amount": ["amount"],
    "Currency": ["currency"],
    "ID": ["id", "transaction id"],
}
HEADER_LOOKUP = {alias: field for field, aliases in HEADER_ALIASES.items() for alias in aliases}

KIND_LOOKUP = {kind.lower(): kind for kind in TRANSACTION_KINDS}
KIND_LOOKUP.update({"transfer out": TRANSFER_OUT, "transfer_out": TRANSFER_OUT})

CURRENCY_NOISE = re.compile(r"[\s,$€£₹]|INR|Rs\.?", re.IGNORECASE)


def normalize_header_name(value):
    return " ".join((value or "").strip().lower().split())


def cell_text(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M:%S")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    return str(value).strip()


def parse_amount(value):
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        text = value
    else:
        text = CURRENCY_NOISE.sub("", cell_text(value))
        if text.startswith("(") and text.endswith(")"):
            text = f"-{text[1:-1]}"
    try:
        number = float(text)
    except (OverflowError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def canonicalize_row(raw_row):
    row = {}
    for key, value in raw_row.items():
        name = str(key).strip() if key is not None else ""
        if name in FIELD_NAMES:
            row[name] = value
    for key, value in raw_row.items():
        field = HEADER_LOOKUP.get(normalize_header_name(str(key) if key is not None else ""))
        if field and field not in row:
            row[field] = value
    return row


def generate_transaction_id(user_id, timestamp, row_index):
    return f"import_{user_id}_{timestamp}_{row_index}"


def transform_row(raw_row, user_id, row_index, timestamp):
    if not isinstance(raw_row, Mapping):
        return Rejected(row_index, INVALID_ROW)

    row = canonicalize_row(raw_row)

    parsed_date, parsed_time = split_date_time(row.get("Date"))
    if parsed_date is None:
        return Rejected(row_index, INVALID_DATE, cell_text(row.get("Date")))

    raw_kind = cell_text(row.get("Income/Expense"))
    if not raw_kind:
        return Rejected(row_index, MISSING_TYPE)
    kind = KIND_LOOKUP.get(normalize_header_name(raw_kind))
    if kind is None:
        return Rejected(row_index, UNKNOWN_TYPE, raw_kind)

    if kind in TRANSFER_KINDS:
        from_account = cell_text(row.get("Account")) or cell_text(row.get("FromAccount"))
        to_account = cell_text(row.get("Category")) or cell_text(row.get("ToAccount"))
        if not from_account or not to_account:
            return Rejected(row_index, INCOMPLETE_TRANSFER)
        detail = Transfer(from_account=from_account, to_account=to_account)
    else:
        account = cell_text(row.get("Account"))
        category = cell_text(row.get("Category"))
        if not account or not category:
            return Rejected(row_index, MISSING_ACCOUNT_OR_CATEGORY)
        detail = IncomeExpense(account=account, category=category, subcategory=cell_text(row.get("Subcategory")))

    return Transaction(
        user_id=user_id,
        id=cell_text(row.get("ID")) or generate_transaction_id(user_id, timestamp, row_index),
        date=parsed_date,
        kind=kind,
        detail=detail,
        inr=parse_amount(row.get("INR")),
        amount=cell_text(row.get("Amount")) or cell_text(row.get("INR")) or "0",
        time=cell_text(row.get("Time")) or parsed_time,
        note=cell_text(row.get("Note")),
        description=cell_text(row.get("Description")),
        currency=cell_text(row.get("Currency")) or DEFAULT_CURRENCY,
    )


def transform_rows(rows, user_id, timestamp, positions=None):
    """``positions`` gives each row's index in the source file; defaults to list order."""
    if positions is None:
        positions = range(len(rows))
    accepted = []
    rejections = []
    for row_index, raw_row in zip(positions, rows):
        result = transform_row(raw_row, user_id, row_index, timestamp)
        if isinstance(result, Rejected):
            logger.info("Skipping import row %s: %s", result.row_number, result.reason)
            rejections.append(result)
        else:
            accepted.append(result)
    return accepted, rejections
