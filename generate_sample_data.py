import argparse
import csv
import random
from datetime import date, timedelta

from werkzeug.security import generate_password_hash

from finance_tracker import create_app
from finance_tracker.importer import import_rows
from finance_tracker.models import DEFAULT_ACCOUNTS, DEFAULT_CATEGORIES, INCOME, TRANSFER
from finance_tracker.rows import FIELD_NAMES

AMOUNT_RANGES = {
    "Salary": (25000, 150000),
    "Bonus": (5000, 50000),
    "Petty Cash": (100, 2000),
    "Rent": (8000, 25000),
    "Groceries": (500, 3000),
    "Electricity": (800, 2500),
    "Hospital": (1000, 15000),
    "Shopping": (500, 5000),
    "Travel": (1000, 10000),
}
NOTES = {
    "Salary": ["Monthly salary", "Salary credit", "Payroll"],
    "Rent": ["House rent", "Monthly rent"],
    "Groceries": ["Weekly groceries", "Household items"],
    "Dining": ["Restaurant", "Food delivery"],
    "Travel": ["Business travel", "Vacation"],
}


def sample_row(day, index):
    if random.random() < 0.1:
        from_account, to_account = random.sample(DEFAULT_ACCOUNTS, 2)
        amount = random.randint(500, 20000)
        return {
            "Date": day.strftime("%d/%m/%Y"),
            "Account": from_account,
            "Category": to_account,
            "Note": "Account transfer",
            "INR": amount,
            "Income/Expense": TRANSFER,
            "Amount": str(amount),
        }

    category = random.choice(list(DEFAULT_CATEGORIES))
    entry = DEFAULT_CATEGORIES[category]
    subcategory = random.choice(entry["subcategories"]) if entry["subcategories"] else ""
    low, high = AMOUNT_RANGES.get(subcategory) or AMOUNT_RANGES.get(category) or (100, 1000)
    amount = random.randint(low, high)
    inr = amount if entry["type"] == INCOME else -amount
    return {
        "Date": day.strftime("%d/%m/%Y"),
        "Time": f"{random.randint(8, 21):02d}:{random.randint(0, 59):02d}:00",
        "Account": random.choice(DEFAULT_ACCOUNTS),
        "Category": category,
        "Subcategory": subcategory,
        "Note": random.choice(NOTES.get(subcategory) or NOTES.get(category) or ["Transaction"]),
        "INR": inr,
        "Income/Expense": entry["type"],
        "Description": f"{category} transaction {index + 1}",
        "Amount": str(amount),
        "Currency": "INR",
    }


def main():
    parser = argparse.ArgumentParser(description="Create a demo user with random transactions")
    parser.add_argument("--count", type=int, default=100)
    parser.add_argument("--csv", help="Also write the generated rows to this CSV file")
    args = parser.parse_args()

    start = date.today() - timedelta(days=180)
    rows = [sample_row(start + timedelta(days=random.randint(0, 180)), i) for i in range(args.count)]

    if args.csv:
        with open(args.csv, "w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=FIELD_NAMES, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)

    app = create_app()
    with app.app_context():
        app.init_db()
        db = app.get_db()

        user = db.execute("SELECT id FROM users WHERE username = 'demo'").fetchone()
        if user is None:
            db.execute(
                "INSERT INTO users (username, password_hash) VALUES (?, ?)",
                ("demo", generate_password_hash("demo123")),
            )
            db.commit()
            user = db.execute("SELECT id FROM users WHERE username = 'demo'").fetchone()

        report = import_rows(db, user["id"], rows, "override")
    print(f"Sample data generated ({report.inserted} transactions). Login with demo / demo123")


if __name__ == "__main__":
    main()
