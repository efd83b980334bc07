import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence

from models import MAX_AMOUNT_CENTS, Transaction
from periods import short_date

EXPORT_HEADER = "Date,Type,Category,Amount,Note,Created At"
THOUSANDS_PATTERN = re.compile(r"^-?[0-9]{1,3}(,[0-9]{3})+(\.[0-9]*)?$")


def quote_csv_value(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%d.%m.%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> int:
    """Parse a dollar amount like ``1,234.56`` into integer cents.

    Commas are only accepted as thousands separators.
    """
    clean = value.strip().replace("$", "").replace(" ", "")
    if "," in clean:
        if not THOUSANDS_PATTERN.match(clean):
            raise ValueError("Invalid amount")
        clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount * 100 > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount must not exceed {format_amount(MAX_AMOUNT_CENTS)}")
    try:
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents < 1:
        raise ValueError("Amount must be at least 0.01")
    return cents


def format_amount(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_transactions(transactions: Sequence[Transaction]) -> str:
    """Render transactions as CSV text, one ``\\n``-terminated line per row.

    Text columns are always double-quoted. The two date columns are quoted
    as well since ``Jan 5, 2024`` contains a comma.
    """
    lines = [EXPORT_HEADER]
    for txn in transactions:
        lines.append(
            ",".join(
                [
                    quote_csv_value(short_date(txn.date)),
                    txn.type.value.upper(),
                    quote_csv_value(txn.category),
                    format_amount(txn.amount_cents),
                    quote_csv_value(txn.note or ""),
                    quote_csv_value(short_date(txn.created_at.date())),
                ]
            )
        )
    return "\n".join(lines) + "\n"
