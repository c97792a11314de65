"""
Human-readable document numbers.

A number is ``<PREFIX>-<year>-<value>`` where the value is the 1-based
counter position zero-padded to three digits (``INV-2025-001``). Values of
1000 and above simply grow wider. The year is the calendar year at the moment
the number is assigned, not the document's issue date.
"""
from datetime import date

INVOICE_COUNTER = "invoice"
RECEIPT_COUNTER = "receipt"

PREFIXES: dict[str, str] = {
    INVOICE_COUNTER: "INV",
    RECEIPT_COUNTER: "RCT",
}


def format_document_number(prefix: str, value: int, year: int) -> str:
    if value < 1:
        raise ValueError(f"Document numbers start at 1 (got {value}).")
    return f"{prefix}-{year}-{value:03d}"


def document_number(counter_name: str, value: int, today: date | None = None) -> str:
    """Format `value` with the prefix belonging to `counter_name`."""
    try:
        prefix = PREFIXES[counter_name]
    except KeyError:
        raise ValueError(f"Unknown counter '{counter_name}'.") from None
    year = (today or date.today()).year
    return format_document_number(prefix, value, year)
