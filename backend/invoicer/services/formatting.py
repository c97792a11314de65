from datetime import date

CURRENCY_SYMBOLS = {
    "MYR": "RM",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "SGD": "S$",
}


def format_currency(amount: float | None, currency: str = "MYR") -> str:
    """`RM 1,234.50` style amount with two decimals."""
    amount = amount or 0.0
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency.upper())
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol} {abs(amount):,.2f}"


def format_date(value: date | str | None) -> str:
    if not value:
        return "-"
    if isinstance(value, str):
        value = date.fromisoformat(value)
    return f"{value.day} {value:%B %Y}"
