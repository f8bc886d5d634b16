"""
Formatting utilities for reports and CLI output.
"""

from typing import Optional


CURRENCY_SYMBOLS = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
}


def format_currency(amount: Optional[int], currency: str = "GBP") -> str:
    """
    Format a whole-unit amount as currency.

    Args:
        amount: Amount in pounds (not pence), or None if unknown.
        currency: Currency code (default GBP).

    Returns:
        Formatted string, or "n/a" when the amount is unknown.
    """
    if amount is None:
        return "n/a"
    symbol = CURRENCY_SYMBOLS.get(currency, currency + " ")
    return f"{symbol}{amount:,}"


def format_percent(value: float, decimals: int = 1) -> str:
    return f"{value:.{decimals}f}%"

