"""Display formatting for dashboard values."""
from __future__ import annotations


def format_currency(value: float) -> str:
    """
    Format a USD amount.

    Two decimals, or up to six for sub-dollar prices (trailing zeros
    trimmed back to two).

    >>> format_currency(1234.5)
    '$1,234.50'
    >>> format_currency(0.00012)
    '$0.00012'
    """
    decimals = 6 if abs(value) < 1 else 2
    text = f"{abs(value):,.{decimals}f}"
    if decimals > 2:
        whole, _, frac = text.partition(".")
        text = f"{whole}.{frac.rstrip('0').ljust(2, '0')}"
    sign = "-" if value < 0 else ""
    return f"{sign}${text}"


def format_percentage(value: float) -> str:
    """
    Format a fraction as a percentage with one decimal.

    >>> format_percentage(0.0523)
    '5.2%'
    """
    return f"{value * 100:,.1f}%"


def format_large_number(value: float) -> str:
    """
    Abbreviate with K/M/B suffixes.

    >>> format_large_number(2_500_000)
    '2.50M'
    """
    if value >= 1e9:
        return f"{value / 1e9:.2f}B"
    if value >= 1e6:
        return f"{value / 1e6:.2f}M"
    if value >= 1e3:
        return f"{value / 1e3:.2f}K"
    return f"{value:.2f}"
