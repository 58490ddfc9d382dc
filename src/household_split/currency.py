"""Colombian peso formatting for balances and amounts."""

from decimal import ROUND_HALF_UP
from typing import Any

from .models import ZERO, round_whole, to_decimal


def format_currency(value: Any) -> str:
    """
    Format an amount as COP with no decimals.

    Uses "." as the thousands separator. Unusable input formats as "$0".
    Amounts of any usable size format without raising.

    Example:
        25000 -> "$25.000"
    """
    amount = round_whole(to_decimal(value), ROUND_HALF_UP)
    digits = f"{abs(int(amount)):,}".replace(",", ".")
    sign = "-" if amount < 0 else ""
    return f"{sign}${digits}"


def format_signed_currency(value: Any) -> str:
    """Format with an explicit sign: "+$12.500", "-$12.500" or "$0"."""
    amount = to_decimal(value)
    if amount == ZERO:
        return "$0"
    prefix = "+" if amount > 0 else "-"
    return f"{prefix}{format_currency(amount.copy_abs())}"
