"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re

CENT = Decimal("0.01")


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed or is not finite
    """
    if not amount_str or not amount_str.strip():
        raise ValueError("Empty amount string")

    amount_str = amount_str.strip()

    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    amount_str = re.sub(r"[$€£¥]", "", amount_str)
    amount_str = amount_str.replace(",", "").strip()

    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if not amount.is_finite():
        raise ValueError(f"Amount '{amount_str}' is not a finite number")
    return -amount if is_negative else amount


def parse_assignment(spec: str) -> tuple[str, str]:
    """Split an ``ACCOUNT=VALUE`` command-line assignment.

    The split happens on the last ``=`` so account names may contain one.

    Raises:
        ValueError: If the assignment has no ``=`` or an empty side
    """
    account, sep, value = spec.rpartition("=")
    if not sep or not account.strip() or not value.strip():
        raise ValueError(f"Expected ACCOUNT=VALUE, got '{spec}'")
    return account.strip(), value.strip()


def format_amount(amount: Decimal, unit: str = "USD") -> str:
    """Format an amount for display, with a dollar sign for USD."""
    if unit == "USD":
        return f"${amount:,.2f}"
    return f"{amount.normalize():f} {unit}"
