"""Double-entry balance evaluation.

A transaction is balanced when, for a single unit of value, the debits and
credits offset within ``EPSILON``. Entries in more than one unit cannot be
compared without exchange rates, so such transactions count as balanced.
"""

import dataclasses
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from tallybook.domain.entities import Entry, EntrySide, Transaction
from tallybook.domain.errors import ValidationError
from tallybook.utils.amount_parser import parse_amount

EPSILON = Decimal("0.001")


@dataclass(frozen=True)
class Imbalance:
    """Amount by which one unit fails to balance, with the missing side."""

    unit: str
    side: EntrySide
    amount: Decimal

    @property
    def excess_side(self) -> EntrySide:
        return self.side.opposite


@dataclass(frozen=True)
class BalanceResult:
    is_balanced: bool
    imbalance: Optional[Imbalance] = None


def coerce_amount(value) -> Decimal:
    """Convert an incoming amount to Decimal without losing precision.

    Floats go through their shortest repr so that ``0.1`` becomes
    ``Decimal("0.1")``.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            amount = parse_amount(value)
        except ValueError as e:
            raise ValidationError(f"Invalid amount: {e}") from e
    else:
        raise ValidationError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount


def evaluate(entries: Iterable[Entry]) -> BalanceResult:
    """Evaluate the balance of a list of entries.

    Args:
        entries: Entries of one transaction

    Returns:
        BalanceResult; ``imbalance`` is set only for single-unit unbalanced lists
    """
    entries = list(entries)
    if not entries:
        return BalanceResult(is_balanced=False)

    units = {entry.unit for entry in entries}
    if len(units) > 1:
        return BalanceResult(is_balanced=True)

    net = Decimal(0)
    for entry in entries:
        amount = coerce_amount(entry.amount)
        if entry.side == EntrySide.DEBIT:
            net += amount
        else:
            net -= amount

    if abs(net) < EPSILON:
        return BalanceResult(is_balanced=True)

    side = EntrySide.CREDIT if net > 0 else EntrySide.DEBIT
    return BalanceResult(
        is_balanced=False,
        imbalance=Imbalance(unit=units.pop(), side=side, amount=abs(net)),
    )


def rebalance(transaction: Transaction, entries: Optional[Iterable[Entry]] = None) -> Transaction:
    """Return a copy of the transaction with new entries and a fresh balance flag."""
    entries = tuple(transaction.entries if entries is None else entries)
    return dataclasses.replace(
        transaction, entries=entries, is_balanced=evaluate(entries).is_balanced
    )


def amounts_equal(left: Decimal, right: Decimal) -> bool:
    """Return True when two amounts are equal within EPSILON."""
    return abs(left - right) < EPSILON
