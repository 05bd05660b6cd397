"""Structural validation of entry lists before they are persisted."""

import dataclasses
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from tallybook.database.base import Database
from tallybook.domain.balance import coerce_amount
from tallybook.domain.entities import Entry, EntrySide
from tallybook.domain.errors import (
    OpposingSameAccountEntriesError,
    UnknownAccountError,
    ValidationError,
)

# Scale of the stored amount column
AMOUNT_QUANTUM = Decimal("0.000001")


def check_amount(value) -> Decimal:
    """Coerce an entry amount and check that it can be stored exactly.

    Raises:
        ValidationError: If the amount is not positive or has more than six decimal places
    """
    amount = coerce_amount(value)
    if amount <= 0:
        raise ValidationError(f"Entry amount must be positive, got {amount}")
    try:
        exact = amount == amount.quantize(AMOUNT_QUANTUM)
    except InvalidOperation:
        raise ValidationError(f"Entry amount {amount} is too large")
    if not exact:
        raise ValidationError(f"Entry amount {amount} has more than 6 decimal places")
    return amount


def build_entry(
    account_id: int,
    amount,
    side,
    description: Optional[str] = None,
    generated: bool = False,
) -> Entry:
    """Build an entry from raw input.

    Args:
        account_id: Account ID
        amount: Strictly positive amount (Decimal, int, float or text)
        side: "debit"/"credit" or an EntrySide
        description: Optional entry description
        generated: True for entries produced by a complementary rule

    Returns:
        Entry with a Decimal amount

    Raises:
        ValidationError: If the amount is not positive or too precise, or the side is invalid
    """
    value = check_amount(amount)
    try:
        entry_side = EntrySide(side)
    except ValueError:
        raise ValidationError(f"Invalid entry side '{side}': expected 'debit' or 'credit'")
    return Entry(
        account_id=account_id,
        amount=value,
        side=entry_side,
        description=description,
        generated=generated,
    )


def check_structure(entries: Iterable[Entry]) -> None:
    """Reject entry lists that debit and credit the same account.

    Raises:
        OpposingSameAccountEntriesError: On the first account seen on both sides
    """
    sides: dict[int, set[EntrySide]] = {}
    for entry in entries:
        seen = sides.setdefault(entry.account_id, set())
        seen.add(EntrySide(entry.side))
        if len(seen) > 1:
            raise OpposingSameAccountEntriesError(entry.account_id)


class InvariantGuard:
    """Validates entry lists against the ledger's accounts."""

    def __init__(self, db: Database):
        """Initialize invariant guard.

        Args:
            db: Database instance used to resolve accounts
        """
        self.db = db

    def validate(self, entries: Iterable[Entry]) -> list[Entry]:
        """Validate entries and denormalize each account's current unit.

        Args:
            entries: Entries to validate

        Returns:
            Entries carrying the unit of their account

        Raises:
            OpposingSameAccountEntriesError: If an account is both debited and credited
            UnknownAccountError: If an entry references a missing account
            ValidationError: If an amount is not positive or cannot be stored exactly
        """
        entries = list(entries)
        check_structure(entries)

        units: dict[int, str] = {}
        validated = []
        for entry in entries:
            amount = check_amount(entry.amount)
            if entry.account_id not in units:
                account = self.db.get_account(entry.account_id)
                if account is None:
                    raise UnknownAccountError(entry.account_id)
                units[entry.account_id] = account.unit
            validated.append(dataclasses.replace(entry, amount=amount, unit=units[entry.account_id]))
        return validated
