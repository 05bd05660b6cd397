"""Complementary match search over the ledger.

Two modes are offered. Entry search returns individual entries joined with
their transaction and account. Complementary search returns whole
unbalanced transactions whose imbalance would cancel a target excess.
Both are bounded by a business-day window around a reference date.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from tallybook.database.base import Database
from tallybook.domain.balance import amounts_equal, coerce_amount, evaluate
from tallybook.domain.entities import (
    DateWindow,
    EntrySide,
    Page,
    SideFilter,
    Transaction,
    TransactionQuery,
)
from tallybook.domain.errors import (
    AlreadyBalancedError,
    NotFoundError,
    ValidationError,
    transaction_not_found,
)
from tallybook.domain.paging import make_page, normalize_paging
from tallybook.utils.business_days import window_around
from tallybook.utils.patterns import compile_pattern

logger = logging.getLogger(__name__)

SCAN_CHUNK_SIZE = 200


def parse_side(value, field: str = "side") -> EntrySide:
    """Parse 'debit' or 'credit' into an EntrySide."""
    try:
        return EntrySide(value)
    except ValueError:
        raise ValidationError(f"Invalid {field} '{value}': expected 'debit' or 'credit'")


def _reference_day(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Invalid reference date: {value!r}")


def _optional_filter_side(value) -> Optional[EntrySide]:
    if value is None:
        return None
    try:
        side_filter = SideFilter(value)
    except ValueError:
        raise ValidationError(f"Invalid entry type filter '{value}': expected debit, credit or both")
    if side_filter is SideFilter.BOTH:
        return None
    return EntrySide(side_filter.value)


class MatchSearchService:
    """Service searching the ledger for complementary entries and transactions."""

    def __init__(self, db: Database):
        """Initialize match search service.

        Args:
            db: Database instance
        """
        self.db = db

    def search_entries(
        self,
        reference_date: Optional[date] = None,
        *,
        business_days: Optional[int] = None,
        account_id: Optional[int] = None,
        side=None,
        min_amount=None,
        max_amount=None,
        search_text: Optional[str] = None,
        exclude_transaction_id: Optional[int] = None,
        include_balanced: bool = False,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """Search individual entries.

        Args:
            reference_date: Center of the business-day window; no date bound when None
            business_days: Window size on each side of the reference date
            account_id: Only entries on this account
            side: Only entries on this side ('debit', 'credit' or 'both')
            min_amount: Inclusive lower amount bound
            max_amount: Inclusive upper amount bound
            search_text: Case-insensitive regex over the transaction description
            exclude_transaction_id: Skip entries of this transaction
            include_balanced: Also return entries of balanced transactions
            page: 1-based page number
            limit: Page size (at most 100)

        Returns:
            Page of EntryMatch items

        Raises:
            ValidationError: If any filter is invalid
        """
        page, limit = normalize_paging(page, limit)
        entry_side = _optional_filter_side(side)
        low = coerce_amount(min_amount) if min_amount is not None else None
        high = coerce_amount(max_amount) if max_amount is not None else None
        if low is not None and high is not None and low > high:
            raise ValidationError("Minimum amount must not exceed maximum amount")
        if search_text:
            compile_pattern(search_text)

        window = None
        if reference_date is not None:
            window = window_around(_reference_day(reference_date), business_days)

        query = TransactionQuery(
            start_date=window.start.date() if window else None,
            end_date=window.end.date() if window else None,
            description_pattern=search_text or None,
            account_ids=(account_id,) if account_id is not None else (),
            side=entry_side,
            min_amount=low,
            max_amount=high,
            is_balanced=None if include_balanced else False,
            exclude_ids=(exclude_transaction_id,) if exclude_transaction_id is not None else (),
        )
        items, total = self.db.find_entries(query, page=page, limit=limit)
        logger.debug("Entry search %s matched %d entries", query, total)
        return make_page(items, total, page, limit)

    def find_complementary(
        self,
        amount,
        side,
        reference_date,
        *,
        business_days: Optional[int] = None,
        exclude_transaction_id: Optional[int] = None,
        account_id: Optional[int] = None,
        entry_type_filter=None,
        search_text: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """Find unbalanced transactions that would cancel a target excess.

        ``side`` is the side on which the target carries its surplus. A
        candidate qualifies when it is missing exactly that side for the
        same amount (within 0.001), so merging the two balances both.

        Args:
            amount: Excess amount of the target
            side: Side of the target's excess ('debit' or 'credit')
            reference_date: Center of the business-day window
            business_days: Window size on each side (default 15, minimum 5)
            exclude_transaction_id: Usually the target itself
            account_id: Only candidates with an entry on this account
            entry_type_filter: Only candidates with an entry on this side
            search_text: Case-insensitive regex over candidate descriptions
            page: 1-based page number
            limit: Page size (at most 100)

        Returns:
            Page of Transaction items

        Raises:
            ValidationError: If any argument is invalid
        """
        target_amount = coerce_amount(amount)
        if target_amount <= 0:
            raise ValidationError(f"Amount must be positive, got {target_amount}")
        target_side = parse_side(side)
        reference = _reference_day(reference_date)
        page, limit = normalize_paging(page, limit)
        filter_side = _optional_filter_side(entry_type_filter)
        if search_text:
            compile_pattern(search_text)

        window = window_around(reference, business_days)
        query = TransactionQuery(
            start_date=window.start.date(),
            end_date=window.end.date(),
            description_pattern=search_text or None,
            account_ids=(account_id,) if account_id is not None else (),
            side=filter_side,
            is_balanced=False,
            exclude_ids=(exclude_transaction_id,) if exclude_transaction_id is not None else (),
        )
        items, total = self._scan_complementary(query, target_amount, target_side, page, limit)
        logger.debug(
            "Complementary search for %s %s around %s (%s to %s) found %d candidates",
            target_amount,
            target_side.value,
            reference,
            window.start,
            window.end,
            total,
        )
        return make_page(items, total, page, limit)

    def _scan_complementary(
        self,
        query: TransactionQuery,
        amount: Decimal,
        side: EntrySide,
        page: int,
        limit: int,
    ) -> tuple[list[Transaction], int]:
        """Stream candidates in chunks, keeping only the requested page."""
        first = (page - 1) * limit
        selected: list[Transaction] = []
        total = 0
        chunk = 1
        while True:
            candidates, _ = self.db.find_transactions(query, page=chunk, limit=SCAN_CHUNK_SIZE)
            for candidate in candidates:
                imbalance = evaluate(candidate.entries).imbalance
                if imbalance is None or imbalance.side != side:
                    continue
                if not amounts_equal(imbalance.amount, amount):
                    continue
                if first <= total < first + limit:
                    selected.append(candidate)
                total += 1
            if len(candidates) < SCAN_CHUNK_SIZE:
                return selected, total
            chunk += 1

    def window(self, reference_date, business_days: Optional[int] = None) -> DateWindow:
        """Return the business-day window used for a reference date."""
        return window_around(_reference_day(reference_date), business_days)

    def suggest_matches(
        self,
        transaction_id: int,
        *,
        business_days: Optional[int] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """Suggest complementary transactions for a stored unbalanced transaction.

        Raises:
            NotFoundError: If the transaction does not exist
            AlreadyBalancedError: If the transaction has no imbalance
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        imbalance = evaluate(txn.entries).imbalance
        if imbalance is None:
            raise AlreadyBalancedError(f"Transaction {transaction_id} has no imbalance to match")
        return self.find_complementary(
            imbalance.amount,
            imbalance.excess_side,
            txn.date,
            business_days=business_days,
            exclude_transaction_id=transaction_id,
            page=page,
            limit=limit,
        )
