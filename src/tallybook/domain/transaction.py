"""Transaction domain service."""

import dataclasses
import datetime
import logging
from datetime import date
from typing import Iterable, Optional

from tallybook.database.base import Database
from tallybook.domain.balance import rebalance
from tallybook.domain.entities import (
    Entry,
    Page,
    Transaction as TransactionEntity,
    TransactionQuery,
)
from tallybook.domain.errors import NotFoundError, ValidationError, transaction_not_found
from tallybook.domain.guard import InvariantGuard, build_entry
from tallybook.domain.paging import make_page, normalize_paging
from tallybook.domain.rule_engine import RuleEngine, RuleOutcome
from tallybook.utils.patterns import compile_pattern

logger = logging.getLogger(__name__)


def _require_description(description: Optional[str]) -> str:
    if description is None or not description.strip():
        raise ValidationError("Transaction description must not be empty")
    return description.strip()


class TransactionService:
    """Service for managing transactions.

    Every write validates the entries, persists the transaction with a fresh
    balance flag and then runs the auto-apply rules, all in one unit of work.
    """

    def __init__(self, db: Database):
        """Initialize transaction service.

        Args:
            db: Database instance
        """
        self.db = db
        self.guard = InvariantGuard(db)
        self.rules = RuleEngine(db)
        # Auto-apply outcomes of the most recent write only
        self.last_rule_outcomes: list[RuleOutcome] = []

    def _persist(self, transaction: TransactionEntity) -> TransactionEntity:
        self.last_rule_outcomes = []
        with self.db.unit_of_work():
            saved = self.db.save_transaction(transaction)
            saved, self.last_rule_outcomes = self.rules.apply_auto_rules(saved)
        return saved

    def require_transaction(self, transaction_id: int) -> TransactionEntity:
        """Get transaction by ID or raise NotFoundError."""
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        return txn

    def create_transaction(
        self,
        date: date,
        description: str,
        entries: Iterable[Entry],
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransactionEntity:
        """Create a transaction.

        Args:
            date: Transaction date
            description: Non-empty description
            entries: Entries, typically built with ``build_entry``
            reference: Optional reference
            notes: Optional notes

        Returns:
            The stored transaction after auto-apply rules ran

        Raises:
            ValidationError: If the description or entries are invalid
        """
        if not isinstance(date, datetime.date):
            raise ValidationError(f"Invalid transaction date: {date!r}")
        description = _require_description(description)
        entries = list(entries)
        if not entries:
            raise ValidationError("A transaction needs at least one entry")
        validated = self.guard.validate(entries)

        txn = rebalance(
            TransactionEntity(
                id=None,
                date=date,
                description=description,
                entries=(),
                is_balanced=False,
                reference=reference,
                notes=notes,
            ),
            validated,
        )
        saved = self._persist(txn)
        logger.info("Created transaction %s (balanced=%s)", saved.id, saved.is_balanced)
        return saved

    def get_transaction(self, transaction_id: int) -> Optional[TransactionEntity]:
        """Get transaction by ID.

        Args:
            transaction_id: Transaction ID

        Returns:
            Transaction entity or None if not found
        """
        return self.db.get_transaction(transaction_id)

    def update_transaction(
        self,
        transaction_id: int,
        date: Optional[date] = None,
        description: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        entries: Optional[Iterable[Entry]] = None,
    ) -> TransactionEntity:
        """Update transaction fields.

        Only the fields that are not None change. Passing ``entries`` replaces
        the whole entry list, which must not be empty.

        Raises:
            NotFoundError: If transaction doesn't exist
            ValidationError: If a new value is invalid
        """
        txn = self.require_transaction(transaction_id)
        changes = {}
        if date is not None:
            changes["date"] = date
        if description is not None:
            changes["description"] = _require_description(description)
        if reference is not None:
            changes["reference"] = reference
        if notes is not None:
            changes["notes"] = notes
        updated = dataclasses.replace(txn, **changes)

        if entries is not None:
            entries = list(entries)
            if not entries:
                raise ValidationError(
                    "A transaction needs at least one entry; delete it instead"
                )
            updated = rebalance(updated, self.guard.validate(entries))
        else:
            updated = rebalance(updated)

        saved = self._persist(updated)
        logger.info("Updated transaction %s", transaction_id)
        return saved

    def add_entry(
        self,
        transaction_id: int,
        account_id: int,
        amount,
        side,
        description: Optional[str] = None,
    ) -> TransactionEntity:
        """Append one entry to a transaction.

        Raises:
            NotFoundError: If transaction doesn't exist
            ValidationError: If the entry is invalid or conflicts with an existing one
        """
        txn = self.require_transaction(transaction_id)
        entry = build_entry(account_id, amount, side, description=description)
        validated = self.guard.validate(list(txn.entries) + [entry])
        saved = self._persist(rebalance(txn, validated))
        logger.info("Added %s entry to transaction %s", entry.side.value, transaction_id)
        return saved

    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction and its entries.

        Raises:
            NotFoundError: If transaction doesn't exist
        """
        self.require_transaction(transaction_id)
        self.db.delete_transaction(transaction_id)
        logger.info("Deleted transaction %s", transaction_id)

    def list_transactions(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        account_id: Optional[int] = None,
        description_pattern: Optional[str] = None,
        unbalanced_only: bool = False,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """List transactions with filters, one page at a time.

        Args:
            start_date: Optional start date filter
            end_date: Optional end date filter
            account_id: Optional account ID filter
            description_pattern: Optional case-insensitive regex over descriptions
            unbalanced_only: If True, only unbalanced transactions
            page: 1-based page number
            limit: Page size (at most 100)

        Returns:
            Page of transaction entities
        """
        page, limit = normalize_paging(page, limit)
        if description_pattern:
            compile_pattern(description_pattern)
        query = TransactionQuery(
            start_date=start_date,
            end_date=end_date,
            description_pattern=description_pattern or None,
            account_ids=(account_id,) if account_id is not None else (),
            is_balanced=False if unbalanced_only else None,
        )
        items, total = self.db.find_transactions(query, page=page, limit=limit)
        return make_page(items, total, page, limit)

    def list_unbalanced(self, page: Optional[int] = None, limit: Optional[int] = None) -> Page:
        """List unbalanced transactions."""
        return self.list_transactions(unbalanced_only=True, page=page, limit=limit)
