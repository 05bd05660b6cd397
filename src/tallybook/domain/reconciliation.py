"""Reconciliation operations: merge, move, split and delete of entries.

Every operation re-validates the resulting entry lists, recomputes their
balance and writes all touched transactions in one unit of work. The
surviving record is always saved before the other one is deleted.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from tallybook.database.base import Database
from tallybook.domain.balance import evaluate, rebalance
from tallybook.domain.entities import Transaction
from tallybook.domain.errors import (
    AlreadyBalancedError,
    InvalidMergeResultError,
    NotFoundError,
    OpposingSameAccountEntriesError,
    SameSideImbalanceError,
    ValidationError,
    entry_not_found,
    transaction_not_found,
)
from tallybook.domain.guard import InvariantGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryRemoval:
    """Outcome of deleting an entry.

    ``transaction`` is None when the last entry was removed and the
    transaction was deleted with it.
    """

    transaction_id: int
    transaction_removed: bool
    transaction: Optional[Transaction] = None


@dataclass(frozen=True)
class MoveResult:
    source_id: int
    source_removed: bool
    destination: Transaction
    source: Optional[Transaction] = None


@dataclass(frozen=True)
class SplitResult:
    new_transaction: Transaction
    original_removed: bool
    original: Optional[Transaction] = None


def join_notes(first: Optional[str], second: Optional[str]) -> Optional[str]:
    """Concatenate two optional notes, one per line."""
    parts = [note for note in (first, second) if note]
    return "\n".join(parts) if parts else None


class ReconciliationService:
    """Service restructuring transactions while keeping them valid."""

    def __init__(self, db: Database):
        """Initialize reconciliation service.

        Args:
            db: Database instance
        """
        self.db = db
        self.guard = InvariantGuard(db)

    def _require_transaction(self, transaction_id: int) -> Transaction:
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        return txn

    def merge(self, source_id: int, target_id: int, drop_generated: bool = False) -> Transaction:
        """Merge the target transaction into the source transaction.

        The target's entries are appended to the source, the target's notes
        are appended to the source notes, and the target is deleted.

        Args:
            source_id: Transaction that survives
            target_id: Transaction that is absorbed and deleted
            drop_generated: Strip generated entries from both sides first

        Returns:
            The merged source transaction

        Raises:
            NotFoundError: If either transaction does not exist
            ValidationError: If source and target are the same transaction
            AlreadyBalancedError: If either transaction is already balanced
            SameSideImbalanceError: If both miss the same side
            InvalidMergeResultError: If the merged entries debit and credit one account
        """
        if source_id == target_id:
            raise ValidationError("Cannot merge a transaction with itself")
        source = self._require_transaction(source_id)
        target = self._require_transaction(target_id)

        source_entries = list(source.entries)
        target_entries = list(target.entries)
        if drop_generated:
            source_entries = [e for e in source_entries if not e.generated]
            target_entries = [e for e in target_entries if not e.generated]

        source_balance = evaluate(source_entries)
        target_balance = evaluate(target_entries)
        if source_balance.is_balanced or target_balance.is_balanced:
            balanced_id = source_id if source_balance.is_balanced else target_id
            raise AlreadyBalancedError(
                f"Transaction {balanced_id} is already balanced and cannot be merged"
            )
        if (
            source_balance.imbalance is not None
            and target_balance.imbalance is not None
            and source_balance.imbalance.side == target_balance.imbalance.side
        ):
            raise SameSideImbalanceError(
                f"Transactions {source_id} and {target_id} are both missing a "
                f"{source_balance.imbalance.side.value} and cannot complete each other"
            )

        try:
            combined = self.guard.validate(source_entries + target_entries)
        except OpposingSameAccountEntriesError as e:
            raise InvalidMergeResultError(f"Merged transaction would be invalid: {e}") from e

        merged = rebalance(
            dataclasses.replace(source, notes=join_notes(source.notes, target.notes)),
            combined,
        )
        with self.db.unit_of_work():
            saved = self.db.save_transaction(merged)
            self.db.delete_transaction(target_id)

        logger.info(
            "Merged transaction %s into %s (balanced=%s)", target_id, source_id, saved.is_balanced
        )
        return saved

    def move_entry(self, entry_id: int, destination_id: int) -> MoveResult:
        """Move one entry into another transaction.

        An emptied source transaction is deleted.

        Raises:
            NotFoundError: If the entry or destination does not exist
            ValidationError: If the destination already owns the entry or the
                result would debit and credit one account
        """
        source = self.db.get_transaction_by_entry(entry_id)
        if source is None:
            raise NotFoundError(entry_not_found(entry_id))
        if source.id == destination_id:
            raise ValidationError(f"Entry {entry_id} already belongs to transaction {destination_id}")
        destination = self._require_transaction(destination_id)

        entry = source.find_entry(entry_id)
        remaining = [e for e in source.entries if e.id != entry_id]
        destination_entries = self.guard.validate(list(destination.entries) + [entry])
        if remaining:
            remaining = self.guard.validate(remaining)

        with self.db.unit_of_work():
            saved_destination = self.db.save_transaction(rebalance(destination, destination_entries))
            if remaining:
                saved_source = self.db.save_transaction(rebalance(source, remaining))
            else:
                self.db.delete_transaction(source.id)
                saved_source = None

        logger.info(
            "Moved entry %s from transaction %s to %s", entry_id, source.id, destination_id
        )
        return MoveResult(
            source_id=source.id,
            source_removed=saved_source is None,
            destination=saved_destination,
            source=saved_source,
        )

    def delete_entry(self, transaction_id: int, entry_id: int) -> EntryRemoval:
        """Delete one entry; removing the last entry deletes the transaction.

        Raises:
            NotFoundError: If the transaction or entry does not exist
        """
        txn = self._require_transaction(transaction_id)
        if txn.find_entry(entry_id) is None:
            raise NotFoundError(
                f"Entry {entry_id} not found in transaction {transaction_id}"
            )
        remaining = [e for e in txn.entries if e.id != entry_id]

        with self.db.unit_of_work():
            if not remaining:
                self.db.delete_transaction(transaction_id)
                logger.info("Deleted last entry %s; removed transaction %s", entry_id, transaction_id)
                return EntryRemoval(transaction_id=transaction_id, transaction_removed=True)
            saved = self.db.save_transaction(rebalance(txn, remaining))

        logger.info("Deleted entry %s from transaction %s", entry_id, transaction_id)
        return EntryRemoval(
            transaction_id=transaction_id, transaction_removed=False, transaction=saved
        )

    def split(
        self,
        transaction_id: int,
        entry_indices: Sequence[int],
        description: Optional[str] = None,
    ) -> SplitResult:
        """Move the entries at the given positions into a new transaction.

        The new transaction keeps the date, reference and notes of the
        original. Selecting every entry deletes the original.

        Args:
            transaction_id: Transaction to split
            entry_indices: Zero-based positions of the entries to move
            description: Description of the new transaction (defaults to the original's)

        Raises:
            NotFoundError: If the transaction does not exist
            ValidationError: If the indices are empty, repeated or out of range
        """
        txn = self._require_transaction(transaction_id)
        indices = list(entry_indices)
        if not indices:
            raise ValidationError("At least one entry must be selected to split")
        if len(set(indices)) != len(indices):
            raise ValidationError("Entry positions must be unique")
        for index in indices:
            if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(txn.entries):
                raise ValidationError(
                    f"Entry position {index} is out of range for transaction {transaction_id}"
                )
        if description is not None and not description.strip():
            raise ValidationError("Description must not be empty")

        selected = set(indices)
        moved = self.guard.validate([e for i, e in enumerate(txn.entries) if i in selected])
        kept = [e for i, e in enumerate(txn.entries) if i not in selected]
        if kept:
            kept = self.guard.validate(kept)

        new_txn = rebalance(
            Transaction(
                id=None,
                date=txn.date,
                description=description or txn.description,
                entries=(),
                is_balanced=False,
                reference=txn.reference,
                notes=txn.notes,
            ),
            moved,
        )
        with self.db.unit_of_work():
            saved_new = self.db.save_transaction(new_txn)
            if kept:
                saved_original = self.db.save_transaction(rebalance(txn, kept))
            else:
                self.db.delete_transaction(transaction_id)
                saved_original = None

        logger.info(
            "Split %d entries from transaction %s into %s",
            len(indices),
            transaction_id,
            saved_new.id,
        )
        return SplitResult(
            new_transaction=saved_new,
            original_removed=saved_original is None,
            original=saved_original,
        )
