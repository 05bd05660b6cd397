"""Abstract database interface."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Optional

# Import entities directly to avoid circular import through the domain services
from tallybook.domain.entities import (
    Account,
    AccountType,
    EntryMatch,
    Rule,
    Transaction,
    TransactionQuery,
)


class Database(ABC):
    """Abstract database interface for tallybook."""

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    @abstractmethod
    def unit_of_work(self) -> AbstractContextManager[None]:
        """Group writes into one store transaction.

        Nested blocks join the outermost one. Writes are committed when the
        outermost block exits normally and rolled back if any block raises.
        """
        pass

    # Account operations
    @abstractmethod
    def create_account(
        self,
        name: str,
        account_type: AccountType,
        unit: str = "USD",
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> int:
        """Create a new account. Returns account ID."""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        """Get account by ID."""
        pass

    @abstractmethod
    def get_account_by_name(self, name: str) -> Optional[Account]:
        """Get account by its unique name."""
        pass

    @abstractmethod
    def list_accounts(self, include_inactive: bool = True) -> list[Account]:
        """List accounts ordered by name."""
        pass

    @abstractmethod
    def update_account(
        self,
        account_id: int,
        name: Optional[str] = None,
        parent_id: Optional[int] = None,
        clear_parent: bool = False,
        is_active: Optional[bool] = None,
        description: Optional[str] = None,
    ) -> None:
        """Update account fields that are not None."""
        pass

    @abstractmethod
    def delete_account(self, account_id: int) -> None:
        """Delete an account."""
        pass

    @abstractmethod
    def count_child_accounts(self, account_id: int) -> int:
        """Count direct children of an account."""
        pass

    @abstractmethod
    def count_account_entries(self, account_id: int) -> int:
        """Count entries referencing an account."""
        pass

    # Transaction operations
    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        """Get transaction with its entries by ID."""
        pass

    @abstractmethod
    def get_transaction_by_entry(self, entry_id: int) -> Optional[Transaction]:
        """Get the transaction owning an entry."""
        pass

    @abstractmethod
    def save_transaction(self, transaction: Transaction) -> Transaction:
        """Insert or update a transaction and replace its entry list.

        Entries keeping their ID are updated in place, entries without ID are
        inserted and stored entries missing from the list are deleted.

        Returns:
            The stored transaction with IDs assigned
        """
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction and its entries."""
        pass

    @abstractmethod
    def find_transactions(
        self,
        query: TransactionQuery,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> tuple[list[Transaction], int]:
        """Find transactions ordered by date and ID.

        Returns:
            Tuple of (transactions on the requested page, total match count).
            Without ``limit`` every match is returned.
        """
        pass

    @abstractmethod
    def find_transaction_ids(self, query: TransactionQuery) -> list[int]:
        """Return IDs of all matching transactions, ordered by date and ID."""
        pass

    @abstractmethod
    def find_entries(
        self,
        query: TransactionQuery,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> tuple[list[EntryMatch], int]:
        """Find entries joined with their transaction and account.

        Returns:
            Tuple of (entry matches on the requested page, total match count)
        """
        pass

    # Rule operations
    @abstractmethod
    def save_rule(self, rule: Rule) -> Rule:
        """Insert or update a rule. Returns the stored rule."""
        pass

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[Rule]:
        """Get rule by ID."""
        pass

    @abstractmethod
    def list_rules(self, auto_apply_only: bool = False) -> list[Rule]:
        """List rules in creation order."""
        pass

    @abstractmethod
    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule."""
        pass
