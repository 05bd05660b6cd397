"""Account domain service."""

import logging
from typing import Optional

from tallybook.database.base import Database
from tallybook.domain.entities import Account as AccountEntity, AccountType
from tallybook.domain.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
    account_delete_blocked,
    account_not_found,
    duplicate_account_name,
)

logger = logging.getLogger(__name__)


class AccountService:
    """Service for managing accounts."""

    def __init__(self, db: Database):
        """Initialize account service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_account(
        self,
        name: str,
        account_type: AccountType | str,
        unit: str = "USD",
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> int:
        """Create a new account.

        Args:
            name: Unique account name
            account_type: asset, liability, income, expense or equity
            unit: Unit of value, e.g. "USD" or "stock:AAPL"
            parent_id: Optional parent account ID
            description: Optional description

        Returns:
            Account ID

        Raises:
            ValidationError: If name, type or unit is invalid
            ConflictError: If account name already exists
            NotFoundError: If the parent account does not exist
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name must not be empty")
        try:
            account_type = AccountType(account_type)
        except ValueError:
            allowed = ", ".join(t.value for t in AccountType)
            raise ValidationError(f"Invalid account type '{account_type}': expected one of {allowed}")
        unit = (unit or "").strip()
        if not unit:
            raise ValidationError("Account unit must not be empty")

        if self.db.get_account_by_name(name) is not None:
            raise ConflictError(duplicate_account_name(name))
        if parent_id is not None and self.db.get_account(parent_id) is None:
            raise NotFoundError(account_not_found(parent_id))

        account_id = self.db.create_account(
            name=name,
            account_type=account_type,
            unit=unit,
            parent_id=parent_id,
            description=description,
        )
        logger.info("Created account %s (%s, %s)", name, account_type.value, unit)
        return account_id

    def get_account(self, account_id: int) -> Optional[AccountEntity]:
        """Get account by ID.

        Args:
            account_id: Account ID

        Returns:
            Account entity or None if not found
        """
        return self.db.get_account(account_id)

    def require_account(self, account_id: int) -> AccountEntity:
        """Get account by ID or raise NotFoundError."""
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        return account

    def list_accounts(self, include_inactive: bool = True) -> list[AccountEntity]:
        """List accounts.

        Args:
            include_inactive: If False, hide deactivated accounts

        Returns:
            List of account entities
        """
        return self.db.list_accounts(include_inactive=include_inactive)

    def rename_account(self, account_id: int, name: str) -> None:
        """Rename an account.

        Raises:
            NotFoundError: If account not found
            ConflictError: If name already exists
        """
        self.require_account(account_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name must not be empty")
        existing = self.db.get_account_by_name(name)
        if existing is not None and existing.id != account_id:
            raise ConflictError(duplicate_account_name(name))
        self.db.update_account(account_id, name=name)

    def set_parent(self, account_id: int, parent_id: Optional[int]) -> None:
        """Move an account under a new parent, or to the top level with None.

        Raises:
            NotFoundError: If either account does not exist
            ValidationError: If the move would make the account its own ancestor
        """
        self.require_account(account_id)
        if parent_id is None:
            self.db.update_account(account_id, clear_parent=True)
            return

        current = self.require_account(parent_id)
        while current is not None:
            if current.id == account_id:
                raise ValidationError(
                    f"Account {account_id} cannot be placed under its own descendant {parent_id}"
                )
            current = self.db.get_account(current.parent_id) if current.parent_id else None
        self.db.update_account(account_id, parent_id=parent_id)

    def set_active(self, account_id: int, is_active: bool) -> None:
        """Activate or deactivate an account."""
        self.require_account(account_id)
        self.db.update_account(account_id, is_active=is_active)

    def delete_account(self, account_id: int) -> None:
        """Delete an account.

        Raises:
            NotFoundError: If account not found
            DependencyError: If account has child accounts or is used by entries
        """
        self.require_account(account_id)
        child_count = self.db.count_child_accounts(account_id)
        entry_count = self.db.count_account_entries(account_id)
        if child_count > 0 or entry_count > 0:
            raise DependencyError(account_delete_blocked(account_id, child_count, entry_count))
        self.db.delete_account(account_id)
        logger.info("Deleted account %s", account_id)
