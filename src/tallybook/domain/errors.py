"""Shared domain error messages and error types."""


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations."""


class DependencyError(DomainError):
    """Operation blocked due to dependent domain data."""


class OpposingSameAccountEntriesError(ValidationError):
    """A transaction debits and credits the same account."""

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(
            f"A transaction cannot debit and credit the same account (account {account_id})"
        )


class UnknownAccountError(ValidationError):
    """An entry references an account that does not exist."""

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(account_not_found(account_id))


class SameSideImbalanceError(ConflictError):
    """Two transactions are missing the same side and cannot complete each other."""


class InvalidMergeResultError(ConflictError):
    """Merging would produce an invalid transaction."""


class AlreadyBalancedError(ConflictError):
    """Operation requires an unbalanced transaction."""


def account_not_found(account_id: int) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def transaction_not_found(transaction_id: int) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def entry_not_found(entry_id: int) -> str:
    """Return message for missing entry."""
    return f"Entry {entry_id} not found"


def rule_not_found(rule_id: int) -> str:
    """Return message for missing rule."""
    return f"Rule {rule_id} not found"


def duplicate_account_name(name: str) -> str:
    """Return message for duplicate account name."""
    return f"Account with name '{name}' already exists"


def account_delete_blocked(account_id: int, child_count: int, entry_count: int) -> str:
    """Return message when account has child accounts or entries."""
    parts = []
    if child_count > 0:
        parts.append(f"{child_count} child account{'s' if child_count != 1 else ''}")
    if entry_count > 0:
        parts.append(f"{entry_count} entr{'ies' if entry_count != 1 else 'y'}")
    return (
        f"Cannot delete account {account_id}: it has {', '.join(parts)}. "
        "Please move or delete them first."
    )
