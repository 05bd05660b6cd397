"""Utility for resolving account names to IDs."""

from tallybook.domain.account import AccountService
from tallybook.domain.errors import NotFoundError


def resolve_account(account_service: AccountService, account: str | int) -> int:
    """Resolve account name or ID to account ID.

    A value that parses as an integer is treated as an ID first; if no
    account has that ID, it is looked up as a name.

    Args:
        account_service: AccountService instance
        account: Account name (str) or ID (int or string representation of int)

    Returns:
        Account ID

    Raises:
        NotFoundError: If account is not found
    """
    if isinstance(account, int):
        if account_service.get_account(account) is None:
            raise NotFoundError(f"Account ID {account} not found")
        return account

    name = account.strip()
    try:
        account_id = int(name)
    except ValueError:
        account_id = None

    if account_id is not None and account_service.get_account(account_id) is not None:
        return account_id

    for acc in account_service.list_accounts():
        if acc.name == name:
            return acc.id

    if account_id is not None:
        raise NotFoundError(f"Account ID {account_id} not found")
    raise NotFoundError(f"Account '{name}' not found")
