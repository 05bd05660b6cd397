"""Shared pytest fixtures for tallybook tests."""

import os
import tempfile
from datetime import date

import pytest

from tallybook.database.factories import create_sqlite_database
from tallybook.domain.account import AccountService
from tallybook.domain.guard import build_entry
from tallybook.domain.reconciliation import ReconciliationService
from tallybook.domain.rule import RuleService
from tallybook.domain.rule_engine import RuleEngine
from tallybook.domain.search import MatchSearchService
from tallybook.domain.transaction import TransactionService


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Create database
    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def account_service(temp_db):
    """Create an AccountService with a temporary database."""
    return AccountService(temp_db)


@pytest.fixture
def transaction_service(temp_db):
    """Create a TransactionService with a temporary database."""
    return TransactionService(temp_db)


@pytest.fixture
def reconciliation_service(temp_db):
    """Create a ReconciliationService with a temporary database."""
    return ReconciliationService(temp_db)


@pytest.fixture
def search_service(temp_db):
    """Create a MatchSearchService with a temporary database."""
    return MatchSearchService(temp_db)


@pytest.fixture
def rule_service(temp_db):
    """Create a RuleService with a temporary database."""
    return RuleService(temp_db)


@pytest.fixture
def rule_engine(temp_db):
    """Create a RuleEngine with a temporary database."""
    return RuleEngine(temp_db)


@pytest.fixture
def accounts(account_service):
    """Create a small chart of accounts and return their IDs by name."""
    return {
        "checking": account_service.create_account(name="Checking", account_type="asset"),
        "savings": account_service.create_account(name="Savings", account_type="asset"),
        "card": account_service.create_account(name="Credit Card", account_type="liability"),
        "groceries": account_service.create_account(name="Groceries", account_type="expense"),
        "dining": account_service.create_account(name="Dining", account_type="expense"),
        "salary": account_service.create_account(name="Salary", account_type="income"),
    }


@pytest.fixture
def make_transaction(transaction_service):
    """Return a helper creating a transaction from (account_id, amount, side) tuples."""

    def _make(description, entries, txn_date=date(2024, 3, 13), **kwargs):
        return transaction_service.create_transaction(
            date=txn_date,
            description=description,
            entries=[build_entry(account_id, amount, side) for account_id, amount, side in entries],
            **kwargs,
        )

    return _make


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
