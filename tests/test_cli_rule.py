"""Tests for rule commands."""

from datetime import date
from decimal import Decimal

import pytest

from tallybook.cli.main import cli
from tallybook.domain.entities import ComplementaryAction, Destination, RenameAction


@pytest.fixture
def invoke(cli_runner, temp_db):
    """Return a helper running the CLI against the temporary database."""

    def _invoke(*args, **kwargs):
        return cli_runner.invoke(cli, ["--db-path", temp_db.database_path, *args], **kwargs)

    return _invoke


@pytest.fixture
def costco_rule(rule_service, accounts):
    return rule_service.create_rule(
        "Costco",
        "costco",
        ComplementaryAction(destinations=(Destination(account_id=accounts["groceries"], ratio=Decimal("1")),)),
        auto_apply=False,
    )


def test_rule_add_rename(invoke, accounts):
    """Test adding a rename rule."""
    result = invoke(
        "rule", "add-rename", "Coffee", "starbucks", "--replacement", "Coffee",
        "--source-account", "Dining", "--side", "debit",
    )

    assert result.exit_code == 0
    assert "Created rename rule 'Coffee' (ID: 1)" in result.output


def test_rule_add_rename_invalid_pattern(invoke):
    """Test that an invalid pattern is rejected."""
    result = invoke("rule", "add-rename", "Broken", "(", "--replacement", "x")

    assert result.exit_code == 1
    assert "Invalid pattern" in result.output


def test_rule_add_complementary_ratios(invoke, accounts):
    """Test adding a complementary rule split by ratios."""
    result = invoke(
        "rule", "add-complementary", "Costco", "costco", "--to", "Groceries=0.6", "--to", "Dining=0.4"
    )

    assert result.exit_code == 0
    assert "Created complementary rule 'Costco'" in result.output


def test_rule_add_complementary_amounts(invoke, accounts):
    """Test adding a complementary rule with fixed amounts and a remainder."""
    result = invoke(
        "rule", "add-complementary", "Rent", "rent", "--to-amount", "Groceries=15", "--remainder", "Dining"
    )

    assert result.exit_code == 0
    assert "Created complementary rule 'Rent'" in result.output


@pytest.mark.parametrize(
    "args,message",
    [
        (["--to", "Groceries=0.5"], "sum to 1.0"),
        (["--to", "Groceries=1", "--remainder", "Dining"], "cannot be combined"),
        ([], "At least one destination"),
        (["--to", "Groceries"], "Expected ACCOUNT=VALUE"),
        (["--to", "Nowhere=1"], "not found"),
    ],
)
def test_rule_add_complementary_invalid(invoke, accounts, args, message):
    """Test rejected complementary rules."""
    result = invoke("rule", "add-complementary", "Bad", "x", *args)

    assert result.exit_code == 1
    assert message in result.output


def test_rule_add_merge(invoke, accounts):
    """Test adding a merge rule."""
    result = invoke(
        "rule", "add-merge", "Transfers", "transfer", "--counterpart-account", "Savings", "--max-days", "5"
    )

    assert result.exit_code == 0
    assert "Created merge rule 'Transfers'" in result.output


def test_rule_add_merge_invalid_days(invoke):
    """Test that the date difference is bounded."""
    result = invoke("rule", "add-merge", "Transfers", "transfer", "--max-days", "16")

    assert result.exit_code == 1
    assert "max_date_difference" in result.output


def test_rule_list_empty(invoke):
    """Test listing rules when none exist."""
    result = invoke("rule", "list")

    assert result.exit_code == 0
    assert "No rules found" in result.output


def test_rule_list_and_show(invoke, rule_service, accounts, costco_rule):
    """Test listing and showing rules."""
    rule_service.create_rule(
        "Coffee", "starbucks", RenameAction(replacement="Coffee"), source_account_ids=[accounts["dining"]]
    )

    listed = invoke("rule", "list")
    assert listed.exit_code == 0
    assert "Costco" in listed.output
    assert "manual" in listed.output
    assert "rename to 'Coffee'" in listed.output
    assert "complete with Groceries" in listed.output

    shown = invoke("rule", "show", "2")
    assert shown.exit_code == 0
    assert "Type: rename" in shown.output
    assert "Source accounts: Dining" in shown.output
    assert "Auto-apply: yes" in shown.output


def test_rule_show_missing(invoke):
    """Test showing an unknown rule."""
    result = invoke("rule", "show", "5")

    assert result.exit_code == 1
    assert "Rule 5 not found" in result.output


def test_rule_enable_disable_delete(invoke, costco_rule):
    """Test toggling and deleting a rule."""
    enabled = invoke("rule", "enable", str(costco_rule.id))
    assert enabled.exit_code == 0
    assert "Enabled automatic application of rule 'Costco'" in enabled.output

    disabled = invoke("rule", "disable", str(costco_rule.id))
    assert disabled.exit_code == 0
    assert "Disabled" in disabled.output

    deleted = invoke("rule", "delete", str(costco_rule.id), "--yes")
    assert deleted.exit_code == 0
    assert "Deleted rule 'Costco'" in deleted.output

    assert "No rules found" in invoke("rule", "list").output


def test_rule_delete_cancelled(invoke, costco_rule):
    """Test that declining the confirmation keeps the rule."""
    result = invoke("rule", "delete", str(costco_rule.id), input="n\n")

    assert result.exit_code == 0
    assert "Deletion cancelled" in result.output


def test_rule_preview(invoke, make_transaction, accounts):
    """Test previewing a draft pattern."""
    make_transaction("COSTCO 1", [(accounts["card"], "30", "credit")])
    make_transaction("Lunch", [(accounts["dining"], "12", "debit")])

    result = invoke("rule", "preview", "costco")

    assert result.exit_code == 0
    assert "1 matching transaction(s), 1 unbalanced" in result.output
    assert "Lunch" not in result.output

    assert "No matching transactions" in invoke("rule", "preview", "safeway").output


def test_rule_test_and_apply(invoke, make_transaction, accounts, costco_rule):
    """Test dry-running and applying a rule to one transaction."""
    txn = make_transaction("COSTCO 1", [(accounts["card"], "30", "credit")])

    dry_run = invoke("rule", "test", str(costco_rule.id), str(txn.id))
    assert dry_run.exit_code == 0
    assert "Would add entries:" in dry_run.output
    assert "Groceries" in dry_run.output

    applied = invoke("rule", "apply", str(costco_rule.id), str(txn.id))
    assert applied.exit_code == 0
    assert f"Applied rule 'Costco' to transaction {txn.id} (balanced)" in applied.output

    again = invoke("rule", "apply", str(costco_rule.id), str(txn.id))
    assert again.exit_code == 0
    assert "skipped" in again.output


def test_rule_apply_not_matching(invoke, make_transaction, accounts, costco_rule):
    """Test applying a rule that does not match."""
    txn = make_transaction("Lunch", [(accounts["dining"], "12", "debit")])

    result = invoke("rule", "apply", str(costco_rule.id), str(txn.id))

    assert result.exit_code == 0
    assert f"does not match transaction {txn.id}" in result.output


def test_rule_apply_all(invoke, rule_service, make_transaction, accounts):
    """Test applying auto rules to stored transactions."""
    make_transaction("COSTCO 1", [(accounts["card"], "30", "credit")], date(2024, 3, 1))
    make_transaction("COSTCO 2", [(accounts["card"], "20", "credit")], date(2024, 3, 5))
    make_transaction("Lunch", [(accounts["dining"], "12", "debit")], date(2024, 3, 6))
    rule_service.create_rule(
        "Costco",
        "costco",
        ComplementaryAction(destinations=(Destination(account_id=accounts["groceries"], ratio=Decimal("1")),)),
    )

    result = invoke("rule", "apply-all", "--start-date", "2024-03-01", "--end-date", "2024-03-31")

    assert result.exit_code == 0
    assert "3/3 processed, 2 matched, 2 modified" in result.output
    assert "Processed 3 transaction(s): 2 matched, 2 modified" in result.output

    assert "Processed 1 transaction(s): 0 matched, 0 modified" in invoke("rule", "apply-all").output


def test_rule_apply_all_range_too_long(invoke):
    """Test that bulk runs are limited to a year."""
    result = invoke("rule", "apply-all", "--start-date", "2022-01-01", "--end-date", "2024-01-01")

    assert result.exit_code == 1
    assert "366 days" in result.output
