"""Tests for rule management and the rule engine."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from tallybook.domain.entities import (
    ComplementaryAction,
    Destination,
    EntrySide,
    MergeAction,
    RenameAction,
    SideFilter,
)
from tallybook.domain.errors import NotFoundError, UnknownAccountError, ValidationError
from tallybook.domain.guard import build_entry
from tallybook.domain.rule_engine import RuleStatus, generated_description


def _ratios(*pairs):
    return ComplementaryAction(
        destinations=tuple(Destination(account_id=a, ratio=Decimal(r)) for a, r in pairs)
    )


class TestRuleService:
    """Tests for RuleService validation and storage."""

    def test_create_and_list(self, rule_service, accounts):
        rule = rule_service.create_rule(
            "  Coffee ",
            "starbucks",
            RenameAction(replacement="Coffee"),
            source_account_ids=[accounts["dining"]],
            entry_side="debit",
        )

        assert rule.id is not None
        assert rule.name == "Coffee"
        assert rule.entry_side is SideFilter.DEBIT
        assert rule.source_account_ids == (accounts["dining"],)
        assert [r.id for r in rule_service.list_rules()] == [rule.id]

    def test_create_complementary_normalizes_ratios(self, rule_service, accounts):
        rule = rule_service.create_rule(
            "Split",
            "costco",
            ComplementaryAction(
                destinations=(
                    Destination(account_id=accounts["groceries"], ratio="0.6"),
                    Destination(account_id=accounts["dining"], ratio=0.4),
                )
            ),
        )

        stored = rule_service.get_rule(rule.id)
        assert [d.ratio for d in stored.action.destinations] == [Decimal("0.6"), Decimal("0.4")]

    @pytest.mark.parametrize(
        "name,pattern,action",
        [
            ("", "x", RenameAction(replacement="y")),
            ("n", "", RenameAction(replacement="y")),
            ("n", "(", RenameAction(replacement="y")),
            ("n", "x", RenameAction(replacement="  ")),
            ("n", "x", MergeAction(max_date_difference=0)),
            ("n", "x", MergeAction(max_date_difference=16)),
            ("n", "x", MergeAction(max_date_difference=True)),
            ("n", "x", MergeAction(counterpart_pattern="[")),
            ("n", "x", ComplementaryAction(destinations=())),
        ],
    )
    def test_create_invalid(self, rule_service, name, pattern, action):
        with pytest.raises(ValidationError):
            rule_service.create_rule(name, pattern, action)

    def test_ratios_must_sum_to_one(self, rule_service, accounts):
        with pytest.raises(ValidationError, match="sum to 1.0"):
            rule_service.create_rule(
                "Bad", "x", _ratios((accounts["groceries"], "0.5"), (accounts["dining"], "0.4"))
            )

    def test_ratio_tolerance(self, rule_service, accounts):
        rule = rule_service.create_rule(
            "Thirds",
            "x",
            _ratios(
                (accounts["groceries"], "0.3333"),
                (accounts["dining"], "0.3333"),
                (accounts["savings"], "0.33335"),
            ),
        )

        assert rule.kind == "complementary"

    def test_ratios_and_amounts_cannot_mix(self, rule_service, accounts):
        action = ComplementaryAction(
            destinations=(
                Destination(account_id=accounts["groceries"], ratio=Decimal("1")),
                Destination(account_id=accounts["dining"], amount=Decimal("5")),
            )
        )

        with pytest.raises(ValidationError, match="all use ratios"):
            rule_service.create_rule("Mixed", "x", action)

    def test_only_last_destination_takes_remainder(self, rule_service, accounts):
        action = ComplementaryAction(
            destinations=(
                Destination(account_id=accounts["groceries"]),
                Destination(account_id=accounts["dining"], amount=Decimal("5")),
            )
        )

        with pytest.raises(ValidationError, match="remainder"):
            rule_service.create_rule("Remainder", "x", action)

    def test_unknown_accounts(self, rule_service, accounts):
        with pytest.raises(UnknownAccountError):
            rule_service.create_rule("R", "x", RenameAction(replacement="y"), source_account_ids=[99])
        with pytest.raises(UnknownAccountError):
            rule_service.create_rule("R", "x", _ratios((99, "1")))
        with pytest.raises(UnknownAccountError):
            rule_service.create_rule("R", "x", MergeAction(counterpart_account_ids=(99,)))

    def test_invalid_side(self, rule_service):
        with pytest.raises(ValidationError, match="Invalid entry side"):
            rule_service.create_rule("R", "x", RenameAction(replacement="y"), entry_side="left")

    def test_set_auto_apply_and_delete(self, rule_service):
        rule = rule_service.create_rule("R", "x", RenameAction(replacement="y"))

        disabled = rule_service.set_auto_apply(rule.id, False)
        assert disabled.auto_apply is False
        assert rule_service.get_rule(rule.id).auto_apply is False

        rule_service.delete_rule(rule.id)
        assert rule_service.get_rule(rule.id) is None
        with pytest.raises(NotFoundError):
            rule_service.delete_rule(rule.id)

    def test_preview_matches(self, rule_service, make_transaction, accounts):
        make_transaction("STARBUCKS 1", [(accounts["dining"], "4", "debit")])
        make_transaction(
            "Starbucks 2",
            [(accounts["dining"], "4", "debit"), (accounts["card"], "4", "credit")],
        )
        make_transaction("Lunch", [(accounts["dining"], "12", "debit")])

        page, unbalanced = rule_service.preview_matches("starbucks")
        assert page.pagination.total == 2
        assert unbalanced == 1

        credit_side, _ = rule_service.preview_matches("starbucks", entry_side="credit")
        assert [t.description for t in credit_side.items] == ["Starbucks 2"]

        by_account, _ = rule_service.preview_matches("starbucks", source_account_ids=[accounts["card"]])
        assert by_account.pagination.total == 1


class TestRuleMatching:
    """Tests for RuleEngine.matches."""

    def test_pattern_account_and_side(self, rule_service, rule_engine, make_transaction, accounts):
        txn = make_transaction("STARBUCKS #12", [(accounts["dining"], "4", "debit")])
        plain = rule_service.create_rule("A", "starbucks", RenameAction(replacement="Coffee"), auto_apply=False)
        other_account = rule_service.create_rule(
            "B", "starbucks", RenameAction(replacement="Coffee"),
            source_account_ids=[accounts["card"]], auto_apply=False,
        )
        credit_only = rule_service.create_rule(
            "C", "starbucks", RenameAction(replacement="Coffee"), entry_side="credit", auto_apply=False
        )
        other_pattern = rule_service.create_rule("D", "^coffee", RenameAction(replacement="x"), auto_apply=False)

        assert rule_engine.matches(plain, txn)
        assert not rule_engine.matches(other_account, txn)
        assert not rule_engine.matches(credit_only, txn)
        assert not rule_engine.matches(other_pattern, txn)


class TestRenameRules:
    """Tests for rename rules."""

    def test_auto_rename_on_create(self, rule_service, make_transaction, accounts):
        rule_service.create_rule("Coffee", "starbucks", RenameAction(replacement="Coffee"))

        txn = make_transaction("STARBUCKS #12", [(accounts["dining"], "4", "debit")])

        assert txn.description == "Coffee"

    def test_rename_skipped_when_equal(self, rule_service, rule_engine, make_transaction, accounts):
        txn = make_transaction("Coffee", [(accounts["dining"], "4", "debit")])
        rule = rule_service.create_rule("Coffee", "coffee", RenameAction(replacement="Coffee"), auto_apply=False)

        outcome, _ = rule_engine.apply_rule(rule.id, txn.id)

        assert outcome.status is RuleStatus.SKIPPED
        assert outcome.message == "description already set"

    def test_rules_run_in_creation_order(self, rule_service, make_transaction, accounts):
        rule_service.create_rule("First", "starbucks", RenameAction(replacement="Coffee shop"))
        rule_service.create_rule("Second", "coffee", RenameAction(replacement="Coffee"))

        txn = make_transaction("STARBUCKS", [(accounts["dining"], "4", "debit")])

        assert txn.description == "Coffee"

    def test_manual_rules_do_not_auto_apply(self, rule_service, make_transaction, accounts):
        rule_service.create_rule("Coffee", "starbucks", RenameAction(replacement="Coffee"), auto_apply=False)

        txn = make_transaction("STARBUCKS", [(accounts["dining"], "4", "debit")])

        assert txn.description == "STARBUCKS"


class TestComplementaryRules:
    """Tests for complementary rules."""

    def test_ratio_split(self, rule_service, make_transaction, accounts):
        rule = rule_service.create_rule(
            "Costco", "costco", _ratios((accounts["groceries"], "0.6"), (accounts["dining"], "0.4"))
        )

        txn = make_transaction("COSTCO WHOLESALE", [(accounts["card"], "100", "credit")])

        assert txn.is_balanced is True
        generated = [e for e in txn.entries if e.generated]
        assert [(e.account_id, e.amount, e.side) for e in generated] == [
            (accounts["groceries"], Decimal("60"), EntrySide.DEBIT),
            (accounts["dining"], Decimal("40"), EntrySide.DEBIT),
        ]
        assert all(e.description == generated_description(rule) for e in generated)

    def test_ratio_rounding_puts_remainder_last(self, rule_service, make_transaction, accounts):
        rule_service.create_rule(
            "Thirds",
            "split",
            _ratios(
                (accounts["groceries"], "0.3333"),
                (accounts["dining"], "0.3333"),
                (accounts["savings"], "0.3334"),
            ),
        )

        txn = make_transaction("Split bill", [(accounts["card"], "10", "credit")])

        amounts = [e.amount for e in txn.entries if e.generated]
        assert amounts == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
        assert txn.is_balanced is True

    def test_ratio_split_of_tiny_imbalance_does_not_overshoot(self, rule_service, make_transaction, accounts):
        rule_service.create_rule(
            "Quarters",
            "shop",
            _ratios(
                (accounts["groceries"], "0.25"),
                (accounts["dining"], "0.25"),
                (accounts["savings"], "0.25"),
                (accounts["checking"], "0.25"),
            ),
        )

        txn = make_transaction("Shop", [(accounts["card"], "0.02", "credit")])

        generated = [e for e in txn.entries if e.generated]
        assert sum(e.amount for e in generated) == Decimal("0.02")
        assert all(e.amount > 0 for e in generated)
        assert txn.is_balanced is True

    def test_fixed_amounts_with_remainder(self, rule_service, make_transaction, accounts):
        rule_service.create_rule(
            "Rent",
            "rent",
            ComplementaryAction(
                destinations=(
                    Destination(account_id=accounts["groceries"], amount=Decimal("15")),
                    Destination(account_id=accounts["dining"]),
                )
            ),
        )

        txn = make_transaction("RENT MARCH", [(accounts["checking"], "100", "credit")])

        assert [e.amount for e in txn.entries if e.generated] == [Decimal("15"), Decimal("85")]
        assert txn.is_balanced is True

    def test_fixed_amounts_mismatch_skips(self, rule_service, transaction_service, accounts):
        rule_service.create_rule(
            "Rent",
            "rent",
            ComplementaryAction(destinations=(Destination(account_id=accounts["groceries"], amount=Decimal("15")),)),
        )

        txn = transaction_service.create_transaction(
            date=date(2024, 3, 13),
            description="RENT",
            entries=[build_entry(accounts["checking"], "100", "credit")],
        )

        assert txn.is_balanced is False
        assert transaction_service.last_rule_outcomes[0].status is RuleStatus.SKIPPED
        assert "do not add up" in transaction_service.last_rule_outcomes[0].message

    def test_empty_remainder_skips(self, rule_service, make_transaction, accounts):
        rule_service.create_rule(
            "Rent",
            "rent",
            ComplementaryAction(
                destinations=(
                    Destination(account_id=accounts["groceries"], amount=Decimal("100")),
                    Destination(account_id=accounts["dining"]),
                )
            ),
        )

        txn = make_transaction("RENT", [(accounts["checking"], "100", "credit")])

        assert not txn.has_generated_entries

    def test_skips_balanced_and_already_completed(
        self, rule_service, rule_engine, transaction_service, make_transaction, accounts
    ):
        balanced = make_transaction(
            "Costco",
            [(accounts["groceries"], "10", "debit"), (accounts["card"], "10", "credit")],
        )
        rule = rule_service.create_rule(
            "Costco", "costco", _ratios((accounts["groceries"], "1")), auto_apply=False
        )
        partial = make_transaction("Costco 2", [(accounts["card"], "10", "credit")])

        assert rule_engine.apply_rule(rule.id, balanced.id)[0].status is RuleStatus.SKIPPED
        assert rule_engine.apply_rule(rule.id, partial.id)[0].status is RuleStatus.APPLIED

        # Unbalanced again, but the generated entries are still there
        transaction_service.add_entry(partial.id, accounts["savings"], "5", "credit")
        again, _ = rule_engine.apply_rule(rule.id, partial.id)

        assert again.status is RuleStatus.SKIPPED
        assert "generated" in again.message


class TestMergeRules:
    """Tests for merge rules."""

    def test_merges_counterpart_on_create(self, rule_service, transaction_service, temp_db, make_transaction, accounts):
        rule_service.create_rule("Transfers", "transfer", MergeAction(max_date_difference=3))
        outgoing = make_transaction(
            "TRANSFER OUT", [(accounts["checking"], "500", "credit")], date(2024, 3, 13)
        )

        incoming = transaction_service.create_transaction(
            date=date(2024, 3, 14),
            description="TRANSFER IN",
            entries=[build_entry(accounts["savings"], "500", "debit")],
        )

        assert incoming.is_balanced is True
        assert len(incoming.entries) == 2
        assert temp_db.get_transaction(outgoing.id) is None
        assert transaction_service.last_rule_outcomes[0].status is RuleStatus.APPLIED

    def test_ambiguous_counterparts_skip(self, rule_service, transaction_service, make_transaction, accounts):
        make_transaction("TRANSFER OUT A", [(accounts["checking"], "500", "credit")], date(2024, 3, 12))
        make_transaction("TRANSFER OUT B", [(accounts["checking"], "500", "credit")], date(2024, 3, 16))
        rule_service.create_rule("Transfers", "transfer", MergeAction(max_date_difference=3))

        incoming = transaction_service.create_transaction(
            date=date(2024, 3, 14),
            description="TRANSFER IN",
            entries=[build_entry(accounts["savings"], "500", "debit")],
        )

        assert incoming.is_balanced is False
        outcome = transaction_service.last_rule_outcomes[0]
        assert outcome.status is RuleStatus.SKIPPED
        assert "equally good" in outcome.message

    def test_closest_counterpart_wins(self, rule_service, transaction_service, temp_db, make_transaction, accounts):
        near = make_transaction("TRANSFER OUT A", [(accounts["checking"], "500", "credit")], date(2024, 3, 13))
        far = make_transaction("TRANSFER OUT B", [(accounts["checking"], "500", "credit")], date(2024, 3, 16))
        rule_service.create_rule("Transfers", "transfer", MergeAction(max_date_difference=3))

        transaction_service.create_transaction(
            date=date(2024, 3, 14),
            description="TRANSFER IN",
            entries=[build_entry(accounts["savings"], "500", "debit")],
        )

        assert temp_db.get_transaction(near.id) is None
        assert temp_db.get_transaction(far.id) is not None

    def test_outside_date_window_skips(self, rule_service, transaction_service, make_transaction, accounts):
        make_transaction("TRANSFER OUT", [(accounts["checking"], "500", "credit")], date(2024, 3, 1))
        rule_service.create_rule("Transfers", "transfer", MergeAction(max_date_difference=3))

        incoming = transaction_service.create_transaction(
            date=date(2024, 3, 14),
            description="TRANSFER IN",
            entries=[build_entry(accounts["savings"], "500", "debit")],
        )

        assert incoming.is_balanced is False

    def test_counterpart_pattern_and_accounts(self, rule_service, transaction_service, temp_db, make_transaction, accounts):
        wrong_account = make_transaction("PAYROLL", [(accounts["card"], "500", "credit")], date(2024, 3, 14))
        right = make_transaction("PAYROLL", [(accounts["salary"], "500", "credit")], date(2024, 3, 14))
        rule_service.create_rule(
            "Salary",
            "deposit",
            MergeAction(counterpart_pattern="payroll", counterpart_account_ids=(accounts["salary"],)),
        )

        transaction_service.create_transaction(
            date=date(2024, 3, 14),
            description="DEPOSIT",
            entries=[build_entry(accounts["checking"], "500", "debit")],
        )

        assert temp_db.get_transaction(right.id) is None
        assert temp_db.get_transaction(wrong_account.id) is not None


class TestAutoApplyFailures:
    """Tests for failing rules during automatic application."""

    def test_failing_rule_does_not_block_others(self, rule_service, transaction_service, accounts, caplog):
        rule_service.create_rule("Bad", "atm", _ratios((accounts["checking"], "1")))
        rule_service.create_rule("Rename", "atm", RenameAction(replacement="Cash withdrawal"))

        with caplog.at_level(logging.WARNING, logger="tallybook"):
            txn = transaction_service.create_transaction(
                date=date(2024, 3, 13),
                description="ATM 123",
                entries=[build_entry(accounts["checking"], "40", "credit")],
            )

        statuses = [o.status for o in transaction_service.last_rule_outcomes]
        assert statuses == [RuleStatus.FAILED, RuleStatus.APPLIED]
        assert txn.description == "Cash withdrawal"
        assert txn.is_balanced is False
        assert "Rule Bad failed" in caplog.text


class TestManualApplication:
    """Tests for apply_rule and preview_effect."""

    def test_apply_rule_not_matched(self, rule_service, rule_engine, make_transaction, accounts):
        txn = make_transaction("Lunch", [(accounts["dining"], "12", "debit")])
        rule = rule_service.create_rule("Coffee", "starbucks", RenameAction(replacement="Coffee"), auto_apply=False)

        outcome, unchanged = rule_engine.apply_rule(rule.id, txn.id)

        assert outcome.status is RuleStatus.NOT_MATCHED
        assert unchanged.description == "Lunch"

    def test_apply_rule_missing(self, rule_engine, make_transaction, accounts):
        txn = make_transaction("Lunch", [(accounts["dining"], "12", "debit")])

        with pytest.raises(NotFoundError, match="Rule 9 not found"):
            rule_engine.apply_rule(9, txn.id)

    def test_preview_effect_writes_nothing(self, rule_service, rule_engine, temp_db, make_transaction, accounts):
        txn = make_transaction("COSTCO", [(accounts["card"], "50", "credit")])
        rule = rule_service.create_rule(
            "Costco", "costco", _ratios((accounts["groceries"], "1")), auto_apply=False
        )

        effect = rule_engine.preview_effect(rule.id, txn.id)

        assert effect.entries is not None
        assert effect.entries[-1].generated is True
        assert temp_db.get_transaction(txn.id).has_generated_entries is False

    def test_preview_effect_not_matching(self, rule_service, rule_engine, make_transaction, accounts):
        txn = make_transaction("Lunch", [(accounts["dining"], "12", "debit")])
        rule = rule_service.create_rule("Coffee", "starbucks", RenameAction(replacement="Coffee"), auto_apply=False)

        effect = rule_engine.preview_effect(rule.id, txn.id)

        assert effect.is_empty
        assert effect.reason == "rule does not match the transaction"


class CollectingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


class FailingSink:
    def emit(self, event):
        raise RuntimeError("sink is gone")


class TestApplyAll:
    """Tests for bulk rule application."""

    @pytest.fixture
    def ledger(self, make_transaction, accounts):
        return [
            make_transaction("COSTCO 1", [(accounts["card"], "30", "credit")], date(2024, 3, 1)),
            make_transaction("COSTCO 2", [(accounts["card"], "20", "credit")], date(2024, 3, 5)),
            make_transaction("Lunch", [(accounts["dining"], "12", "debit")], date(2024, 3, 6)),
            make_transaction(
                "COSTCO 3",
                [(accounts["groceries"], "5", "debit"), (accounts["card"], "5", "credit")],
                date(2024, 3, 7),
            ),
        ]

    def test_apply_all_unbalanced(self, rule_service, rule_engine, temp_db, ledger, accounts):
        rule_service.create_rule("Costco", "costco", _ratios((accounts["groceries"], "1")))
        sink = CollectingSink()

        result = rule_engine.apply_all(sink=sink)

        assert result.processed == 3
        assert result.matched == 2
        assert result.modified == 2
        assert result.failures == []
        assert temp_db.get_transaction(ledger[0].id).is_balanced is True
        assert [e.processed for e in sink.events] == [1, 2, 3, 3]
        assert sink.events[-1].done is True
        assert all(e.total == 3 for e in sink.events)

    def test_apply_all_including_balanced(self, rule_service, rule_engine, ledger):
        rule_service.create_rule("Costco", "costco", RenameAction(replacement="Costco"))

        result = rule_engine.apply_all(unbalanced_only=False)

        assert result.processed == 4
        assert result.modified == 3

    def test_rerun_modifies_nothing(self, rule_service, rule_engine, ledger, accounts):
        rule_service.create_rule("Costco", "costco", _ratios((accounts["groceries"], "1")))
        rule_service.create_rule("Rename", "costco", RenameAction(replacement="Costco"))

        first = rule_engine.apply_all(unbalanced_only=False)
        second = rule_engine.apply_all(unbalanced_only=False)

        assert first.modified == 3
        assert second.matched == 3
        assert second.modified == 0

    def test_apply_all_with_filters(self, rule_service, rule_engine, ledger, accounts):
        rule_service.create_rule("Costco", "costco", _ratios((accounts["groceries"], "1")))

        result = rule_engine.apply_all(
            start_date=date(2024, 3, 4), end_date=date(2024, 3, 31), pattern="costco"
        )

        assert result.processed == 1
        assert result.modified == 1

    def test_apply_all_ignores_manual_rules(self, rule_service, rule_engine, ledger, accounts):
        rule_service.create_rule(
            "Costco", "costco", _ratios((accounts["groceries"], "1")), auto_apply=False
        )

        result = rule_engine.apply_all()

        assert result.processed == 3
        assert result.matched == 0
        assert result.modified == 0

    def test_sink_failure_is_ignored(self, rule_service, rule_engine, ledger, accounts):
        rule_service.create_rule("Costco", "costco", _ratios((accounts["groceries"], "1")))

        result = rule_engine.apply_all(sink=FailingSink())

        assert result.modified == 2

    def test_failures_are_collected(self, rule_service, rule_engine, ledger, accounts):
        rule_service.create_rule("Bad", "costco", _ratios((accounts["card"], "1")))

        result = rule_engine.apply_all()

        assert result.processed == 3
        assert [txn_id for txn_id, _ in result.failures] == [ledger[0].id, ledger[1].id]
        assert result.modified == 0

    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 3, 10), date(2024, 3, 1)),
            (date(2023, 1, 1), date(2024, 3, 1)),
        ],
    )
    def test_invalid_range(self, rule_engine, start, end):
        with pytest.raises(ValidationError):
            rule_engine.apply_all(start_date=start, end_date=end)
