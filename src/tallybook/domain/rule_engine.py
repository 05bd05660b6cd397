"""Rule engine: matching rules against transactions and committing their effects.

Each rule action produces an ``Effect`` describing the change it wants:
a new description (rename), a new entry list (complementary add) or a
counterpart to merge with (merge). Effects are computed from the current
state of the transaction and committed one rule at a time.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Iterable, Optional, Protocol

from tallybook.database.base import Database
from tallybook.domain.balance import EPSILON, amounts_equal, evaluate, rebalance
from tallybook.domain.entities import (
    BulkResult,
    ComplementaryAction,
    Entry,
    MergeAction,
    ProgressEvent,
    RenameAction,
    Rule,
    Transaction,
    TransactionQuery,
)
from tallybook.domain.errors import (
    DomainError,
    NotFoundError,
    ValidationError,
    rule_not_found,
    transaction_not_found,
)
from tallybook.domain.guard import InvariantGuard, build_entry
from tallybook.domain.reconciliation import ReconciliationService
from tallybook.utils.amount_parser import CENT
from tallybook.utils.patterns import compile_pattern

logger = logging.getLogger(__name__)

MAX_BULK_RANGE_DAYS = 366


def generated_description(rule: Rule) -> str:
    """Description carried by entries a complementary rule generates."""
    return f"Auto-generated by rule: {rule.name}"


class RuleStatus(str, Enum):
    """Result of evaluating one rule against one transaction."""

    NOT_MATCHED = "not_matched"
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RuleOutcome:
    rule_id: int
    rule_name: str
    status: RuleStatus
    message: Optional[str] = None


@dataclass(frozen=True)
class Effect:
    """Change a rule wants to make; an effect with only ``reason`` set is a skip."""

    description: Optional[str] = None
    entries: Optional[tuple[Entry, ...]] = None
    merge_with: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.description is None and self.entries is None and self.merge_with is None


def skip(reason: str) -> Effect:
    return Effect(reason=reason)


class ProgressSink(Protocol):
    """Receiver of bulk progress events; delivery is fire-and-forget."""

    def emit(self, event: ProgressEvent) -> None:
        ...


class RuleEngine:
    """Applies rules to transactions."""

    def __init__(self, db: Database):
        """Initialize rule engine.

        Args:
            db: Database instance
        """
        self.db = db
        self.guard = InvariantGuard(db)
        self.reconciliation = ReconciliationService(db)
        self._handlers = {
            RenameAction: self._rename_effect,
            ComplementaryAction: self._complementary_effect,
            MergeAction: self._merge_effect,
        }

    def matches(self, rule: Rule, transaction: Transaction) -> bool:
        """Check whether a rule applies to a transaction.

        The pattern must match the description, at least one entry must use
        a source account (when the rule names any) and at least one entry
        must be on the rule's side (unless it accepts both).
        """
        if not compile_pattern(rule.pattern).search(transaction.description or ""):
            return False
        if rule.source_account_ids and not any(
            entry.account_id in rule.source_account_ids for entry in transaction.entries
        ):
            return False
        return any(rule.entry_side.accepts(entry.side) for entry in transaction.entries)

    def apply(self, rule: Rule, transaction: Transaction) -> Effect:
        """Compute the effect of a rule on a transaction without writing anything."""
        handler = self._handlers[type(rule.action)]
        return handler(rule, transaction)

    def _rename_effect(self, rule: Rule, transaction: Transaction) -> Effect:
        replacement = rule.action.replacement
        if transaction.description == replacement:
            return skip("description already set")
        return Effect(description=replacement)

    def _split_amount(self, action: ComplementaryAction, total: Decimal) -> Optional[list[Decimal]]:
        """Distribute an imbalance over the destinations of a complementary rule.

        Returns None when fixed amounts cannot add up to the imbalance.
        """
        destinations = action.destinations
        if action.uses_ratios:
            # Shares round down so the last destination's remainder is never negative
            amounts = []
            remaining = total
            for dest in destinations[:-1]:
                share = min((total * dest.ratio).quantize(CENT, rounding=ROUND_DOWN), remaining)
                amounts.append(share)
                remaining -= share
            amounts.append(remaining)
            return amounts

        fixed = [dest.amount for dest in destinations if dest.amount is not None]
        fixed_total = sum(fixed, Decimal(0))
        if destinations[-1].amount is None:
            remainder = total - fixed_total
            if remainder < EPSILON:
                return None
            return fixed + [remainder]
        if not amounts_equal(fixed_total, total):
            return None
        return fixed

    def _complementary_effect(self, rule: Rule, transaction: Transaction) -> Effect:
        if transaction.has_generated_entries:
            return skip("transaction already holds generated entries")
        imbalance = evaluate(transaction.entries).imbalance
        if imbalance is None:
            return skip("transaction has no imbalance")

        amounts = self._split_amount(rule.action, imbalance.amount)
        if amounts is None:
            return skip(f"fixed amounts do not add up to the imbalance of {imbalance.amount}")

        generated = [
            build_entry(
                dest.account_id,
                amount,
                imbalance.side,
                description=generated_description(rule),
                generated=True,
            )
            for dest, amount in zip(rule.action.destinations, amounts)
            if amount > 0
        ]
        entries = self.guard.validate(list(transaction.entries) + generated)
        return Effect(entries=tuple(entries))

    def _merge_effect(self, rule: Rule, transaction: Transaction) -> Effect:
        own = evaluate(e for e in transaction.entries if not e.generated).imbalance
        if own is None:
            return skip("transaction has no imbalance")

        action: MergeAction = rule.action
        window = timedelta(days=action.max_date_difference)
        candidates, _ = self.db.find_transactions(
            TransactionQuery(
                start_date=transaction.date - window,
                end_date=transaction.date + window,
                description_pattern=action.counterpart_pattern or rule.pattern,
                account_ids=action.counterpart_account_ids,
                exclude_ids=(transaction.id,),
            )
        )

        ranked = []
        for candidate in candidates:
            theirs = evaluate(e for e in candidate.entries if not e.generated).imbalance
            if (
                theirs is None
                or theirs.unit != own.unit
                or theirs.side != own.side.opposite
                or not amounts_equal(theirs.amount, own.amount)
            ):
                continue
            rank = (not candidate.has_generated_entries, abs((candidate.date - transaction.date).days))
            ranked.append((rank, candidate.id))

        if not ranked:
            return skip("no complementary counterpart found")
        ranked.sort()
        if len(ranked) > 1 and ranked[0][0] == ranked[1][0]:
            return skip(f"{len(ranked)} equally good counterparts found")
        return Effect(merge_with=ranked[0][1])

    def _commit(self, transaction: Transaction, effect: Effect) -> Transaction:
        if effect.merge_with is not None:
            return self.reconciliation.merge(transaction.id, effect.merge_with, drop_generated=True)
        updated = transaction
        if effect.description is not None:
            updated = dataclasses.replace(updated, description=effect.description)
        if effect.entries is not None:
            updated = rebalance(updated, effect.entries)
        return self.db.save_transaction(updated)

    def _run(self, rule: Rule, transaction: Transaction) -> tuple[RuleOutcome, Transaction]:
        """Evaluate one rule and commit its effect. Domain errors propagate."""
        if not self.matches(rule, transaction):
            return RuleOutcome(rule.id, rule.name, RuleStatus.NOT_MATCHED), transaction
        effect = self.apply(rule, transaction)
        if effect.is_empty:
            logger.debug(
                "Rule %s skipped for transaction %s: %s", rule.name, transaction.id, effect.reason
            )
            return RuleOutcome(rule.id, rule.name, RuleStatus.SKIPPED, effect.reason), transaction
        updated = self._commit(transaction, effect)
        logger.info("Applied %s rule %s to transaction %s", rule.kind, rule.name, transaction.id)
        return RuleOutcome(rule.id, rule.name, RuleStatus.APPLIED), updated

    def _run_all(
        self, rules: Iterable[Rule], transaction: Transaction
    ) -> tuple[Transaction, list[RuleOutcome]]:
        outcomes = []
        current = transaction
        for rule in rules:
            try:
                outcome, current = self._run(rule, current)
            except DomainError as e:
                logger.warning(
                    "Rule %s failed for transaction %s: %s", rule.name, current.id, e
                )
                outcome = RuleOutcome(rule.id, rule.name, RuleStatus.FAILED, str(e))
            outcomes.append(outcome)
        return current, outcomes

    def apply_auto_rules(self, transaction: Transaction) -> tuple[Transaction, list[RuleOutcome]]:
        """Apply every auto-apply rule, in creation order, to a stored transaction.

        A failing rule is recorded as failed and the remaining rules still run.

        Returns:
            Tuple of (transaction after all rules, outcome per rule)
        """
        with self.db.unit_of_work():
            return self._run_all(self.db.list_rules(auto_apply_only=True), transaction)

    def _load(self, rule_id: int, transaction_id: int) -> tuple[Rule, Transaction]:
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))
        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        return rule, transaction

    def apply_rule(self, rule_id: int, transaction_id: int) -> tuple[RuleOutcome, Transaction]:
        """Apply one rule to one transaction, whether or not it is auto-applied.

        Raises:
            NotFoundError: If the rule or transaction does not exist
        """
        rule, transaction = self._load(rule_id, transaction_id)
        with self.db.unit_of_work():
            return self._run(rule, transaction)

    def preview_effect(self, rule_id: int, transaction_id: int) -> Effect:
        """Compute what a rule would do to a transaction without writing anything."""
        rule, transaction = self._load(rule_id, transaction_id)
        if not self.matches(rule, transaction):
            return skip("rule does not match the transaction")
        return self.apply(rule, transaction)

    def _emit(self, sink: Optional[ProgressSink], event: ProgressEvent) -> None:
        if sink is None:
            return
        try:
            sink.emit(event)
        except Exception:
            logger.exception("Progress sink failed; continuing")

    def apply_all(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        pattern: Optional[str] = None,
        account_ids: Iterable[int] = (),
        unbalanced_only: bool = True,
        sink: Optional[ProgressSink] = None,
    ) -> BulkResult:
        """Apply auto-apply rules to every matching stored transaction.

        Matching IDs are collected first; each transaction is then reloaded
        and processed in its own unit of work. A transaction whose processing
        fails is recorded in ``failures`` and the run continues.

        Args:
            start_date: Optional inclusive start date
            end_date: Optional inclusive end date
            pattern: Optional description pattern
            account_ids: Only transactions touching these accounts
            unbalanced_only: Only process unbalanced transactions
            sink: Optional progress receiver

        Returns:
            BulkResult with processed, matched and modified counts

        Raises:
            ValidationError: If the date range is reversed or longer than a year
        """
        if start_date is not None and end_date is not None:
            if start_date > end_date:
                raise ValidationError("Start date must not be after end date")
            if (end_date - start_date).days > MAX_BULK_RANGE_DAYS:
                raise ValidationError(
                    f"Date range must not exceed {MAX_BULK_RANGE_DAYS} days"
                )
        if pattern:
            compile_pattern(pattern)

        transaction_ids = self.db.find_transaction_ids(
            TransactionQuery(
                start_date=start_date,
                end_date=end_date,
                description_pattern=pattern or None,
                account_ids=tuple(account_ids),
                is_balanced=False if unbalanced_only else None,
            )
        )
        rules = self.db.list_rules(auto_apply_only=True)
        result = BulkResult()
        total = len(transaction_ids)
        logger.info("Applying %d rules to %d transactions", len(rules), total)

        for transaction_id in transaction_ids:
            outcomes: list[RuleOutcome] = []
            try:
                with self.db.unit_of_work():
                    transaction = self.db.get_transaction(transaction_id)
                    if transaction is not None:
                        _, outcomes = self._run_all(rules, transaction)
            except Exception as e:
                logger.exception("Bulk rule application failed for transaction %s", transaction_id)
                result.failures.append((transaction_id, str(e)))

            result.processed += 1
            if any(o.status is not RuleStatus.NOT_MATCHED for o in outcomes):
                result.matched += 1
            if any(o.status is RuleStatus.APPLIED for o in outcomes):
                result.modified += 1
            result.failures.extend(
                (transaction_id, o.message or "") for o in outcomes if o.status is RuleStatus.FAILED
            )
            self._emit(
                sink,
                ProgressEvent(
                    processed=result.processed,
                    total=total,
                    matched=result.matched,
                    modified=result.modified,
                    transaction_id=transaction_id,
                ),
            )

        self._emit(
            sink,
            ProgressEvent(
                processed=result.processed,
                total=total,
                matched=result.matched,
                modified=result.modified,
                done=True,
            ),
        )
        logger.info(
            "Bulk rule run finished: %d processed, %d matched, %d modified, %d failed",
            result.processed,
            result.matched,
            result.modified,
            len(result.failures),
        )
        return result
