"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, so the ORM schema (one row per
entry, rule actions spread over typed columns) can change without touching
the domain entities.
"""

from decimal import Decimal
from typing import Iterable, Optional

from tallybook.domain import entities as domain
from tallybook.database.models import (
    Account as ORMAccount,
    Entry as ORMEntry,
    Rule as ORMRule,
    Transaction as ORMTransaction,
)


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        name=orm_account.name,
        account_type=domain.AccountType(orm_account.account_type),
        unit=orm_account.unit,
        parent_id=orm_account.parent_id,
        is_active=orm_account.is_active,
        created_at=orm_account.created_at,
        description=orm_account.description,
    )


def entry_to_domain(orm_entry: ORMEntry) -> domain.Entry:
    """Convert SQLAlchemy Entry model to domain Entry entity."""
    return domain.Entry(
        id=orm_entry.id,
        account_id=orm_entry.account_id,
        amount=Decimal(orm_entry.amount),
        side=domain.EntrySide(orm_entry.side),
        unit=orm_entry.unit,
        description=orm_entry.description,
        generated=bool(orm_entry.generated),
    )


def transaction_to_domain(
    orm_transaction: ORMTransaction, orm_entries: Iterable[ORMEntry]
) -> domain.Transaction:
    """Convert a SQLAlchemy Transaction and its entry rows to a domain Transaction.

    Entry rows are ordered by position here, so callers may pass them in any order.
    """
    ordered = sorted(orm_entries, key=lambda row: (row.position, row.id or 0))
    return domain.Transaction(
        id=orm_transaction.id,
        date=orm_transaction.date,
        description=orm_transaction.description,
        entries=tuple(entry_to_domain(row) for row in ordered),
        is_balanced=bool(orm_transaction.is_balanced),
        reference=orm_transaction.reference,
        notes=orm_transaction.notes,
        created_at=orm_transaction.created_at,
    )


def _decimal_or_none(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def rule_action_to_domain(orm_rule: ORMRule) -> domain.RuleAction:
    """Build the action variant of a stored rule."""
    if orm_rule.rule_type == "rename":
        return domain.RenameAction(replacement=orm_rule.replacement or "")
    if orm_rule.rule_type == "complementary":
        return domain.ComplementaryAction(
            destinations=tuple(
                domain.Destination(
                    account_id=item["account_id"],
                    ratio=_decimal_or_none(item.get("ratio")),
                    amount=_decimal_or_none(item.get("amount")),
                )
                for item in (orm_rule.destinations or [])
            )
        )
    if orm_rule.rule_type == "merge":
        return domain.MergeAction(
            counterpart_pattern=orm_rule.counterpart_pattern,
            counterpart_account_ids=tuple(orm_rule.counterpart_account_ids or ()),
            max_date_difference=orm_rule.max_date_difference,
        )
    raise ValueError(f"Unknown rule type '{orm_rule.rule_type}'")


def rule_to_domain(orm_rule: ORMRule) -> domain.Rule:
    """Convert SQLAlchemy Rule model to domain Rule entity."""
    return domain.Rule(
        id=orm_rule.id,
        name=orm_rule.name,
        pattern=orm_rule.pattern,
        action=rule_action_to_domain(orm_rule),
        source_account_ids=tuple(orm_rule.source_account_ids or ()),
        entry_side=domain.SideFilter(orm_rule.entry_side),
        auto_apply=bool(orm_rule.auto_apply),
        created_at=orm_rule.created_at,
    )


def apply_rule_to_orm(rule: domain.Rule, orm_rule: ORMRule) -> ORMRule:
    """Copy a domain Rule onto a SQLAlchemy Rule row, clearing unused action columns."""
    orm_rule.name = rule.name
    orm_rule.pattern = rule.pattern
    orm_rule.rule_type = rule.kind
    orm_rule.source_account_ids = list(rule.source_account_ids)
    orm_rule.entry_side = rule.entry_side.value
    orm_rule.auto_apply = rule.auto_apply
    orm_rule.replacement = None
    orm_rule.destinations = None
    orm_rule.counterpart_pattern = None
    orm_rule.counterpart_account_ids = None
    orm_rule.max_date_difference = None

    action = rule.action
    if isinstance(action, domain.RenameAction):
        orm_rule.replacement = action.replacement
    elif isinstance(action, domain.ComplementaryAction):
        orm_rule.destinations = [
            {
                "account_id": dest.account_id,
                "ratio": _str_or_none(dest.ratio),
                "amount": _str_or_none(dest.amount),
            }
            for dest in action.destinations
        ]
    else:
        orm_rule.counterpart_pattern = action.counterpart_pattern
        orm_rule.counterpart_account_ids = list(action.counterpart_account_ids)
        orm_rule.max_date_difference = action.max_date_difference
    return orm_rule
