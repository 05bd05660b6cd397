"""Rule domain service: validation, storage and preview of rules."""

import dataclasses
import logging
from decimal import Decimal
from typing import Iterable, Optional

from tallybook.database.base import Database
from tallybook.domain.balance import coerce_amount
from tallybook.domain.entities import (
    ComplementaryAction,
    Destination,
    EntrySide,
    MergeAction,
    Page,
    RenameAction,
    Rule,
    RuleAction,
    SideFilter,
    TransactionQuery,
)
from tallybook.domain.errors import (
    NotFoundError,
    UnknownAccountError,
    ValidationError,
    rule_not_found,
)
from tallybook.domain.guard import check_amount
from tallybook.domain.paging import make_page, normalize_paging
from tallybook.utils.patterns import compile_pattern

logger = logging.getLogger(__name__)

RATIO_TOLERANCE = Decimal("0.0001")
MIN_DATE_DIFFERENCE = 1
MAX_DATE_DIFFERENCE = 15


def parse_side_filter(value) -> SideFilter:
    """Parse 'debit', 'credit' or 'both' into a SideFilter."""
    try:
        return SideFilter(value)
    except ValueError:
        raise ValidationError(f"Invalid entry side '{value}': expected debit, credit or both")


def side_of(side_filter: SideFilter) -> Optional[EntrySide]:
    """Return the concrete side a filter selects, or None for both."""
    if side_filter is SideFilter.BOTH:
        return None
    return EntrySide(side_filter.value)


class RuleService:
    """Service for managing rules."""

    def __init__(self, db: Database):
        """Initialize rule service.

        Args:
            db: Database instance
        """
        self.db = db

    def _check_accounts(self, account_ids: Iterable[int]) -> None:
        for account_id in account_ids:
            if self.db.get_account(account_id) is None:
                raise UnknownAccountError(account_id)

    def _validate_destinations(self, destinations: tuple[Destination, ...]) -> tuple[Destination, ...]:
        if not destinations:
            raise ValidationError("A complementary rule needs at least one destination")
        self._check_accounts(dest.account_id for dest in destinations)

        if all(dest.ratio is not None for dest in destinations):
            ratios = []
            for dest in destinations:
                if dest.amount is not None:
                    raise ValidationError("A destination cannot have both a ratio and an amount")
                ratio = coerce_amount(dest.ratio)
                if ratio <= 0:
                    raise ValidationError(f"Ratio must be positive, got {ratio}")
                ratios.append(ratio)
            total = sum(ratios, Decimal(0))
            if abs(total - 1) > RATIO_TOLERANCE:
                raise ValidationError(f"Destination ratios must sum to 1.0, got {total}")
            return tuple(
                Destination(account_id=dest.account_id, ratio=ratio)
                for dest, ratio in zip(destinations, ratios)
            )

        if any(dest.ratio is not None for dest in destinations):
            raise ValidationError("Destinations must all use ratios or all use fixed amounts")

        validated = []
        for position, dest in enumerate(destinations):
            if dest.amount is None:
                if position != len(destinations) - 1:
                    raise ValidationError("Only the last destination may take the remainder")
                validated.append(Destination(account_id=dest.account_id))
                continue
            amount = check_amount(dest.amount)
            validated.append(Destination(account_id=dest.account_id, amount=amount))
        return tuple(validated)

    def _validate_action(self, action: RuleAction) -> RuleAction:
        if isinstance(action, RenameAction):
            if not action.replacement or not action.replacement.strip():
                raise ValidationError("A rename rule needs a non-empty replacement description")
            return action
        if isinstance(action, ComplementaryAction):
            return ComplementaryAction(destinations=self._validate_destinations(tuple(action.destinations)))
        if isinstance(action, MergeAction):
            if action.counterpart_pattern:
                compile_pattern(action.counterpart_pattern)
            self._check_accounts(action.counterpart_account_ids)
            days = action.max_date_difference
            if (
                isinstance(days, bool)
                or not isinstance(days, int)
                or not MIN_DATE_DIFFERENCE <= days <= MAX_DATE_DIFFERENCE
            ):
                raise ValidationError(
                    f"max_date_difference must be between {MIN_DATE_DIFFERENCE} and "
                    f"{MAX_DATE_DIFFERENCE} days, got {days!r}"
                )
            return MergeAction(
                counterpart_pattern=action.counterpart_pattern or None,
                counterpart_account_ids=tuple(action.counterpart_account_ids),
                max_date_difference=days,
            )
        raise ValidationError(f"Unknown rule action {action!r}")

    def validate_rule(self, rule: Rule) -> Rule:
        """Validate a rule and return it in normalized form.

        Raises:
            ValidationError: If any field is invalid
            UnknownAccountError: If a referenced account does not exist
        """
        name = (rule.name or "").strip()
        if not name:
            raise ValidationError("Rule name must not be empty")
        compile_pattern(rule.pattern)
        self._check_accounts(rule.source_account_ids)
        return Rule(
            id=rule.id,
            name=name,
            pattern=rule.pattern,
            action=self._validate_action(rule.action),
            source_account_ids=tuple(rule.source_account_ids),
            entry_side=parse_side_filter(rule.entry_side),
            auto_apply=bool(rule.auto_apply),
            created_at=rule.created_at,
        )

    def create_rule(
        self,
        name: str,
        pattern: str,
        action: RuleAction,
        source_account_ids: Iterable[int] = (),
        entry_side: SideFilter | str = SideFilter.BOTH,
        auto_apply: bool = True,
    ) -> Rule:
        """Validate and store a new rule.

        Args:
            name: Rule name
            pattern: Case-insensitive regular expression over descriptions
            action: RenameAction, ComplementaryAction or MergeAction
            source_account_ids: Only match transactions touching these accounts
            entry_side: Only match transactions holding an entry on this side
            auto_apply: Evaluate the rule on every transaction write

        Returns:
            The stored rule
        """
        rule = self.validate_rule(
            Rule(
                id=None,
                name=name,
                pattern=pattern,
                action=action,
                source_account_ids=tuple(source_account_ids),
                entry_side=entry_side,
                auto_apply=auto_apply,
            )
        )
        saved = self.db.save_rule(rule)
        logger.info("Created %s rule %s (%s)", saved.kind, saved.id, saved.name)
        return saved

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        """Get rule by ID."""
        return self.db.get_rule(rule_id)

    def require_rule(self, rule_id: int) -> Rule:
        """Get rule by ID or raise NotFoundError."""
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))
        return rule

    def list_rules(self) -> list[Rule]:
        """List rules in creation order."""
        return self.db.list_rules()

    def set_auto_apply(self, rule_id: int, auto_apply: bool) -> Rule:
        """Enable or disable automatic application of a rule."""
        rule = self.require_rule(rule_id)
        return self.db.save_rule(dataclasses.replace(rule, auto_apply=auto_apply))

    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule.

        Raises:
            NotFoundError: If rule not found
        """
        self.require_rule(rule_id)
        self.db.delete_rule(rule_id)
        logger.info("Deleted rule %s", rule_id)

    def preview_matches(
        self,
        pattern: str,
        source_account_ids: Iterable[int] = (),
        entry_side: SideFilter | str = SideFilter.BOTH,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> tuple[Page, int]:
        """Show which stored transactions a draft rule would match.

        Returns:
            Tuple of (page of matching transactions, number of unbalanced matches)
        """
        compile_pattern(pattern)
        side_filter = parse_side_filter(entry_side)
        page, limit = normalize_paging(page, limit)
        query = TransactionQuery(
            description_pattern=pattern,
            account_ids=tuple(source_account_ids),
            side=side_of(side_filter),
        )
        items, total = self.db.find_transactions(query, page=page, limit=limit)
        _, unbalanced = self.db.find_transactions(
            TransactionQuery(
                description_pattern=query.description_pattern,
                account_ids=query.account_ids,
                side=query.side,
                is_balanced=False,
            ),
            page=1,
            limit=1,
        )
        return make_page(items, total, page, limit), unbalanced
