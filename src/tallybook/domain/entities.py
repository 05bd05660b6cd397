"""Domain model entities for tallybook.

These are pure data classes representing ledger concepts, independent of
database schema. Services pass them around and the database layer maps them
to and from ORM rows.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class AccountType(str, Enum):
    """Kind of ledger account."""

    ASSET = "asset"
    LIABILITY = "liability"
    INCOME = "income"
    EXPENSE = "expense"
    EQUITY = "equity"


class EntrySide(str, Enum):
    """Side of a double-entry line."""

    DEBIT = "debit"
    CREDIT = "credit"

    @property
    def opposite(self) -> "EntrySide":
        return EntrySide.CREDIT if self is EntrySide.DEBIT else EntrySide.DEBIT


class SideFilter(str, Enum):
    """Entry side filter used by rules and searches."""

    DEBIT = "debit"
    CREDIT = "credit"
    BOTH = "both"

    def accepts(self, side: EntrySide) -> bool:
        return self is SideFilter.BOTH or self.value == side.value


@dataclass(frozen=True)
class Account:
    """Ledger account domain entity."""

    id: int
    name: str
    account_type: AccountType
    unit: str
    parent_id: Optional[int]
    is_active: bool
    created_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class Entry:
    """One debit or credit line of a transaction.

    ``id`` is assigned by the store and is only used to address the entry
    for move and delete operations.
    """

    account_id: int
    amount: Decimal
    side: EntrySide
    unit: str = "USD"
    description: Optional[str] = None
    generated: bool = False
    id: Optional[int] = None


@dataclass(frozen=True)
class Transaction:
    """Transaction domain entity holding an ordered list of entries."""

    id: Optional[int]
    date: date
    description: str
    entries: tuple[Entry, ...]
    is_balanced: bool
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def has_generated_entries(self) -> bool:
        return any(entry.generated for entry in self.entries)

    def find_entry(self, entry_id: int) -> Optional[Entry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None


@dataclass(frozen=True)
class TransactionQuery:
    """Filter used by store searches over transactions and entries.

    All fields are optional; an empty query matches everything. Dates are
    inclusive bounds. ``description_pattern`` is a case-insensitive regular
    expression. ``min_amount``/``max_amount`` and ``side`` only apply to
    entry searches, and ``side`` also narrows transaction searches to those
    holding at least one entry on that side.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description_pattern: Optional[str] = None
    account_ids: tuple[int, ...] = ()
    side: Optional[EntrySide] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    is_balanced: Optional[bool] = None
    exclude_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class EntryMatch:
    """An entry joined with its transaction and account, as returned by entry search."""

    entry: Entry
    transaction_id: int
    transaction_date: date
    transaction_description: str
    transaction_is_balanced: bool
    account_name: str
    account_type: AccountType


@dataclass(frozen=True)
class Pagination:
    """Paging metadata returned with every list result."""

    total: int
    page: int
    limit: int
    pages: int


@dataclass(frozen=True)
class Page:
    """One page of results."""

    items: tuple
    pagination: Pagination


@dataclass(frozen=True)
class RenameAction:
    """Rule action replacing the transaction description."""

    replacement: str


@dataclass(frozen=True)
class Destination:
    """Target account of a complementary rule, by ratio or by fixed amount.

    A destination with neither ratio nor amount takes the remainder; only
    the last destination of a fixed-amount rule may do so.
    """

    account_id: int
    ratio: Optional[Decimal] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ComplementaryAction:
    """Rule action adding generated entries that cancel the imbalance."""

    destinations: tuple[Destination, ...]

    @property
    def uses_ratios(self) -> bool:
        return all(dest.ratio is not None for dest in self.destinations)


@dataclass(frozen=True)
class MergeAction:
    """Rule action merging the transaction with a complementary counterpart."""

    counterpart_pattern: Optional[str] = None
    counterpart_account_ids: tuple[int, ...] = ()
    max_date_difference: int = 3


RuleAction = Union[RenameAction, ComplementaryAction, MergeAction]


@dataclass(frozen=True)
class Rule:
    """Pattern-matched transaction rule."""

    id: Optional[int]
    name: str
    pattern: str
    action: RuleAction
    source_account_ids: tuple[int, ...] = ()
    entry_side: SideFilter = SideFilter.BOTH
    auto_apply: bool = True
    created_at: Optional[datetime] = None

    @property
    def kind(self) -> str:
        if isinstance(self.action, RenameAction):
            return "rename"
        if isinstance(self.action, ComplementaryAction):
            return "complementary"
        return "merge"


@dataclass(frozen=True)
class DateWindow:
    """Date range spanning a number of business days around a reference date."""

    start: datetime
    end: datetime
    business_days: int
    reference: date


@dataclass(frozen=True)
class ProgressEvent:
    """Progress of a bulk rule run, emitted after each processed transaction."""

    processed: int
    total: int
    matched: int
    modified: int
    transaction_id: Optional[int] = None
    done: bool = False


@dataclass
class BulkResult:
    """Outcome counters of a bulk rule run."""

    processed: int = 0
    matched: int = 0
    modified: int = 0
    failures: list[tuple[int, str]] = field(default_factory=list)
