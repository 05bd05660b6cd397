"""Pagination helpers shared by list and search operations."""

import math
from typing import Iterable, Optional

from tallybook.domain.entities import Page, Pagination
from tallybook.domain.errors import ValidationError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def normalize_paging(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    """Apply defaults to page and limit and validate them.

    Raises:
        ValidationError: If page is below 1 or limit is outside 1..MAX_LIMIT
    """
    page = DEFAULT_PAGE if page is None else page
    limit = DEFAULT_LIMIT if limit is None else limit
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError(f"Invalid page {page!r}: must be a positive integer")
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"Invalid limit {limit!r}: must be between 1 and {MAX_LIMIT}")
    return page, limit


def make_page(items: Iterable, total: int, page: int, limit: int) -> Page:
    """Wrap one page of items with its pagination metadata."""
    return Page(
        items=tuple(items),
        pagination=Pagination(
            total=total, page=page, limit=limit, pages=math.ceil(total / limit)
        ),
    )
