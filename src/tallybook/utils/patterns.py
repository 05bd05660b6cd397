"""Case-insensitive description patterns shared by searches and rules."""

import re

from tallybook.domain.errors import ValidationError

CASE_INSENSITIVE = "(?i)"


def sql_pattern(pattern: str) -> str:
    """Return the pattern as sent to the store's REGEXP operator."""
    return CASE_INSENSITIVE + pattern


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a description pattern exactly as the store will evaluate it.

    Raises:
        ValidationError: If the pattern is empty or not a valid regular expression
    """
    if pattern is None or not str(pattern).strip():
        raise ValidationError("Pattern must not be empty")
    try:
        return re.compile(sql_pattern(pattern))
    except re.error as e:
        raise ValidationError(f"Invalid pattern '{pattern}': {e}") from e
