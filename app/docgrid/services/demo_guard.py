"""
Demo-data guard.

Decides whether a stored value still needs extraction. Seeded placeholder
values count as missing, so they are always replaced.
"""

import logging
from typing import Any, Iterable

from ..config import get_settings

logger = logging.getLogger(__name__)


class DemoDataGuard:
    """Selects the columns that need (re-)extraction."""

    def __init__(self, placeholders: Iterable[str] | None = None):
        if placeholders is None:
            placeholders = get_settings().placeholder_values
        self.placeholders = frozenset(placeholders)

    def is_placeholder(self, value: str | None) -> bool:
        return value is not None and value.strip() in self.placeholders

    def needs_extraction(self, existing: dict[str, Any] | None, force: bool = False) -> bool:
        """
        Check a stored ExtractedValue (as stored JSON) against the guard.

        Args:
            existing: Stored value for the (document, column) pair, if any.
            force: Explicit re-extraction request; always wins.

        Returns:
            True if the column must be extracted.
        """
        if force or not existing:
            return True
        value = existing.get("value")
        if value is None or not str(value).strip():
            return True
        if self.is_placeholder(str(value)):
            logger.warning("Replacing placeholder value %r", value)
            return True
        return False
