"""
Normalization of raw extraction entries.

Whatever the inference service returns, callers receive exactly one
ExtractionResult per requested column, in requested order, with confidence
clamped into [0, 1]. Nothing in this module raises.
"""

import logging
import math
from typing import Any, Iterable

from ..models import ColumnDefinition, ExtractionResult, Provenance

logger = logging.getLogger(__name__)


def clamp_confidence(raw: Any) -> float:
    """
    Coerce a reported confidence into [0, 1].

    Missing, non-numeric and NaN values become 0.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def coerce_value(raw: Any) -> str:
    """Stringify a reported value; None and empty values become ""."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw.strip()
    if isinstance(raw, (list, tuple)):
        return ", ".join(coerce_value(item) for item in raw if item is not None)
    return str(raw)


def normalize_results(
    raw_entries: Iterable[Any],
    columns: list[ColumnDefinition],
    provenance: Provenance,
) -> list[ExtractionResult]:
    """
    Turn raw service entries into one result per requested column.

    Entries for unknown column ids are dropped and the first entry for a
    column wins. Columns without an entry get an empty, zero-confidence
    result.

    Args:
        raw_entries: Entries of the form {"columnId", "value", "confidence"}.
        columns: Requested columns, in the order results must follow.
        provenance: Provenance attached to every result.

    Returns:
        Normalized results aligned with ``columns``.
    """
    requested = {col.id for col in columns}
    by_column: dict[str, dict[str, Any]] = {}

    for entry in raw_entries or []:
        if not isinstance(entry, dict):
            continue
        column_id = entry.get("columnId")
        if column_id not in requested or column_id in by_column:
            continue
        by_column[column_id] = entry

    missing = requested - set(by_column)
    if missing:
        logger.info("No entry returned for %d column(s): %s", len(missing), sorted(missing))

    results = []
    for col in columns:
        entry = by_column.get(col.id, {})
        results.append(
            ExtractionResult(
                column_id=col.id,
                value=coerce_value(entry.get("value")),
                confidence=clamp_confidence(entry.get("confidence")),
                provenance=provenance,
            )
        )
    return results


def failure_results(
    columns: list[ColumnDefinition],
    diagnostic: str,
    provenance: Provenance,
) -> list[ExtractionResult]:
    """Zero-confidence results carrying a diagnostic string for every column."""
    return [
        ExtractionResult(
            column_id=col.id,
            value=diagnostic,
            confidence=0.0,
            provenance=provenance,
        )
        for col in columns
    ]


def merge_fallback(
    primary: list[ExtractionResult],
    secondary: list[ExtractionResult],
) -> list[ExtractionResult]:
    """
    Fill zero-confidence primary slots with non-zero secondary results.

    A zero-confidence secondary result never replaces a primary slot, so
    the primary diagnostic survives when both fail.
    """
    by_column = {result.column_id: result for result in secondary}
    merged = []
    for result in primary:
        candidate = by_column.get(result.column_id)
        if not result.succeeded and candidate is not None and candidate.succeeded:
            merged.append(candidate)
        else:
            merged.append(result)
    return merged


def count_successes(results: Iterable[ExtractionResult]) -> int:
    return sum(1 for result in results if result.succeeded)
