"""
Collection aggregator.

Folds member document values into one value per column: the first visible
member (in aggregation order) holding a confident value wins.
"""

import logging
from typing import Any, Mapping, Sequence

from ..models import AggregateValue, ExtractedValue

logger = logging.getLogger(__name__)


def visible_members(document_ids: Sequence[str], hidden_ids: Sequence[str]) -> list[str]:
    hidden = set(hidden_ids or [])
    return [doc_id for doc_id in document_ids or [] if doc_id not in hidden]


def ordered_members(
    document_ids: Sequence[str],
    hidden_ids: Sequence[str],
    aggregation_order: Sequence[str],
) -> list[str]:
    """
    Visible members in aggregation order.

    Members missing from the aggregation order follow in membership order;
    ids in the order that are no longer members are ignored.
    """
    members = visible_members(document_ids, hidden_ids)
    member_set = set(members)
    ordered = []
    for doc_id in aggregation_order or []:
        if doc_id in member_set and doc_id not in ordered:
            ordered.append(doc_id)
    ordered.extend(doc_id for doc_id in members if doc_id not in ordered)
    return ordered


class CollectionAggregator:
    """Computes collection-level values from member values."""

    def aggregate_column(
        self,
        column_id: str,
        member_order: Sequence[str],
        member_values: Mapping[str, Mapping[str, Any]],
    ) -> AggregateValue | None:
        """
        Pick the collection value for one column.

        Args:
            column_id: Column to aggregate.
            member_order: Visible member ids, already in aggregation order.
            member_values: document id -> stored extracted data (columnId -> JSON value).

        Returns:
            The aggregate with the contributing document id, or None when no
            visible member holds a confident value.
        """
        for doc_id in member_order:
            stored = (member_values.get(doc_id) or {}).get(column_id)
            if not stored:
                continue
            value = ExtractedValue.model_validate(stored)
            if value.confidence > 0:
                return AggregateValue(
                    **value.model_dump(),
                    source_document_ids=[doc_id],
                )
        return None

    def aggregate(
        self,
        column_ids: Sequence[str],
        document_ids: Sequence[str],
        hidden_ids: Sequence[str],
        aggregation_order: Sequence[str],
        member_values: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, AggregateValue | None]:
        """Aggregate several columns; None marks a column with no contributor."""
        order = ordered_members(document_ids, hidden_ids, aggregation_order)
        aggregates = {
            column_id: self.aggregate_column(column_id, order, member_values)
            for column_id in column_ids
        }
        logger.info(
            "Aggregated %d column(s) over %d visible member(s)", len(aggregates), len(order)
        )
        return aggregates
