"""
Result ordering and pagination.

Sorting is stable and deterministic:
- Requested fields are applied in the given directions
- A missing or null field sorts as the minimum value
- Mixed types order as null < bool < number < string < array < object
- Ties are broken by ascending created_at, then id
- Without order_by, input (creation) order is kept
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

from ..errors import ValidationError
from ..values import sort_key
from .filters import is_missing, lookup_field

MAX_LIMIT = 1000
MIN_LIMIT = 1


class Sortable(Protocol):
    id: str
    data: dict[str, Any]
    created_at: int


T = TypeVar("T", bound=Sortable)


def parse_order_by(order_by: Any) -> list[tuple[str, bool]]:
    """Normalize order_by into (field, descending) pairs.

    Accepts a single field name, or a sequence of field names and
    (field, "asc"|"desc") pairs.

    Raises:
        ValidationError: On an empty field or unknown direction
    """
    if order_by is None:
        return []
    if isinstance(order_by, str):
        order_by = [order_by]

    parsed = []
    for entry in order_by:
        if isinstance(entry, str):
            field_name, direction = entry, "asc"
        elif isinstance(entry, Sequence) and len(entry) == 2:
            field_name, direction = entry
        else:
            raise ValidationError(f"Invalid order_by entry: {entry!r}")

        if not isinstance(field_name, str) or not field_name:
            raise ValidationError("order_by field must be a non-empty string")

        direction = str(direction).lower()
        if direction not in ("asc", "desc"):
            raise ValidationError(
                f"Invalid sort direction '{direction}' for '{field_name}'",
                field_name=field_name,
                errors=["direction must be 'asc' or 'desc'"],
            )
        parsed.append((field_name, direction == "desc"))
    return parsed


def _field_key(document: Sortable, field_name: str) -> tuple:
    value = lookup_field(document.data, field_name)
    return sort_key(None if is_missing(value) else value)


def sort_documents(documents: Sequence[T], order_by: Any = None) -> list[T]:
    """Sort documents by the requested fields.

    Args:
        documents: Documents in creation order
        order_by: See parse_order_by

    Returns:
        New sorted list
    """
    keys = parse_order_by(order_by)
    result = list(documents)
    if not keys:
        return result

    # Least significant key first; Python's sort is stable even with reverse=True
    result.sort(key=lambda d: (d.created_at, d.id))
    for field_name, descending in reversed(keys):
        result.sort(key=lambda d, f=field_name: _field_key(d, f), reverse=descending)
    return result


def clamp_page(limit: int, offset: int) -> tuple[int, int]:
    """Clamp limit to [1, 1000] and offset to >= 0."""
    return max(MIN_LIMIT, min(MAX_LIMIT, int(limit))), max(0, int(offset))
