"""
Tagged value model for document and profile data.

Document fields hold values from a closed set of types:
null, bool, number, string, array, object. Values are stored as plain
JSON-compatible Python objects; ``ValueType.of`` classifies them so the
query engine can check operator/type compatibility exhaustively.

Invariants:
    - bool is never treated as a number
    - Object keys are always strings
    - Numbers are finite (NaN and infinity are rejected)
    - Equality is tag-aware: True != 1, but 1 == 1.0

How to change safely:
    - Adding a new ValueType requires updating TYPE_ORDER and every
      operator in query.filters
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .errors import ValidationError


class ValueType(Enum):
    """Closed set of value tags."""

    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def of(cls, value: Any) -> ValueType:
        """Classify a Python value.

        Raises:
            ValidationError: If the value is outside the model
        """
        if value is None:
            return cls.NULL
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return cls.BOOL
        if isinstance(value, (int, float)):
            return cls.NUMBER
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, (list, tuple)):
            return cls.ARRAY
        if isinstance(value, Mapping):
            return cls.OBJECT
        raise ValidationError(
            f"Unsupported value type: {type(value).__name__}",
            errors=[f"{type(value).__name__} is not one of null/bool/number/string/array/object"],
        )


# Cross-type ordering used when sorting mixed values
TYPE_ORDER = {
    ValueType.NULL: 0,
    ValueType.BOOL: 1,
    ValueType.NUMBER: 2,
    ValueType.STRING: 3,
    ValueType.ARRAY: 4,
    ValueType.OBJECT: 5,
}


def validate_value(value: Any, path: str = "") -> Any:
    """Validate a value recursively and return a normalized copy.

    Tuples become lists and mappings become plain dicts so stored data
    is always JSON-serializable.

    Args:
        value: Value to validate
        path: Dotted path used in error messages

    Returns:
        Normalized value

    Raises:
        ValidationError: If any nested value is outside the model
    """
    try:
        value_type = ValueType.of(value)
    except ValidationError as e:
        raise ValidationError(f"Invalid value at '{path or '<root>'}': {e.message}", field_name=path or None)

    if value_type is ValueType.NUMBER and not math.isfinite(value):
        raise ValidationError(f"Number at '{path}' must be finite", field_name=path or None)

    if value_type is ValueType.ARRAY:
        return [validate_value(item, f"{path}[{i}]") for i, item in enumerate(value)]

    if value_type is ValueType.OBJECT:
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(
                    f"Object keys must be strings, got {type(key).__name__} at '{path}'",
                    field_name=path or None,
                )
            child = f"{path}.{key}" if path else key
            result[key] = validate_value(item, child)
        return result

    return value


def validate_data(data: Any) -> dict[str, Any]:
    """Validate a top-level data mapping (document or profile fields).

    Raises:
        ValidationError: If data is not an object or contains invalid values
    """
    if not isinstance(data, Mapping):
        raise ValidationError(
            f"Data must be an object, got {type(data).__name__}",
            errors=["data must be a mapping of field name to value"],
        )
    return validate_value(data)


def values_equal(left: Any, right: Any) -> bool:
    """Tag-aware deep equality."""
    left_type = ValueType.of(left)
    right_type = ValueType.of(right)
    if left_type is not right_type:
        return False

    if left_type is ValueType.ARRAY:
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )

    if left_type is ValueType.OBJECT:
        if set(left.keys()) != set(right.keys()):
            return False
        return all(values_equal(left[k], right[k]) for k in left)

    return left == right


def parse_date(value: Any) -> datetime | None:
    """Parse an ISO-8601 date/datetime string, or return None.

    Naive values are treated as UTC so they compare with aware ones.
    """
    if not isinstance(value, str) or len(value) < 10:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_key(value: Any) -> tuple:
    """Total-order key for any tagged value.

    Missing values are represented by None and sort with null, the
    minimum of every type.
    """
    value_type = ValueType.of(value)
    rank = TYPE_ORDER[value_type]

    if value_type is ValueType.NULL:
        return (rank,)
    if value_type in (ValueType.BOOL, ValueType.NUMBER, ValueType.STRING):
        return (rank, value)
    if value_type is ValueType.ARRAY:
        return (rank, tuple(sort_key(item) for item in value))
    return (rank, tuple((k, sort_key(value[k])) for k in sorted(value)))
