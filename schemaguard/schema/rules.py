"""Built-in custom rules for Schema Descriptors.

Rules are plain callables `(node) -> list[Violation]` registered on a
descriptor at construction time and run by the validator in registration
order. Paths in the returned violations are relative to the node.

Monetary aggregates are compared with exact Decimal equality, never with a
floating-point tolerance: a receipt whose lines sum to 107.6 must declare a
subtotal of exactly 107.6.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from schemaguard.records import Violation
from schemaguard.schema.descriptor import CustomRule


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a JSON scalar to Decimal without binary-float drift (None if not numeric)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr() is the shortest round-tripping text: 35.2 -> "35.2"
        return Decimal(repr(value)) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def aggregate_rule(
    items_field: str,
    price_field: str,
    quantity_field: str,
    total_field: str,
    rule_name: str = "aggregate_mismatch",
) -> CustomRule:
    """Rule: sum(item.price * item.quantity) must equal node[total_field] exactly.

    Items with a missing quantity count once. The rule stays silent when
    any operand is missing or non-numeric; structural checks report those.

    Example:
        >>> rule = aggregate_rule("items", "price", "quantity", "subtotal")
        >>> rule({"items": [{"price": 2.5, "quantity": 2}], "subtotal": 5})
        []
    """

    def _rule(node: dict[str, Any]) -> list[Violation]:
        items = node.get(items_field)
        declared = to_decimal(node.get(total_field))
        if not isinstance(items, list) or declared is None:
            return []

        computed = Decimal(0)
        for item in items:
            if not isinstance(item, dict):
                return []
            price = to_decimal(item.get(price_field))
            raw_quantity = item.get(quantity_field)
            quantity = Decimal(1) if raw_quantity is None else to_decimal(raw_quantity)
            if price is None or quantity is None:
                return []
            computed += price * quantity

        if computed == declared:
            return []
        return [
            Violation(
                total_field,
                rule_name,
                f"sum of {items_field} {price_field} x {quantity_field} is {computed} "
                f"but {total_field} is {declared}",
            )
        ]

    _rule.__name__ = f"aggregate_{items_field}_{total_field}"
    return _rule


def sum_of_fields_rule(
    total_field: str,
    part_fields: Sequence[str],
    rule_name: str = "aggregate_mismatch",
) -> CustomRule:
    """Rule: node[total_field] must equal the exact sum of the part fields.

    Missing optional parts (e.g. no tax line) count as zero.
    """

    def _rule(node: dict[str, Any]) -> list[Violation]:
        declared = to_decimal(node.get(total_field))
        if declared is None:
            return []
        computed = Decimal(0)
        for name in part_fields:
            raw = node.get(name)
            if raw is None:
                continue
            part = to_decimal(raw)
            if part is None:
                return []
            computed += part
        if computed == declared:
            return []
        return [
            Violation(
                total_field,
                rule_name,
                f"{' + '.join(part_fields)} is {computed} but {total_field} is {declared}",
            )
        ]

    _rule.__name__ = f"sum_{total_field}"
    return _rule
