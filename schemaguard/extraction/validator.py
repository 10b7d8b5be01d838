"""Validator: structural and semantic checks producing Violations.

## Extraction Theory: One Place Decides What Is Wrong

The decoder only guarantees container shape. Everything else is classified
here, per node, in a fixed order so reports are deterministic:

1. Required-field presence        -> missing_required
2. Enum membership                -> enum_mismatch
3. Types and numeric ranges       -> type_mismatch / below_minimum / above_maximum
4. Reference integrity and ids    -> dangling_reference / identity_collision
5. Custom rules on the node's shape (registration order)

Nested nodes are validated depth-first in field order after their parent.
Caller-supplied rules run last, against the root.

Aggregates (sum of price x quantity == subtotal) are compared with exact
Decimal equality: financial totals must not silently drift through
floating-point tolerance.
"""

import math
from decimal import Decimal
from typing import Any, Optional, Sequence

from schemaguard.extraction.identity import NodeIndex, index_nodes
from schemaguard.records import Violation
from schemaguard.schema.descriptor import (
    CustomRule,
    FieldKind,
    FieldSpec,
    ScalarType,
    SchemaDescriptor,
    ROOT_PATH,
    index_path,
    join_path,
)
from schemaguard.schema.rules import to_decimal


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def _is_finite(value: Any) -> bool:
    if isinstance(value, Decimal):
        return value.is_finite()
    return math.isfinite(value)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ============================================================================
# LEAF CHECKS
# ============================================================================


def _scalar_type_ok(value: Any, scalar_type: ScalarType) -> bool:
    if scalar_type in (ScalarType.STRING, ScalarType.ID, ScalarType.REFERENCE):
        return isinstance(value, str)
    if scalar_type == ScalarType.BOOLEAN:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if scalar_type == ScalarType.INTEGER:
        return isinstance(value, int)
    return isinstance(value, (int, float, Decimal))


def _check_enum(value: Any, spec: FieldSpec, path: str, out: list[Violation]) -> None:
    if value not in spec.allowed_values:
        allowed = ", ".join(f'"{v}"' for v in spec.allowed_values)
        out.append(Violation(path, "enum_mismatch", f"{value!r} is not one of {allowed}"))


def _check_scalar(value: Any, spec: FieldSpec, path: str, out: list[Violation]) -> None:
    if not _scalar_type_ok(value, spec.scalar_type):
        out.append(
            Violation(
                path,
                "type_mismatch",
                f"expected {spec.scalar_type.value}, got {_type_name(value)}",
            )
        )
        return
    if isinstance(value, (float, Decimal)) and not _is_finite(value):
        out.append(Violation(path, "type_mismatch", f"expected a finite number, got {value}"))
        return
    if spec.minimum is None and spec.maximum is None:
        return
    number = to_decimal(value)
    if number is None:
        return
    if spec.minimum is not None and number < spec.minimum:
        out.append(Violation(path, "below_minimum", f"{value} is less than {spec.minimum}"))
    if spec.maximum is not None and number > spec.maximum:
        out.append(Violation(path, "above_maximum", f"{value} is greater than {spec.maximum}"))


def _check_reference(value: Any, spec: FieldSpec, path: str,
                     index: NodeIndex, out: list[Violation]) -> None:
    if not isinstance(value, str):
        return
    if index.resolve(spec.id_space, value) is None:
        out.append(
            Violation(
                path,
                "dangling_reference",
                f"id '{value}' does not match any node in space '{spec.id_space}'",
            )
        )


def _present_values(node: dict[str, Any], spec: FieldSpec) -> list[tuple[Any, str, FieldSpec]]:
    """Flatten a field into (value, path_suffix, leaf_spec) triples for leaf checks."""
    value = node.get(spec.name)
    if _is_missing(value) and spec.kind != FieldKind.ARRAY:
        return []
    if spec.kind == FieldKind.ARRAY:
        if not isinstance(value, list):
            return []
        return [
            (item, index_path(spec.name, i), spec.element)
            for i, item in enumerate(value)
            if not _is_missing(item)
        ]
    return [(value, spec.name, spec)]


# ============================================================================
# NODE VALIDATION
# ============================================================================


def _validate_node(
    node: Any,
    shape: SchemaDescriptor,
    path: str,
    index: NodeIndex,
    out: list[Violation],
) -> None:
    if not isinstance(node, dict):
        out.append(
            Violation(path, "type_mismatch", f"expected object {shape.name}, got {_type_name(node)}")
        )
        return

    # (1) required presence
    for spec in shape.fields:
        if spec.required and _is_missing(node.get(spec.name)):
            out.append(
                Violation(join_path(path, spec.name), "missing_required",
                          f"required field '{spec.name}' is missing")
            )

    leaves = [
        (value, join_path(path, suffix), leaf)
        for spec in shape.fields
        for value, suffix, leaf in _present_values(node, spec)
    ]

    # (2) enum membership
    for value, leaf_path, leaf in leaves:
        if leaf.kind == FieldKind.ENUM:
            _check_enum(value, leaf, leaf_path, out)

    # (3) types and numeric ranges
    for spec in shape.fields:
        value = node.get(spec.name)
        if spec.kind == FieldKind.ARRAY and not _is_missing(value) and not isinstance(value, list):
            out.append(
                Violation(join_path(path, spec.name), "type_mismatch",
                          f"expected array, got {_type_name(value)}")
            )
    for value, leaf_path, leaf in leaves:
        if leaf.kind == FieldKind.SCALAR:
            _check_scalar(value, leaf, leaf_path, out)

    # (4) reference integrity and id uniqueness
    for value, leaf_path, leaf in leaves:
        if leaf.is_reference:
            _check_reference(value, leaf, leaf_path, index, out)
        elif leaf.is_id and isinstance(value, str) and not index.owns(leaf.id_space, value, node):
            for collision in index.collisions_at(path):
                out.append(collision.to_violation(leaf.name))

    # (5) custom rules registered on this shape
    for rule in shape.rules:
        out.extend(_prefixed(rule(node), path))

    for spec in shape.fields:
        child = node.get(spec.name)
        child_path = join_path(path, spec.name)
        if spec.kind == FieldKind.EMBEDDED and not _is_missing(child):
            _validate_node(child, spec.shape, child_path, index, out)
        elif (spec.kind == FieldKind.ARRAY and spec.element.kind == FieldKind.EMBEDDED
              and isinstance(child, list)):
            for i, item in enumerate(child):
                if not _is_missing(item):
                    _validate_node(item, spec.element.shape, index_path(child_path, i), index, out)


def _prefixed(violations: Sequence[Violation], path: str) -> list[Violation]:
    if path == ROOT_PATH:
        return list(violations)
    return [
        Violation(
            path if v.field_path == ROOT_PATH else f"{path}.{v.field_path}",
            v.rule,
            v.message,
        )
        for v in violations
    ]


def validate(
    value: Any,
    schema: SchemaDescriptor,
    custom_rules: Sequence[CustomRule] = (),
    index: Optional[NodeIndex] = None,
) -> list[Violation]:
    """Validate a candidate value against a schema.

    Side-effect free: never mutates `value`. Given the same inputs the
    returned list is identical, in the same order, on every call.

    Args:
        value: Decoded root value.
        schema: Root descriptor.
        custom_rules: Extra rules run against the root after all node checks.
        index: NodeIndex from the Identity Allocator. Built read-only from
            `value` when omitted.

    Returns:
        List of violations; empty means valid.
    """
    if index is None:
        index = index_nodes(value, schema)

    violations: list[Violation] = []
    _validate_node(value, schema, ROOT_PATH, index, violations)
    if isinstance(value, dict):
        for rule in custom_rules:
            violations.extend(rule(value))
    return violations
