"""Response Decoder: raw model text -> candidate value matching the shape.

## Extraction Theory: Tolerating Formatting Noise

Even with a JSON directive, models wrap payloads in prose ("Here is the
ticket:"), markdown fences, single quotes, trailing commas, or return the
whole object as a quoted string. The decoder peels those layers off:

1. Strip markdown code fences (```json ... ```)
2. Parse directly; on failure slice from the first "{" to the last "}"
3. Repair malformed JSON with json_repair as a last resort
4. Unwrap a payload that was itself delivered as a JSON string

Only a payload that cannot be read as the declared container shape is a
DecodeError. A missing required field is NOT a decode error: the validator
is the single place that classifies "missing" as a semantic problem.

## Library Usage

json.loads(parse_float=Decimal) keeps monetary values exact from the first
byte, and its parse_constant hook rejects NaN and Infinity;
json_repair.repair_json() handles the malformed remainder.
"""

import json
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from json_repair import repair_json

from schemaguard.errors import DecodeError
from schemaguard.extraction.identity import IdentityAllocator, NodeIndex
from schemaguard.schema.descriptor import (
    FieldKind,
    FieldSpec,
    ScalarType,
    SchemaDescriptor,
    ROOT_PATH,
    index_path,
    join_path,
)
from schemaguard.schema.rules import to_decimal
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)

_FENCE_PATTERN = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)


@dataclass
class DecodedValue:
    """Successfully decoded value plus the id index built for it."""

    value: dict[str, Any]
    index: NodeIndex
    repaired: bool = False


# ============================================================================
# PAYLOAD PARSING
# ============================================================================


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    stripped = text.strip()
    # Unterminated fence (model hit max_tokens)
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        return stripped[first_newline + 1:] if first_newline != -1 else ""
    return stripped


def _slice_object(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _reject_constant(name: str) -> Any:
    raise DecodeError(f"non-finite number {name} is not allowed")


def _loads(text: str) -> Any:
    return json.loads(text, parse_float=Decimal, parse_constant=_reject_constant)


def parse_payload(raw_response: str) -> tuple[Any, bool]:
    """Parse the structured payload out of raw model output.

    Args:
        raw_response: Model output text.

    Returns:
        Tuple of (parsed JSON value, repaired flag).

    Raises:
        DecodeError: If no JSON payload can be recovered.
    """
    if not isinstance(raw_response, str) or not raw_response.strip():
        raise DecodeError("empty response")

    text = strip_code_fences(raw_response)
    candidates = [text]
    sliced = _slice_object(text)
    if sliced is not None and sliced != text:
        candidates.append(sliced)

    parsed: Any = None
    repaired = False
    for candidate in candidates:
        try:
            parsed = _loads(candidate)
            break
        except json.JSONDecodeError:
            continue
    else:
        source = sliced if sliced is not None else text
        fixed = repair_json(source, return_objects=False)
        try:
            parsed = _loads(fixed) if fixed else None
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, (dict, list)):
            raise DecodeError(f"response is not valid JSON: {_preview(raw_response)}")
        repaired = True
        logger.warning(
            f"Repaired malformed JSON from model ({len(source)} -> {len(fixed)} chars)"
        )

    # JSON delivered as a quoted string: "{\"a\": 1}"
    if isinstance(parsed, str):
        inner = parsed.strip()
        if inner.startswith("{"):
            try:
                parsed = _loads(inner)
            except json.JSONDecodeError as exc:
                raise DecodeError(f"quoted payload is not valid JSON: {exc}") from exc

    return parsed, repaired


def _preview(text: str, limit: int = 120) -> str:
    text = text.strip().replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


# ============================================================================
# SHAPE COERCION
# ============================================================================


def _coerce_scalar(value: Any, scalar_type: ScalarType) -> Any:
    """Lossless coercion only; anything else is kept for the validator to flag."""
    if scalar_type == ScalarType.STRING:
        if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value

    if scalar_type in (ScalarType.ID, ScalarType.REFERENCE):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, Decimal) and value == value.to_integral_value():
            return str(int(value))
        return value

    if scalar_type == ScalarType.BOOLEAN:
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        return value

    number = to_decimal(value)
    if number is None:
        return value
    if scalar_type == ScalarType.INTEGER:
        return int(number) if number == number.to_integral_value() else value
    if scalar_type == ScalarType.NUMBER:
        if isinstance(value, int):
            return int(number)
        as_float = float(number)
        # Past float range: keep the exact Decimal
        return as_float if math.isfinite(as_float) else number
    return number


def _coerce_enum(value: Any, spec: FieldSpec) -> Any:
    if not isinstance(value, str):
        return value
    allowed = spec.allowed_values
    if value in allowed:
        return value
    folded = value.strip().lower()
    for choice in allowed:
        if choice.lower() == folded:
            return choice
    return value


def _coerce_value(value: Any, spec: FieldSpec, path: str) -> Any:
    if spec.kind == FieldKind.EMBEDDED:
        return _coerce_node(value, spec.shape, path)

    if spec.kind == FieldKind.ARRAY:
        if not isinstance(value, list):
            raise DecodeError(
                f"expected an array at {path}, got {type(value).__name__}", path
            )
        return [
            _coerce_value(item, spec.element, index_path(path, i))
            for i, item in enumerate(value)
        ]

    if spec.kind == FieldKind.ENUM:
        return _coerce_enum(value, spec)

    return _coerce_scalar(value, spec.scalar_type)


def _empty_value(spec: FieldSpec) -> Any:
    return [] if spec.kind == FieldKind.ARRAY else None


def _coerce_node(data: Any, shape: SchemaDescriptor, path: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodeError(
            f"expected an object for shape {shape.name} at {path}, got {type(data).__name__}",
            path,
        )

    node: dict[str, Any] = {}
    for spec in shape.fields:
        field_path = join_path(path, spec.name)
        if spec.name not in data or data[spec.name] is None:
            if not spec.required:
                node[spec.name] = _empty_value(spec)
            elif spec.name in data:
                node[spec.name] = None
            continue
        node[spec.name] = _coerce_value(data[spec.name], spec, field_path)

    dropped = set(data) - {spec.name for spec in shape.fields}
    if dropped:
        logger.debug(f"Dropped undeclared fields at {path}: {sorted(dropped)}")
    return node


# ============================================================================
# ENTRY POINT
# ============================================================================


def decode(
    raw_response: str,
    schema: SchemaDescriptor,
    allocator: Optional[IdentityAllocator] = None,
) -> DecodedValue:
    """Decode raw model output into a value conforming to the schema's shape.

    Args:
        raw_response: Model output text.
        schema: Root descriptor.
        allocator: Identity Allocator for this extraction. A fresh one is
            created when omitted.

    Returns:
        DecodedValue with the coerced value and its NodeIndex.

    Raises:
        DecodeError: If the payload cannot be parsed as the declared
            container shape (malformed syntax, non-object root, a scalar
            where an embedded shape or array was declared).

    Example:
        >>> decoded = decode('Sure! {"subtotal": "12.50"}', receipt_schema)
        >>> decoded.value["subtotal"]
        Decimal('12.50')
    """
    parsed, repaired = parse_payload(raw_response)
    value = _coerce_node(parsed, schema, ROOT_PATH)

    if allocator is None:
        allocator = IdentityAllocator()
    index = allocator.assign(value, schema)
    return DecodedValue(value=value, index=index, repaired=repaired)
