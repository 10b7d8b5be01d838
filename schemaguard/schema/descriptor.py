"""Schema Descriptors: declarative target shapes for structured extraction.

## Extraction Theory: Describing the Shape Before Asking for It

LLMs produce free text. To coerce that text into a strongly-typed record we
first need a description of the record that serves three audiences:

1. The model: rendered as text (describe()) inside the prompt
2. The decoder: which fields are containers, which are scalars
3. The validator: required fields, enum sets, numeric ranges, references

A descriptor is a tree of FieldSpecs. Shapes that declare an `id` field in
the same space (e.g. tickets and subtasks in "work-item") draw identifiers
from one shared pool, so a `reference` field can point at any of them.

## Library Usage

Frozen dataclasses make descriptors immutable at extraction time, which
keeps describe() deterministic across retries. Numeric bounds are stored as
Decimal so range checks never drift through binary floats.

## Example

    >>> item = SchemaDescriptor("Item", [scalar("name"), scalar("price", ScalarType.DECIMAL)])
    >>> receipt = SchemaDescriptor("Receipt", [array("items", item), scalar("subtotal", ScalarType.DECIMAL)])
    >>> print(describe(receipt))
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Sequence, Union

from schemaguard.errors import SchemaDefinitionError
from schemaguard.records import Violation

# A custom rule receives one node (a dict conforming to the shape it is
# registered on) and returns violations with paths relative to that node.
CustomRule = Callable[[dict[str, Any]], list[Violation]]

ROOT_PATH = "$"


class ScalarType(str, Enum):
    """Semantic scalar types understood by decoder and validator."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    ID = "id"
    REFERENCE = "reference"


class FieldKind(str, Enum):
    SCALAR = "scalar"
    ENUM = "enum"
    ARRAY = "array"
    EMBEDDED = "embedded"


NUMERIC_TYPES = frozenset({ScalarType.INTEGER, ScalarType.NUMBER, ScalarType.DECIMAL})


# ============================================================================
# FIELD SPECS
# ============================================================================


@dataclass(frozen=True)
class EnumChoice:
    """One allowed enum value with its declared meaning (shown to the model)."""

    value: str
    meaning: str = ""


@dataclass(frozen=True)
class FieldSpec:
    """Single field of a shape.

    Attributes:
        name: Field name, unique within the containing shape.
        kind: scalar, enum, array or embedded.
        required: Whether the field must be present and non-null.
        description: Free-text hint rendered into the prompt.
        scalar_type: Semantic type for scalar fields.
        choices: Closed set of allowed values for enum fields.
        element: Element spec for array fields (its name is ignored).
        shape: Nested descriptor for embedded fields.
        minimum: Inclusive lower bound for numeric scalars.
        maximum: Inclusive upper bound for numeric scalars.
        id_space: Shared id space tag for id and reference scalars.
    """

    name: str
    kind: FieldKind
    required: bool = True
    description: str = ""
    scalar_type: Optional[ScalarType] = None
    choices: tuple[EnumChoice, ...] = ()
    element: Optional["FieldSpec"] = None
    shape: Optional["SchemaDescriptor"] = None
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None
    id_space: Optional[str] = None

    @property
    def allowed_values(self) -> tuple[str, ...]:
        return tuple(choice.value for choice in self.choices)

    @property
    def is_reference(self) -> bool:
        return self.kind == FieldKind.SCALAR and self.scalar_type == ScalarType.REFERENCE

    @property
    def is_id(self) -> bool:
        return self.kind == FieldKind.SCALAR and self.scalar_type == ScalarType.ID


def _to_bound(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
    return Decimal(str(value))


def scalar(
    name: str,
    scalar_type: ScalarType = ScalarType.STRING,
    required: bool = True,
    description: str = "",
    minimum: Any = None,
    maximum: Any = None,
) -> FieldSpec:
    """Build a scalar field (string, integer, number, decimal, boolean)."""
    scalar_type = ScalarType(scalar_type)
    if scalar_type in (ScalarType.ID, ScalarType.REFERENCE):
        raise SchemaDefinitionError(
            f"Field '{name}': use id_field() or reference() for {scalar_type.value} fields"
        )
    if (minimum is not None or maximum is not None) and scalar_type not in NUMERIC_TYPES:
        raise SchemaDefinitionError(f"Field '{name}': range bounds need a numeric type")
    return FieldSpec(
        name=name,
        kind=FieldKind.SCALAR,
        required=required,
        description=description,
        scalar_type=scalar_type,
        minimum=_to_bound(minimum),
        maximum=_to_bound(maximum),
    )


def enum(
    name: str,
    choices: Union[Sequence[str], Sequence[tuple[str, str]], dict[str, str]],
    required: bool = True,
    description: str = "",
) -> FieldSpec:
    """Build an enum field from values, (value, meaning) pairs or a {value: meaning} dict."""
    if isinstance(choices, dict):
        built = tuple(EnumChoice(str(v), m) for v, m in choices.items())
    else:
        built = tuple(
            EnumChoice(str(c[0]), c[1]) if isinstance(c, tuple) else
            c if isinstance(c, EnumChoice) else EnumChoice(str(c))
            for c in choices
        )
    return FieldSpec(
        name=name,
        kind=FieldKind.ENUM,
        required=required,
        description=description,
        choices=built,
    )


def embedded(
    name: str,
    shape: "SchemaDescriptor",
    required: bool = True,
    description: str = "",
) -> FieldSpec:
    """Build a field holding one nested shape."""
    return FieldSpec(
        name=name,
        kind=FieldKind.EMBEDDED,
        required=required,
        description=description,
        shape=shape,
    )


def array(
    name: str,
    element: Union["SchemaDescriptor", ScalarType, FieldSpec],
    required: bool = True,
    description: str = "",
) -> FieldSpec:
    """Build an array field.

    Args:
        name: Field name.
        element: A SchemaDescriptor (array of embedded shapes), a ScalarType
            (array of plain scalars) or a FieldSpec (array of enums or references).
        required: Whether the array must be present.
        description: Prompt hint.
    """
    if isinstance(element, SchemaDescriptor):
        element_spec = embedded("item", element)
    elif isinstance(element, FieldSpec):
        element_spec = element
    else:
        element_spec = scalar("item", ScalarType(element))
    return FieldSpec(
        name=name,
        kind=FieldKind.ARRAY,
        required=required,
        description=description,
        element=element_spec,
    )


def id_field(name: str = "id", space: str = "", description: str = "",
             required: bool = False) -> FieldSpec:
    """Node identifier drawn from a shared id space.

    Optional by default: the Identity Allocator fills ids the model omits.
    """
    if not space:
        raise SchemaDefinitionError(f"Field '{name}': id fields need an id space")
    return FieldSpec(
        name=name,
        kind=FieldKind.SCALAR,
        required=required,
        description=description,
        scalar_type=ScalarType.ID,
        id_space=space,
    )


def reference(name: str, space: str, required: bool = True, description: str = "") -> FieldSpec:
    """Field holding the id of another node in the given shared id space."""
    if not space:
        raise SchemaDefinitionError(f"Field '{name}': reference fields need an id space")
    return FieldSpec(
        name=name,
        kind=FieldKind.SCALAR,
        required=required,
        description=description,
        scalar_type=ScalarType.REFERENCE,
        id_space=space,
    )


# ============================================================================
# SCHEMA DESCRIPTOR
# ============================================================================


@dataclass(frozen=True)
class SchemaDescriptor:
    """Immutable description of one target shape.

    Attributes:
        name: Shape tag (e.g. "Ticket"), used in prompts and node lookups.
        fields: Ordered field specs.
        description: What the shape represents.
        guidance: Free-text steering rendered verbatim into the prompt.
        guidance_version: Version label of the guidance text.
        rules: Custom rules run by the validator, in registration order.
    """

    name: str
    fields: tuple[FieldSpec, ...]
    description: str = ""
    guidance: str = ""
    guidance_version: str = ""
    rules: tuple[CustomRule, ...] = field(default=(), compare=False)

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "rules", tuple(self.rules))

        if not self.name:
            raise SchemaDefinitionError("Shape name must not be empty")

        seen: set[str] = set()
        for spec in self.fields:
            if spec.name in seen:
                raise SchemaDefinitionError(
                    f"Shape '{self.name}': duplicate field name '{spec.name}'"
                )
            seen.add(spec.name)
            _check_field(self.name, spec)

        id_fields = [spec for spec in self.fields if spec.is_id]
        if len(id_fields) > 1:
            raise SchemaDefinitionError(
                f"Shape '{self.name}': at most one id field allowed, got "
                f"{[spec.name for spec in id_fields]}"
            )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def field_named(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(f"Shape '{self.name}' has no field '{name}'")

    @property
    def id_spec(self) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.is_id:
                return spec
        return None

    @property
    def id_space(self) -> Optional[str]:
        spec = self.id_spec
        return spec.id_space if spec else None

    def iter_shapes(self) -> Iterator["SchemaDescriptor"]:
        """Yield this shape and every nested shape once, depth-first."""
        seen: set[int] = set()

        def _walk(shape: "SchemaDescriptor"):
            if id(shape) in seen:
                return
            seen.add(id(shape))
            yield shape
            for spec in shape.fields:
                nested = _nested_shape(spec)
                if nested is not None:
                    yield from _walk(nested)

        yield from _walk(self)

    def id_spaces(self) -> dict[str, list[str]]:
        """Map each shared id space to the shape names drawing from it."""
        spaces: dict[str, list[str]] = {}
        for shape in self.iter_shapes():
            space = shape.id_space
            if space and shape.name not in spaces.setdefault(space, []):
                spaces[space].append(shape.name)
        return spaces

    def describe(self) -> str:
        return describe(self)

    def to_json_schema(self) -> dict[str, Any]:
        return to_json_schema(self)


def _nested_shape(spec: FieldSpec) -> Optional[SchemaDescriptor]:
    if spec.kind == FieldKind.EMBEDDED:
        return spec.shape
    if spec.kind == FieldKind.ARRAY and spec.element is not None:
        return _nested_shape(spec.element)
    return None


def _check_field(shape_name: str, spec: FieldSpec) -> None:
    where = f"Shape '{shape_name}', field '{spec.name}'"
    if spec.kind == FieldKind.ENUM:
        if not spec.choices:
            raise SchemaDefinitionError(f"{where}: enum needs at least one choice")
        values = spec.allowed_values
        if len(set(values)) != len(values):
            raise SchemaDefinitionError(f"{where}: duplicate enum values {list(values)}")
    elif spec.kind == FieldKind.ARRAY:
        if spec.element is None:
            raise SchemaDefinitionError(f"{where}: array needs an element spec")
        if spec.element.kind == FieldKind.ARRAY:
            raise SchemaDefinitionError(f"{where}: nested arrays are not supported")
        if spec.element.is_id:
            raise SchemaDefinitionError(f"{where}: arrays of node ids are not supported")
        _check_field(shape_name, spec.element)
    elif spec.kind == FieldKind.EMBEDDED:
        if spec.shape is None:
            raise SchemaDefinitionError(f"{where}: embedded field needs a shape")
    elif spec.scalar_type is None:
        raise SchemaDefinitionError(f"{where}: scalar field needs a type")
    if spec.minimum is not None and spec.maximum is not None and spec.minimum > spec.maximum:
        raise SchemaDefinitionError(f"{where}: minimum {spec.minimum} > maximum {spec.maximum}")


# ============================================================================
# PATHS AND TRAVERSAL
# ============================================================================


def join_path(prefix: str, name: str) -> str:
    """Append a field name to a node path ("$" + "items" -> "items")."""
    if not prefix or prefix == ROOT_PATH:
        return name
    return f"{prefix}.{name}"


def index_path(prefix: str, index: int) -> str:
    return f"{prefix}[{index}]"


def walk_nodes(
    value: Any,
    shape: SchemaDescriptor,
    path: str = ROOT_PATH,
) -> Iterator[tuple[SchemaDescriptor, dict[str, Any], str]]:
    """Yield (shape, node, path) for every embedded node, depth-first in field order.

    Values of the wrong container type are skipped; classifying them is the
    validator's job.
    """
    if not isinstance(value, dict):
        return
    yield shape, value, path
    for spec in shape.fields:
        child = value.get(spec.name)
        child_path = join_path(path, spec.name)
        if spec.kind == FieldKind.EMBEDDED and spec.shape is not None:
            yield from walk_nodes(child, spec.shape, child_path)
        elif spec.kind == FieldKind.ARRAY and isinstance(child, list):
            element_shape = _nested_shape(spec.element)
            if element_shape is None:
                continue
            for i, item in enumerate(child):
                yield from walk_nodes(item, element_shape, index_path(child_path, i))


# ============================================================================
# RENDERING
# ============================================================================


def _format_bound(value: Decimal) -> str:
    return format(value.normalize(), "f") if value == value.to_integral_value() else str(value)


def _type_label(spec: FieldSpec) -> str:
    if spec.kind == FieldKind.ENUM:
        return "enum"
    if spec.kind == FieldKind.EMBEDDED:
        return f"object {spec.shape.name}"
    if spec.kind == FieldKind.ARRAY:
        return f"array of {_type_label(spec.element)}"
    if spec.scalar_type == ScalarType.ID:
        return f'id in space "{spec.id_space}"'
    if spec.scalar_type == ScalarType.REFERENCE:
        return f'reference to an id in space "{spec.id_space}"'
    return spec.scalar_type.value


def _describe_field(spec: FieldSpec, indent: str, lines: list[str]) -> None:
    flags = "required" if spec.required else "optional"
    details = []
    if spec.minimum is not None:
        details.append(f">= {_format_bound(spec.minimum)}")
    if spec.maximum is not None:
        details.append(f"<= {_format_bound(spec.maximum)}")
    range_text = f" [{', '.join(details)}]" if details else ""
    line = f"{indent}- {spec.name} ({_type_label(spec)}, {flags}){range_text}"
    if spec.description:
        line += f": {spec.description}"
    lines.append(line)

    choice_source = spec.element if spec.kind == FieldKind.ARRAY else spec
    if choice_source.kind == FieldKind.ENUM:
        lines.append(f"{indent}  allowed values:")
        for choice in choice_source.choices:
            meaning = f": {choice.meaning}" if choice.meaning else ""
            lines.append(f'{indent}    * "{choice.value}"{meaning}')

    nested = _nested_shape(spec)
    if nested is not None:
        _describe_shape(nested, indent + "    ", lines)


def _describe_shape(shape: SchemaDescriptor, indent: str, lines: list[str]) -> None:
    lines.append(f"{indent}Shape {shape.name}")
    if shape.description:
        lines.append(f"{indent}  {shape.description}")
    if shape.guidance:
        version = f" (v{shape.guidance_version})" if shape.guidance_version else ""
        lines.append(f"{indent}  Guidance{version}:")
        for guidance_line in shape.guidance.strip().splitlines():
            lines.append(f"{indent}    {guidance_line}")
    lines.append(f"{indent}  Fields:")
    for spec in shape.fields:
        _describe_field(spec, indent + "  ", lines)


def describe(shape: SchemaDescriptor) -> str:
    """Render a shape as prompt text.

    Pure and deterministic: the same descriptor always yields the same text,
    which keeps retry prompts stable.

    Args:
        shape: Root descriptor.

    Returns:
        Indented multi-line description with field names, types, enum
        choices and their meanings, ranges, nesting and id spaces.
    """
    lines: list[str] = []
    _describe_shape(shape, "", lines)
    return "\n".join(lines)


_JSON_TYPES = {
    ScalarType.STRING: "string",
    ScalarType.INTEGER: "integer",
    ScalarType.NUMBER: "number",
    ScalarType.DECIMAL: "number",
    ScalarType.BOOLEAN: "boolean",
    ScalarType.ID: "string",
    ScalarType.REFERENCE: "string",
}


def _field_json_schema(spec: FieldSpec) -> dict[str, Any]:
    if spec.kind == FieldKind.ENUM:
        out: dict[str, Any] = {"type": "string", "enum": list(spec.allowed_values)}
    elif spec.kind == FieldKind.ARRAY:
        out = {"type": "array", "items": _field_json_schema(spec.element)}
    elif spec.kind == FieldKind.EMBEDDED:
        out = to_json_schema(spec.shape)
    else:
        out = {"type": _JSON_TYPES[spec.scalar_type]}
        if spec.minimum is not None:
            out["minimum"] = float(spec.minimum)
        if spec.maximum is not None:
            out["maximum"] = float(spec.maximum)
    if spec.description:
        out["description"] = spec.description
    return out


def to_json_schema(shape: SchemaDescriptor) -> dict[str, Any]:
    """Render a shape as a JSON Schema object (for json_schema response formats)."""
    schema: dict[str, Any] = {
        "type": "object",
        "title": shape.name,
        "properties": {spec.name: _field_json_schema(spec) for spec in shape.fields},
        "required": [spec.name for spec in shape.fields if spec.required],
    }
    if shape.description:
        schema["description"] = shape.description
    return schema
