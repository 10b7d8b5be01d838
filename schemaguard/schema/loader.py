"""Build Schema Descriptors from YAML files or Pydantic models.

## YAML Format

```yaml
name: Receipt
description: A purchase receipt
guidance: |
  Prices are per unit. Quantities default to 1.
guidance_version: "2"
shapes:                      # reusable nested shapes, referenced by name
  Item:
    fields:
      - {name: name, type: string}
      - {name: price, type: decimal, minimum: 0}
      - {name: quantity, type: integer, minimum: 1, required: false}
fields:
  - {name: items, type: array, items: {type: object, shape: Item}}
  - {name: subtotal, type: decimal}
  - name: category
    type: enum
    choices: {food: "Groceries and restaurants", travel: "Transport and lodging"}
rules:
  - aggregate: {items: items, price: price, quantity: quantity, total: subtotal}
  - sum_of_fields: {total: total, parts: [subtotal, tax]}
```

Id fields use `type: id` with `space:`; references use `type: reference`
with `space:`.

## Pydantic Bridge

schema_from_model() reads a BaseModel's fields: str/int/float/Decimal/bool,
Literal and Enum (enum fields), list[...] (arrays), nested models
(embedded), Optional (not required), Field(ge=, le=, description=).
Id and reference fields are marked with
`Field(json_schema_extra={"id_space": "work-item"})` and
`Field(json_schema_extra={"reference": "work-item"})`.
"""

import inspect
import types
import typing
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel

from schemaguard.errors import SchemaDefinitionError
from schemaguard.schema.descriptor import (
    CustomRule,
    FieldSpec,
    NUMERIC_TYPES,
    ScalarType,
    SchemaDescriptor,
    array,
    embedded,
    enum,
    id_field,
    reference,
    scalar,
)
from schemaguard.schema.rules import aggregate_rule, sum_of_fields_rule
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)


# ============================================================================
# YAML / DICT LOADING
# ============================================================================


def _build_rule(spec: dict[str, Any]) -> CustomRule:
    if not isinstance(spec, dict) or len(spec) != 1:
        raise SchemaDefinitionError(f"Rule must be a single-key mapping, got {spec!r}")
    kind, params = next(iter(spec.items()))
    try:
        if kind == "aggregate":
            return aggregate_rule(
                items_field=params["items"],
                price_field=params.get("price", "price"),
                quantity_field=params.get("quantity", "quantity"),
                total_field=params["total"],
            )
        if kind == "sum_of_fields":
            return sum_of_fields_rule(params["total"], list(params["parts"]))
    except (KeyError, TypeError) as exc:
        raise SchemaDefinitionError(f"Rule '{kind}' is missing parameter {exc}") from exc
    raise SchemaDefinitionError(f"Unknown rule type '{kind}'")


class _ShapeBuilder:
    """Resolves named shapes lazily so definitions can appear in any order."""

    def __init__(self, definitions: dict[str, Any]):
        self._definitions = definitions or {}
        self._built: dict[str, SchemaDescriptor] = {}
        self._building: set[str] = set()

    def named(self, name: str) -> SchemaDescriptor:
        if name in self._built:
            return self._built[name]
        if name not in self._definitions:
            raise SchemaDefinitionError(f"Unknown shape '{name}'")
        if name in self._building:
            raise SchemaDefinitionError(
                f"Shape '{name}' embeds itself; use id and reference fields for cycles"
            )
        self._building.add(name)
        shape = self.shape({"name": name, **self._definitions[name]})
        self._building.discard(name)
        self._built[name] = shape
        return shape

    def shape(self, data: dict[str, Any]) -> SchemaDescriptor:
        if not isinstance(data, dict) or "name" not in data:
            raise SchemaDefinitionError(f"Shape definition needs a name: {data!r}")
        return SchemaDescriptor(
            name=data["name"],
            fields=[self.field(f) for f in data.get("fields", [])],
            description=data.get("description", ""),
            guidance=data.get("guidance", ""),
            guidance_version=str(data.get("guidance_version", "")),
            rules=[_build_rule(r) for r in data.get("rules", [])],
        )

    def field(self, data: dict[str, Any], name: Optional[str] = None) -> FieldSpec:
        name = name or data.get("name")
        if not name:
            raise SchemaDefinitionError(f"Field definition needs a name: {data!r}")
        kind = data.get("type", "string")
        required = bool(data.get("required", True))
        description = data.get("description", "")

        if kind == "enum":
            return enum(name, data.get("choices") or [], required, description)
        if kind == "object":
            shape_ref = data.get("shape")
            shape = self.named(shape_ref) if isinstance(shape_ref, str) else self.shape(shape_ref)
            return embedded(name, shape, required, description)
        if kind == "array":
            element = self.field(data.get("items") or {}, name="item")
            return array(name, element, required, description)
        if kind == "id":
            return id_field(name, data.get("space", ""), description, required=bool(data.get("required", False)))
        if kind == "reference":
            return reference(name, data.get("space", ""), required, description)
        try:
            scalar_type = ScalarType(kind)
        except ValueError as exc:
            raise SchemaDefinitionError(f"Field '{name}': unknown type '{kind}'") from exc
        return scalar(
            name, scalar_type, required, description,
            minimum=data.get("minimum"), maximum=data.get("maximum"),
        )


def schema_from_dict(data: dict[str, Any]) -> SchemaDescriptor:
    """Build a descriptor from a parsed YAML/JSON mapping."""
    if not isinstance(data, dict):
        raise SchemaDefinitionError(f"Schema document must be a mapping, got {type(data).__name__}")
    builder = _ShapeBuilder(data.get("shapes", {}))
    return builder.shape(data)


def load_schema(path: Union[str, Path]) -> SchemaDescriptor:
    """Load a descriptor from a YAML file.

    Args:
        path: Path to the YAML schema document.

    Returns:
        Root SchemaDescriptor.

    Raises:
        FileNotFoundError: If the file does not exist.
        SchemaDefinitionError: If the document is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    schema = schema_from_dict(data)
    logger.debug(f"Loaded schema {schema.name} from {path} ({len(schema.fields)} fields)")
    return schema


# ============================================================================
# PYDANTIC BRIDGE
# ============================================================================

_PRIMITIVES = {
    str: ScalarType.STRING,
    int: ScalarType.INTEGER,
    float: ScalarType.NUMBER,
    Decimal: ScalarType.DECIMAL,
    bool: ScalarType.BOOLEAN,
}


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0], True
        raise SchemaDefinitionError(f"Union types are not supported: {annotation}")
    return annotation, False


def _bounds(metadata: list[Any]) -> tuple[Any, Any]:
    minimum = maximum = None
    for item in metadata:
        minimum = getattr(item, "ge", minimum)
        maximum = getattr(item, "le", maximum)
    return minimum, maximum


class _ModelBridge:
    """Maps Pydantic model classes to shapes, one descriptor per class."""

    def __init__(self):
        self._built: dict[type, SchemaDescriptor] = {}
        self._building: set[type] = set()

    def shape(self, model_cls: type[BaseModel]) -> SchemaDescriptor:
        if model_cls in self._built:
            return self._built[model_cls]
        if model_cls in self._building:
            raise SchemaDefinitionError(
                f"Model {model_cls.__name__} embeds itself; use id and reference fields for cycles"
            )
        self._building.add(model_cls)
        shape = SchemaDescriptor(
            name=model_cls.__name__,
            fields=[self.field(name, info) for name, info in model_cls.model_fields.items()],
            description=inspect.cleandoc(model_cls.__doc__) if model_cls.__doc__ else "",
        )
        self._building.discard(model_cls)
        self._built[model_cls] = shape
        return shape

    def element(self, annotation: Any) -> FieldSpec:
        annotation, _ = _unwrap_optional(annotation)
        spec = self._typed("item", annotation, True, "", [])
        if spec is None:
            raise SchemaDefinitionError(f"Unsupported list element type: {annotation}")
        return spec

    def field(self, name: str, info: Any) -> FieldSpec:
        annotation, optional = _unwrap_optional(info.annotation)
        required = info.is_required() and not optional
        description = info.description or ""
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}

        if "id_space" in extra:
            return id_field(name, extra["id_space"], description)
        if "reference" in extra:
            if typing.get_origin(annotation) is list:
                return array(name, reference("item", extra["reference"]), required, description)
            return reference(name, extra["reference"], required, description)

        if typing.get_origin(annotation) is list:
            (element_type,) = typing.get_args(annotation) or (str,)
            return array(name, self.element(element_type), required, description)

        spec = self._typed(name, annotation, required, description, info.metadata)
        if spec is None:
            raise SchemaDefinitionError(f"Field '{name}': unsupported annotation {annotation}")
        return spec

    def _typed(self, name: str, annotation: Any, required: bool,
               description: str, metadata: list[Any]) -> Optional[FieldSpec]:
        if typing.get_origin(annotation) is typing.Literal:
            return enum(name, [str(v) for v in typing.get_args(annotation)], required, description)
        if inspect.isclass(annotation) and issubclass(annotation, Enum):
            return enum(name, [str(m.value) for m in annotation], required, description)
        if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
            return embedded(name, self.shape(annotation), required, description)
        if annotation in _PRIMITIVES:
            scalar_type = _PRIMITIVES[annotation]
            minimum, maximum = _bounds(metadata) if scalar_type in NUMERIC_TYPES else (None, None)
            return scalar(name, scalar_type, required, description, minimum, maximum)
        return None


def schema_from_model(
    model_cls: type[BaseModel],
    rules: tuple[CustomRule, ...] = (),
    guidance: str = "",
    guidance_version: str = "",
) -> SchemaDescriptor:
    """Build a descriptor from a Pydantic model class.

    Args:
        model_cls: Root BaseModel subclass.
        rules: Custom rules registered on the root shape.
        guidance: Steering text rendered verbatim into the prompt.
        guidance_version: Version label of the guidance text.

    Returns:
        Root SchemaDescriptor mirroring the model.

    Raises:
        SchemaDefinitionError: On unions, self-embedding models or
            unsupported annotations.

    Example:
        >>> class Classification(BaseModel):
        ...     label: Literal["bug", "feature"]
        ...     confidence: float = Field(ge=0, le=1)
        >>> schema_from_model(Classification).field_named("label").allowed_values
        ('bug', 'feature')
    """
    shape = _ModelBridge().shape(model_cls)
    if not (rules or guidance):
        return shape
    return SchemaDescriptor(
        name=shape.name,
        fields=shape.fields,
        description=shape.description,
        guidance=guidance,
        guidance_version=guidance_version,
        rules=rules,
    )
