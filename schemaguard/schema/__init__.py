# Schema Descriptors: shape definitions, built-in rules, loaders and catalog

from schemaguard.schema.descriptor import (
    CustomRule,
    EnumChoice,
    FieldKind,
    FieldSpec,
    ROOT_PATH,
    ScalarType,
    SchemaDescriptor,
    array,
    describe,
    embedded,
    enum,
    id_field,
    index_path,
    join_path,
    reference,
    scalar,
    to_json_schema,
    walk_nodes,
)
from schemaguard.schema.rules import aggregate_rule, sum_of_fields_rule, to_decimal
from schemaguard.schema.loader import load_schema, schema_from_dict, schema_from_model
from schemaguard.schema.catalog import (
    CATALOG,
    classification_schema,
    get_schema,
    receipt_schema,
    ticket_schema,
)

__all__ = [
    # Descriptors
    "CustomRule",
    "EnumChoice",
    "FieldKind",
    "FieldSpec",
    "ROOT_PATH",
    "ScalarType",
    "SchemaDescriptor",
    "array",
    "describe",
    "embedded",
    "enum",
    "id_field",
    "index_path",
    "join_path",
    "reference",
    "scalar",
    "to_json_schema",
    "walk_nodes",
    # Rules
    "aggregate_rule",
    "sum_of_fields_rule",
    "to_decimal",
    # Loading
    "load_schema",
    "schema_from_dict",
    "schema_from_model",
    # Catalog
    "CATALOG",
    "classification_schema",
    "get_schema",
    "receipt_schema",
    "ticket_schema",
]
