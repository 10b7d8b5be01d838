"""Exception taxonomy for schema-guided extraction.

Per-attempt errors (DecodeError, TransportError, IdentityCollisionError) are
raised by components and converted into retry fuel by the Retry Controller.
Callers of extract() only ever see the terminal ExtractionError subclasses,
each carrying the full attempt trace for diagnostics.
"""

from typing import Any, Optional

from schemaguard.records import AttemptRecord, Violation


class SchemaGuardError(Exception):
    """Base exception for all SchemaGuard errors."""
    pass


class SchemaDefinitionError(SchemaGuardError):
    """Raised when a Schema Descriptor is malformed (duplicate fields, empty enums...)."""
    pass


class DecodeError(SchemaGuardError):
    """Raised when a model payload cannot be parsed as the declared shape."""

    def __init__(self, message: str, field_path: str = "$"):
        super().__init__(message)
        self.field_path = field_path

    def to_violation(self) -> Violation:
        return Violation(self.field_path, "decode_error", str(self))


class TransportError(SchemaGuardError):
    """Raised by model invokers when the endpoint is unreachable, errors or times out."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class IdentityCollisionError(SchemaGuardError):
    """Two nodes in one shared id space carry the same model-assigned id.

    Collisions are never renumbered (reference fields set by the model point
    at those ids). They are reported as "identity_collision" violations so
    the corrective prompt can ask for distinct ids.
    """

    def __init__(self, space: str, node_id: str, first_path: str, second_path: str,
                 first_shape: str = "", second_shape: str = ""):
        super().__init__(
            f"id '{node_id}' in space '{space}' is used by both "
            f"{first_shape or 'node'} at {first_path} and {second_shape or 'node'} at {second_path}"
        )
        self.space = space
        self.node_id = node_id
        self.first_path = first_path
        self.second_path = second_path

    def to_violation(self, id_field: str = "id") -> Violation:
        path = f"{self.second_path}.{id_field}" if self.second_path != "$" else id_field
        return Violation(path, "identity_collision", str(self))


# ============================================================================
# TERMINAL ERRORS
# ============================================================================


class ExtractionError(SchemaGuardError):
    """Terminal extraction failure with the full attempt trace attached.

    Attributes:
        attempts: Every AttemptRecord, in order.
        last_value: Last successfully decoded value (None if none decoded).
        error_code: Stable identifier for analytics and CLI exit reporting.
    """

    error_code = "extraction_failed"

    def __init__(self, message: str, attempts: list[AttemptRecord],
                 last_value: Optional[dict[str, Any]] = None, schema_name: str = ""):
        super().__init__(message)
        self.message = message
        self.attempts = list(attempts)
        self.last_value = last_value
        self.schema_name = schema_name

    @property
    def last_raw_response(self) -> Optional[str]:
        for record in reversed(self.attempts):
            if record.raw_response is not None:
                return record.raw_response
        return None

    @property
    def last_violations(self) -> list[Violation]:
        for record in reversed(self.attempts):
            if record.transport_error is None:
                return list(record.violations)
        return []

    def report(self) -> str:
        """Human-readable report: enough to fix the output or the schema by hand."""
        lines = [f"{self.error_code}: {self.message}", f"attempts: {len(self.attempts)}"]
        violations = self.last_violations
        if violations:
            lines.append("last violations:")
            lines.extend(f"  - {v.render()}" for v in violations)
        if self.attempts and self.attempts[-1].transport_error:
            lines.append(f"last transport error: {self.attempts[-1].transport_error}")
        raw = self.last_raw_response
        if raw is not None:
            lines.append("last raw response:")
            lines.append(raw)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.report()


class DecodeExhausted(ExtractionError):
    error_code = "decode_exhausted"


class ValidationExhausted(ExtractionError):
    error_code = "validation_exhausted"


class TransportExhausted(ExtractionError):
    error_code = "transport_exhausted"


class ExtractionCancelled(ExtractionError):
    error_code = "cancelled"
