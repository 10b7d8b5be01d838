"""Dataclass records exchanged between SchemaGuard components.

## Extraction Theory: What Crosses Component Boundaries

An extraction moves through a fixed pipeline (compile -> invoke -> decode ->
validate -> retry). Only a few small records travel between the stages:

- ChatRequest: what the Prompt Compiler hands to the model endpoint
- Attachment: binary content (receipt photos, screenshots) as a data URI
- Violation: one failed constraint, addressed by a dotted/indexed path
- AttemptRecord: the diagnostic trace of one round-trip

## Library Usage

Plain dataclasses keep these records dependency-free so the HTTP client,
the validator and the trace logger can all share them without import cycles.
"""

import base64
from dataclasses import dataclass, field, asdict
from typing import Any, Optional


# ============================================================================
# VIOLATIONS AND ATTEMPTS
# ============================================================================


@dataclass(frozen=True)
class Violation:
    """Single failed structural or semantic constraint.

    Attributes:
        field_path: Path from the root to the offending field, e.g.
            "items[2].price". The root itself is "$".
        rule: Stable rule identifier ("missing_required", "enum_mismatch",
            "dangling_reference", "aggregate_mismatch", ...).
        message: Human-readable explanation, rendered into retry prompts.
    """

    field_path: str
    rule: str
    message: str

    def render(self) -> str:
        return f"{self.field_path} [{self.rule}]: {self.message}"


@dataclass
class AttemptRecord:
    """Diagnostic trace of one request/response/validate cycle.

    Attributes:
        attempt_number: 0 for the initial call, then 1, 2, ...
        raw_response: Model output text (None when the transport failed).
        decode_success: True if the payload parsed as the declared shape.
        violations: Violations found (a single "decode_error" pseudo-violation
            when decoding failed).
        transport_error: Error description when the endpoint call failed.
        elapsed_ms: Wall time spent in the model invocation.
    """

    attempt_number: int
    raw_response: Optional[str]
    decode_success: bool
    violations: list[Violation] = field(default_factory=list)
    transport_error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.decode_success and not self.violations and self.transport_error is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# REQUESTS
# ============================================================================


@dataclass(frozen=True)
class Attachment:
    """Binary content sent alongside the prompt, encoded as a data URI."""

    mime_type: str
    data_uri: str

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "Attachment":
        """Encode raw bytes (e.g. a receipt photo) as a base64 data URI.

        Example:
            >>> Attachment.from_bytes(b"abc", "image/png").data_uri
            'data:image/png;base64,YWJj'
        """
        encoded = base64.b64encode(data).decode("ascii")
        return cls(mime_type=mime_type, data_uri=f"data:{mime_type};base64,{encoded}")


@dataclass(frozen=True)
class ChatRequest:
    """Request payload produced by the Prompt Compiler.

    The initial request is a system message (format directive + rendered
    schema) and a user message (instructions + attachments). A corrective
    request additionally replays the previous model output as an assistant
    turn followed by a correction message listing the violations.

    Attributes:
        system_prompt: Format directive and rendered schema.
        user_prompt: Caller's natural-language instructions.
        schema_name: Name of the root shape being extracted.
        attachments: Data-URI attachments sent with the user message.
        model: Model identifier (None lets the endpoint pick its default).
        json_schema: JSON Schema of the root shape, for endpoints that
            support schema-constrained output.
        prior_response: Previous raw model output (retry requests only).
        correction_prompt: Violation feedback (retry requests only).
    """

    system_prompt: str
    user_prompt: str
    schema_name: str = ""
    attachments: tuple[Attachment, ...] = ()
    model: Optional[str] = None
    json_schema: Optional[dict[str, Any]] = None
    prior_response: Optional[str] = None
    correction_prompt: Optional[str] = None

    @property
    def is_retry(self) -> bool:
        return self.correction_prompt is not None

    def to_messages(self) -> list[dict[str, Any]]:
        """Render as OpenAI-format chat messages."""
        if self.attachments:
            user_content: Any = [{"type": "text", "text": self.user_prompt}]
            for attachment in self.attachments:
                user_content.append(
                    {"type": "image_url", "image_url": {"url": attachment.data_uri}}
                )
        else:
            user_content = self.user_prompt

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": user_content},
        ]
        if self.is_retry:
            messages.append({"role": "assistant", "content": self.prior_response or ""})
            messages.append({"role": "user", "content": self.correction_prompt})
        return messages
