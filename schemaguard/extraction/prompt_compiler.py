"""Prompt Compiler: schema + instructions (+ violations) -> ChatRequest.

## Extraction Theory: Re-asking Instead of Re-deriving

The initial request carries the rendered schema and an explicit JSON output
directive. When validation fails, the corrective request replays the
model's previous answer as an assistant turn and lists every violation
(path, rule, message). The model regenerates the full object, but the
feedback steers it to repair only the flagged fields.

## Data Flow

1. compile_schema_text(): describe() + shared id space notes (deterministic)
2. compile_request(): system prompt + user instructions [+ retry feedback]
3. controller sends the ChatRequest through invoke_model()
"""

from typing import Optional, Sequence

from schemaguard.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    RETRY_PROMPT,
    SHARED_ID_SPACE_LINE,
    SHARED_ID_SPACE_NOTE,
    VIOLATION_LINE,
)
from schemaguard.records import Attachment, ChatRequest, Violation
from schemaguard.schema.descriptor import SchemaDescriptor, describe, to_json_schema


def compile_schema_text(schema: SchemaDescriptor) -> str:
    """Render the schema section of the prompt.

    Idempotent: calling it twice on the same descriptor yields identical text.
    """
    text = describe(schema)
    spaces = schema.id_spaces()
    if spaces:
        space_lines = "\n".join(
            SHARED_ID_SPACE_LINE.format(space=space, shapes=", ".join(shapes))
            for space, shapes in spaces.items()
        )
        text = f"{text}\n\n{SHARED_ID_SPACE_NOTE.format(space_lines=space_lines)}"
    return text


def render_violations(violations: Sequence[Violation]) -> str:
    return "\n".join(
        VIOLATION_LINE.format(field_path=v.field_path, rule=v.rule, message=v.message)
        for v in violations
    )


def compile_request(
    schema: SchemaDescriptor,
    instructions: str,
    prior_violations: Optional[Sequence[Violation]] = None,
    prior_response: Optional[str] = None,
    attachments: Sequence[Attachment] = (),
    model: Optional[str] = None,
) -> ChatRequest:
    """Build the request for one attempt.

    Args:
        schema: Root descriptor.
        instructions: Caller's natural-language instructions (and input text).
        prior_violations: Violations from the previous attempt. When given,
            a corrective request is built.
        prior_response: Raw output of the previous attempt (retry only).
        attachments: Images or other binary inputs as data URIs.
        model: Model identifier forwarded to the endpoint.

    Returns:
        ChatRequest ready for invoke_model().
    """
    system_prompt = EXTRACTION_SYSTEM_PROMPT.format(
        schema_name=schema.name,
        schema_text=compile_schema_text(schema),
    )

    correction_prompt = None
    if prior_violations is not None:
        correction_prompt = RETRY_PROMPT.format(
            violation_lines=render_violations(prior_violations),
            schema_name=schema.name,
        )

    return ChatRequest(
        system_prompt=system_prompt,
        user_prompt=instructions,
        schema_name=schema.name,
        attachments=tuple(attachments),
        model=model,
        json_schema=to_json_schema(schema),
        prior_response=prior_response if correction_prompt is not None else None,
        correction_prompt=correction_prompt,
    )
