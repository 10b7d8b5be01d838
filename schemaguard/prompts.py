"""LLM prompt templates for SchemaGuard.

Contains all prompts used for:
- Initial structured-extraction requests (format directive + rendered schema)
- Shared id space instructions for graph-shaped outputs
- Corrective retry requests (re-ask with violation feedback)
"""


# =============================================================================
# INITIAL REQUEST
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You extract structured data and reply with a single JSON object.

Output format:
- Reply with exactly one JSON object whose top level is the shape {schema_name}.
- Do not add commentary, markdown, or code fences around the JSON.
- Use the exact field names listed below. Omit nothing that is marked required.
- Enum fields must use one of the listed values verbatim.
- Use null for optional values that are not present in the input.

Target schema:
{schema_text}"""

SHARED_ID_SPACE_NOTE = """Identifiers:
{space_lines}
- Every id must be unique across all shapes that share its space.
- Reference fields must hold an id that exists in the same output."""

SHARED_ID_SPACE_LINE = """- Space "{space}" is shared by: {shapes}"""


# =============================================================================
# CORRECTIVE RETRY
# =============================================================================

# Sent as a follow-up user turn after replaying the previous answer.
# The model regenerates the full object but is steered to fix only the
# flagged fields.
RETRY_PROMPT = """Your previous answer did not pass validation. Problems found:

{violation_lines}

Return the complete corrected JSON object for {schema_name}.
Fix exactly the fields listed above and keep every other field unchanged.
Reply with the JSON object only."""

VIOLATION_LINE = """- {field_path} [{rule}]: {message}"""
