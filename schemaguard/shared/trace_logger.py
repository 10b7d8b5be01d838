"""Attempt trace logging for diagnostics.

Saves the Attempt Records of an extraction (successful or failed) to a JSON
file so a human can inspect every raw response and violation list:
- Fixing an output by hand after ValidationExhausted
- Adjusting schema guidance or instructions
- Comparing models on the same inputs
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from schemaguard.config import DIR_TRACES
from schemaguard.records import AttemptRecord
from schemaguard.shared.files import save_json


def build_trace(
    schema_name: str,
    status: str,
    attempts: Sequence[AttemptRecord],
    value: Optional[Any] = None,
    error_code: Optional[str] = None,
) -> dict[str, Any]:
    """Build a JSON-serializable trace record.

    Args:
        schema_name: Root shape name.
        status: "succeeded" or "failed".
        attempts: Attempt Records in order.
        value: Final (or last decoded) value.
        error_code: Terminal error code for failed extractions.

    Returns:
        Trace dict with a fresh id and UTC timestamp.
    """
    return {
        "id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "schema": schema_name,
        "status": status,
        "error_code": error_code,
        "invocations": len(attempts),
        "attempts": [record.to_dict() for record in attempts],
        "value": value,
    }


def save_trace(outcome: Any, output_path: Optional[Path] = None) -> Path:
    """Write the trace of an ExtractionResult or ExtractionError to JSON.

    Args:
        outcome: ExtractionResult (has .value/.schema) or ExtractionError
            (has .error_code/.last_value).
        output_path: Target file. Defaults to DIR_TRACES/<timestamp>_<id>.json.

    Returns:
        Path of the written file.
    """
    error_code = getattr(outcome, "error_code", None)
    if error_code is None:
        trace = build_trace(outcome.schema.name, "succeeded", outcome.attempts, outcome.value)
    else:
        trace = build_trace(
            getattr(outcome, "schema_name", ""),
            "failed",
            outcome.attempts,
            outcome.last_value,
            error_code,
        )

    if output_path is None:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = DIR_TRACES / f"{stamp}_{trace['id'][:8]}.json"
    return save_json(trace, output_path)
