"""Run one schema-guided extraction from the command line.

Compiles the schema into a prompt, calls the model through OpenRouter,
decodes and validates the reply, and retries with corrective feedback until
the value is valid or the attempt budget is spent.

Usage Examples:
    # Extract a receipt from a text file using a catalog schema
    python -m schemaguard.stages.run_extraction --schema receipt --input receipt.txt

    # Extract from a photo (vision model required)
    python -m schemaguard.stages.run_extraction --schema receipt \\
        --instructions "Extract the receipt in the image" --image receipt.jpg

    # Custom YAML schema, stricter budget, results and trace saved to disk
    python -m schemaguard.stages.run_extraction --schema-file schemas/invoice.yaml \\
        --input invoice.txt --max-retries 1 -o out/invoice.json --trace

Arguments:
    --schema NAME          Catalog schema (tickets, receipt, classification)
    --schema-file PATH     YAML schema document (overrides --schema)
    --input PATH           Text file whose content is appended to the instructions
    --instructions TEXT    Extraction instructions (default: "Extract the data.")
    --image PATH           Image attachment; repeatable
    --model MODEL          Model id (default: EXTRACTION_MODEL from config)
    --max-retries N        Corrective retries after the first attempt
    --timeout SECONDS      Timeout per model invocation
    -o, --output PATH      Write the extracted value as JSON
    --trace                Save the attempt trace to data/traces/

Exit status is 1 when the extraction fails; the failure report (last raw
response and its violations) is printed to stderr.
"""

import argparse
import mimetypes
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from schemaguard.config import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_PER_ATTEMPT,
    DIR_LOGS,
    EXTRACTION_MODEL,
)
from schemaguard.errors import ExtractionError, SchemaDefinitionError
from schemaguard.extraction import ExtractionOptions, extract
from schemaguard.records import Attachment
from schemaguard.schema import CATALOG, get_schema, load_schema
from schemaguard.shared import (
    OpenRouterInvoker,
    add_file_handler,
    save_json,
    save_trace,
    setup_logging,
    to_json,
)

logger = setup_logging("Extraction")


def _read_attachment(path: Path) -> Attachment:
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type is None:
        raise ValueError(f"Cannot infer MIME type for attachment: {path}")
    return Attachment.from_bytes(path.read_bytes(), mime_type)


def build_instructions(instructions: str, input_path: Optional[Path]) -> str:
    """Combine the instruction text with the content of the input file, if any."""
    if input_path is None:
        return instructions
    content = input_path.read_text(encoding="utf-8")
    return f"{instructions}\n\n---\n{content}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Schema-guided structured extraction with corrective retries"
    )
    parser.add_argument(
        "--schema",
        choices=sorted(CATALOG),
        default="tickets",
        help="Catalog schema to extract (default: tickets)",
    )
    parser.add_argument("--schema-file", type=Path, help="YAML schema document")
    parser.add_argument("--input", type=Path, help="Text file with the source content")
    parser.add_argument(
        "--instructions",
        type=str,
        default="Extract the data.",
        help="Extraction instructions",
    )
    parser.add_argument(
        "--image",
        type=Path,
        action="append",
        default=[],
        help="Image attachment (repeatable)",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=EXTRACTION_MODEL,
        help=f"Model id (default: {EXTRACTION_MODEL})",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=DEFAULT_MAX_RETRIES,
        help=f"Corrective retries after the first attempt (default: {DEFAULT_MAX_RETRIES})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_PER_ATTEMPT,
        help=f"Seconds per model invocation (default: {DEFAULT_TIMEOUT_PER_ATTEMPT})",
    )
    parser.add_argument("-o", "--output", type=Path, help="Output JSON path")
    parser.add_argument("--trace", action="store_true", help="Save the attempt trace")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Run a single extraction and return the process exit status."""
    args = build_parser().parse_args(argv)

    try:
        schema = load_schema(args.schema_file) if args.schema_file else get_schema(args.schema)
    except (FileNotFoundError, SchemaDefinitionError) as e:
        logger.error(f"Cannot load schema: {e}")
        return 2

    # UnicodeDecodeError is a ValueError
    try:
        instructions = build_instructions(args.instructions, args.input)
        attachments = [_read_attachment(path) for path in args.image]
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read input: {e}")
        return 2

    log_file = add_file_handler(
        DIR_LOGS / f"extraction_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    )

    logger.info("=" * 60)
    logger.info("EXTRACTION")
    logger.info("=" * 60)
    logger.info(f"Schema: {schema.name}")
    logger.info(f"Model: {args.model}")
    logger.info(f"Max retries: {args.max_retries}, timeout: {args.timeout}s")
    logger.info(f"Attachments: {len(attachments)}")
    logger.info(f"Log file: {log_file}")

    options = ExtractionOptions(
        timeout_per_attempt=args.timeout,
        attachments=attachments,
        model=args.model,
    )
    invoker = OpenRouterInvoker(model=args.model)

    try:
        result = extract(schema, instructions, invoker, args.max_retries, options=options)
    except ExtractionError as e:
        print(e.report(), file=sys.stderr)
        if args.trace:
            logger.info(f"Trace saved: {save_trace(e)}")
        return 1

    logger.info(f"Extraction succeeded after {result.invocations} invocation(s)")
    if args.trace:
        logger.info(f"Trace saved: {save_trace(result)}")
    if args.output:
        save_json(result.value, args.output)
        logger.info(f"Saved: {args.output}")

    print(to_json(result.value))
    return 0


if __name__ == "__main__":
    sys.exit(main())
