# Schema-guided extraction: allocate ids, compile prompts, decode, validate, retry

from schemaguard.extraction.identity import (
    IdentityAllocator,
    IndexedNode,
    NodeIndex,
    index_nodes,
)
from schemaguard.extraction.prompt_compiler import (
    compile_request,
    compile_schema_text,
)
from schemaguard.extraction.decoder import DecodedValue, decode, parse_payload
from schemaguard.extraction.validator import validate
from schemaguard.extraction.controller import (
    ExtractionOptions,
    ExtractionResult,
    ModelInvoker,
    extract,
)
from schemaguard.extraction.batch import (
    ExtractionJob,
    extract_batch,
    extract_batch_async,
)

__all__ = [
    # Identity
    "IdentityAllocator",
    "IndexedNode",
    "NodeIndex",
    "index_nodes",
    # Prompting
    "compile_request",
    "compile_schema_text",
    # Decoding and validation
    "DecodedValue",
    "decode",
    "parse_payload",
    "validate",
    # Main entry points
    "ExtractionOptions",
    "ExtractionResult",
    "ModelInvoker",
    "extract",
    "ExtractionJob",
    "extract_batch",
    "extract_batch_async",
]
