"""Retry Controller: bounded extract -> validate -> re-ask loop.

## Extraction Theory: Validation Failures as Retry Fuel

One extraction is a strictly ordered sequence of round-trips; request N+1
depends on the outcome of request N.

    Initial -> Decoding -> Validating -> Succeeded
                  |             |
                  v             v
               Retrying <-------+   (attempt < max_retries)
                  |
                  v
               Failed (DecodeExhausted | ValidationExhausted | TransportExhausted)

- Decode failures become a "decode_error" pseudo-violation and are re-asked
- Validation failures are re-asked with the full violation list
- Transport failures are re-sent with the unmodified request (nothing to
  correct semantically) after an exponential backoff. Every transport
  failure, 4xx included, counts toward the budget
- Cancellation is checked at every attempt boundary and always wins over
  success

Total model invocations never exceed max_retries + 1. One Identity Allocator
serves the whole extraction, so ids bound on an earlier attempt are never
reissued on a later one.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence, Type, TypeVar

from pydantic import BaseModel

from schemaguard.config import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_PER_ATTEMPT,
)
from schemaguard.errors import (
    DecodeError,
    DecodeExhausted,
    ExtractionCancelled,
    ExtractionError,
    TransportError,
    TransportExhausted,
    ValidationExhausted,
)
from schemaguard.extraction.decoder import decode
from schemaguard.extraction.identity import IdentityAllocator, IndexedNode, NodeIndex
from schemaguard.extraction.prompt_compiler import compile_request
from schemaguard.extraction.validator import validate
from schemaguard.records import Attachment, AttemptRecord, ChatRequest, Violation
from schemaguard.schema.descriptor import CustomRule, SchemaDescriptor
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)

M = TypeVar("M", bound=BaseModel)

# invoke_model(request, timeout_seconds) -> raw text; raises TransportError
ModelInvoker = Callable[[ChatRequest, float], str]


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class ExtractionOptions:
    """Per-call options for extract().

    Attributes:
        timeout_per_attempt: Seconds allowed for one model invocation.
        custom_rules: Extra rules run against the root after schema rules.
        backoff_base: Wait base ** attempt seconds before re-sending after a
            transport failure (0 disables waiting).
        attachments: Images or other binary inputs sent with every request.
        model: Model identifier placed on the request.
    """

    timeout_per_attempt: float = DEFAULT_TIMEOUT_PER_ATTEMPT
    custom_rules: Sequence[CustomRule] = ()
    backoff_base: float = DEFAULT_BACKOFF_BASE
    attachments: Sequence[Attachment] = ()
    model: Optional[str] = None


@dataclass
class ExtractionResult:
    """Successful extraction: validated value, id index and attempt trace."""

    value: dict[str, Any]
    schema: SchemaDescriptor
    index: NodeIndex
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def invocations(self) -> int:
        return len(self.attempts)

    def resolve(self, space: str, node_id: str) -> Optional[IndexedNode]:
        """Follow a reference: (space, id) -> the node that owns it."""
        return self.index.resolve(space, node_id)

    def to_model(self, model_cls: Type[M]) -> M:
        """Validate the extracted value into a caller-supplied Pydantic model."""
        return model_cls.model_validate(self.value)


def _cancelled(cancel_event: Optional[CancelToken]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


def extract(
    schema: SchemaDescriptor,
    instructions: str,
    invoke_model: ModelInvoker,
    max_retries: int = DEFAULT_MAX_RETRIES,
    *,
    options: Optional[ExtractionOptions] = None,
    cancel_event: Optional[CancelToken] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExtractionResult:
    """Extract a value conforming to `schema`, repairing it through corrective retries.

    Args:
        schema: Root descriptor (immutable during the call).
        instructions: Natural-language instructions including the input text.
        invoke_model: Endpoint function `(request, timeout) -> raw text`;
            raises TransportError (or TimeoutError) on failure.
        max_retries: Retries after the initial attempt; invocations are
            bounded by max_retries + 1.
        options: Timeout, custom rules, backoff, attachments, model.
        cancel_event: Anything with is_set() (e.g. threading.Event), checked
            at every attempt boundary.
        sleep: Sleep function used for transport backoff.

    Returns:
        ExtractionResult with the first valid value.

    Raises:
        DecodeExhausted: Last attempt could not be decoded.
        ValidationExhausted: Last attempt decoded but still had violations.
        TransportExhausted: Last attempt failed at the transport level.
        ExtractionCancelled: cancel_event was set at an attempt boundary.
        ValueError: If max_retries is negative.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")
    options = options or ExtractionOptions()

    allocator = IdentityAllocator()
    attempts: list[AttemptRecord] = []
    last_value: Optional[dict[str, Any]] = None
    last_failure: Optional[str] = None

    request = compile_request(
        schema,
        instructions,
        attachments=options.attachments,
        model=options.model,
    )

    for attempt in range(max_retries + 1):
        if _cancelled(cancel_event):
            raise ExtractionCancelled(
                f"Extraction of {schema.name} cancelled before attempt {attempt}",
                attempts, last_value, schema.name,
            )

        if last_failure == "transport" and options.backoff_base > 0:
            delay = options.backoff_base ** attempt
            logger.info(f"[extract] Waiting {delay:.1f}s before re-sending")
            sleep(delay)

        start = time.monotonic()
        try:
            raw = invoke_model(request, options.timeout_per_attempt)
        except (TransportError, TimeoutError) as exc:
            attempts.append(
                AttemptRecord(
                    attempt_number=attempt,
                    raw_response=None,
                    decode_success=False,
                    transport_error=str(exc) or type(exc).__name__,
                    elapsed_ms=_elapsed_ms(start),
                )
            )
            last_failure = "transport"
            logger.warning(
                f"[extract] {schema.name} attempt {attempt + 1}/{max_retries + 1}: "
                f"transport error ({exc})"
            )
            continue
        elapsed = _elapsed_ms(start)

        try:
            decoded = decode(raw, schema, allocator)
        except DecodeError as exc:
            violations = [exc.to_violation()]
            attempts.append(AttemptRecord(attempt, raw, False, violations, elapsed_ms=elapsed))
            last_failure = "decode"
            logger.warning(
                f"[extract] {schema.name} attempt {attempt + 1}/{max_retries + 1}: "
                f"decode failed ({exc})"
            )
            request = _retry_request(schema, instructions, violations, raw, options)
            continue

        violations = validate(decoded.value, schema, options.custom_rules, index=decoded.index)
        attempts.append(AttemptRecord(attempt, raw, True, violations, elapsed_ms=elapsed))
        last_value = decoded.value

        if not violations:
            if _cancelled(cancel_event):
                raise ExtractionCancelled(
                    f"Extraction of {schema.name} cancelled after attempt {attempt}",
                    attempts, None, schema.name,
                )
            logger.info(
                f"[extract] {schema.name} valid after {len(attempts)} invocation(s) "
                f"({len(decoded.index)} addressable nodes)"
            )
            return ExtractionResult(
                value=decoded.value,
                schema=schema,
                index=decoded.index,
                attempts=attempts,
            )

        last_failure = "validation"
        logger.warning(
            f"[extract] {schema.name} attempt {attempt + 1}/{max_retries + 1}: "
            f"{len(violations)} violation(s): "
            + "; ".join(v.render() for v in violations[:5])
        )
        request = _retry_request(schema, instructions, violations, raw, options)

    raise _exhausted(last_failure, schema, attempts, last_value)


def _retry_request(
    schema: SchemaDescriptor,
    instructions: str,
    violations: list[Violation],
    raw: str,
    options: ExtractionOptions,
) -> ChatRequest:
    return compile_request(
        schema,
        instructions,
        prior_violations=violations,
        prior_response=raw,
        attachments=options.attachments,
        model=options.model,
    )


def _exhausted(
    last_failure: Optional[str],
    schema: SchemaDescriptor,
    attempts: list[AttemptRecord],
    last_value: Optional[dict[str, Any]],
) -> ExtractionError:
    count = len(attempts)
    if last_failure == "transport":
        error: ExtractionError = TransportExhausted(
            f"{schema.name}: endpoint failed on the last of {count} invocation(s)",
            attempts, last_value, schema.name,
        )
    elif last_failure == "decode":
        error = DecodeExhausted(
            f"{schema.name}: response could not be decoded after {count} invocation(s)",
            attempts, last_value, schema.name,
        )
    else:
        error = ValidationExhausted(
            f"{schema.name}: still invalid after {count} invocation(s)",
            attempts, last_value, schema.name,
        )
    logger.error(f"[extract] {error.error_code}: {error.message}")
    return error
