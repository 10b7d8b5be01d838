"""Batch extraction: many independent extract() calls in parallel.

Independent extractions (e.g. one per support transcript) share no mutable
state: each gets its own Identity Allocator and attempt trace. They run on
the event loop's default thread executor, bounded by a semaphore, and
results come back in input order.
"""

import asyncio
from dataclasses import dataclass, replace
from functools import partial
from typing import Optional, Sequence, Union

from schemaguard.config import BATCH_MAX_CONCURRENCY, DEFAULT_MAX_RETRIES
from schemaguard.errors import ExtractionError
from schemaguard.extraction.controller import (
    CancelToken,
    ExtractionOptions,
    ExtractionResult,
    ModelInvoker,
    extract,
)
from schemaguard.records import Attachment
from schemaguard.schema.descriptor import SchemaDescriptor
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)

BatchOutcome = Union[ExtractionResult, ExtractionError]


@dataclass
class ExtractionJob:
    """One input of a batch: instructions plus optional per-job attachments."""

    instructions: str
    attachments: Sequence[Attachment] = ()
    key: Optional[str] = None


async def extract_batch_async(
    schema: SchemaDescriptor,
    jobs: Sequence[ExtractionJob],
    invoke_model: ModelInvoker,
    max_retries: int = DEFAULT_MAX_RETRIES,
    options: Optional[ExtractionOptions] = None,
    cancel_event: Optional[CancelToken] = None,
    max_concurrency: int = BATCH_MAX_CONCURRENCY,
) -> list[BatchOutcome]:
    """Run independent extractions concurrently (async).

    Args:
        schema: Root descriptor shared by all jobs (immutable).
        jobs: Inputs to extract.
        invoke_model: Endpoint function, called from worker threads.
        max_retries: Retry budget per job.
        options: Base options; a job's attachments replace the base ones.
        cancel_event: Shared cancellation token checked by every job.
        max_concurrency: Maximum extractions in flight.

    Returns:
        One ExtractionResult or ExtractionError per job, in input order.
        Errors other than ExtractionError propagate.
    """
    options = options or ExtractionOptions()
    loop = asyncio.get_running_loop()
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _run(job: ExtractionJob) -> ExtractionResult:
        job_options = replace(options, attachments=job.attachments) if job.attachments else options
        call = partial(
            extract,
            schema,
            job.instructions,
            invoke_model,
            max_retries,
            options=job_options,
            cancel_event=cancel_event,
        )
        async with semaphore:
            return await loop.run_in_executor(None, call)

    outcomes = await asyncio.gather(*(_run(job) for job in jobs), return_exceptions=True)

    for outcome in outcomes:
        if isinstance(outcome, BaseException) and not isinstance(outcome, ExtractionError):
            raise outcome

    failed = 0
    for i, (job, outcome) in enumerate(zip(jobs, outcomes)):
        if isinstance(outcome, ExtractionError):
            failed += 1
            logger.warning(f"[batch] job {job.key or i} failed: {outcome.error_code}")
    logger.info(f"[batch] {len(jobs) - failed}/{len(jobs)} extractions succeeded")
    return list(outcomes)


def extract_batch(
    schema: SchemaDescriptor,
    jobs: Sequence[ExtractionJob],
    invoke_model: ModelInvoker,
    max_retries: int = DEFAULT_MAX_RETRIES,
    options: Optional[ExtractionOptions] = None,
    cancel_event: Optional[CancelToken] = None,
    max_concurrency: int = BATCH_MAX_CONCURRENCY,
) -> list[BatchOutcome]:
    """Synchronous wrapper for extract_batch_async()."""
    return asyncio.run(
        extract_batch_async(
            schema, jobs, invoke_model, max_retries,
            options=options,
            cancel_event=cancel_event,
            max_concurrency=max_concurrency,
        )
    )
