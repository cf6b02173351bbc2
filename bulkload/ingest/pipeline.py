"""Async ingestion pipeline: decode, batch, dispatch, classify, report.

Stages:
    decoder -> batcher -> bulk dispatcher (-> classifier) -> reporter
    with a CompletionTracker observing produced and acknowledged batches.

Concurrency Model (bounded):
    At most config.max_in_flight bulk requests are outstanding. Scheduling a
    batch waits on a semaphore, which suspends the producer loop and with it
    the decoder, so input is only read as fast as the store accepts batches.
    Batches may be acknowledged out of production order.

Completion:
    The final summary is emitted from the tracker's completion callback,
    exactly once, after the input is exhausted and every produced batch has
    been acknowledged.

Termination:
    If the producer stops abnormally (unexpected error, cancellation), no
    further batches are scheduled and all in-flight dispatches are awaited
    before the error propagates; no dispatch task is left unobserved.

Dependencies:
    - asyncio: Event loop, semaphore and tasks
    - structlog: Run logging
"""

import asyncio
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..config import IngestConfig
from ..reporter import render_stream_error, render_summary
from ..tracking import DECODE_ERROR, CompletionTracker, ErrorSummary
from .batcher import Batcher
from .decoder import DocumentDecodeError, decode_documents
from .dispatcher import BulkDispatcher

logger = structlog.get_logger()


class RunResult(BaseModel):
    """Totals of a finished (or aborted) run.

    Attributes:
        batches: Batches acknowledged by the dispatcher
        documents: Documents decoded from the input
        skipped: Duplicates skipped in create mode
        completed: True once the completion callback has fired
        summary: Run-lifetime error summary
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    batches: int = 0
    documents: int = 0
    skipped: int = 0
    completed: bool = False
    summary: ErrorSummary = Field(default_factory=ErrorSummary)


async def run_pipeline(
    reader,
    client,
    config: IngestConfig,
    emit: Optional[Callable[[str], None]] = None,
) -> RunResult:
    """Stream every document from reader into the configured index.

    Args:
        reader: Async byte reader (see bulkload.ingest.decoder.AsyncFileReader)
        client: Async search engine client with a bulk() coroutine
        config: Run configuration
        emit: Sink for report text (batch blocks, stream errors, summary);
            defaults to print

    Returns:
        RunResult: Batch and document totals, skip count and the error summary
    """
    emit = emit or print
    result = RunResult()
    summary = result.summary

    def on_complete(tracker: CompletionTracker) -> None:
        result.completed = True
        emit(render_summary(summary, tracker.acknowledged))

    def on_decode_error(error: DocumentDecodeError) -> None:
        summary.record(DECODE_ERROR)
        emit(render_stream_error(error))

    tracker = CompletionTracker(on_complete=on_complete)
    batcher = Batcher(config.batch_size, tracker)
    dispatcher = BulkDispatcher(client, config, tracker, summary, emit)
    semaphore = asyncio.Semaphore(config.max_in_flight)
    pending: set[asyncio.Task] = set()

    async def dispatch_and_release(batch):
        try:
            await dispatcher.dispatch(batch)
        finally:
            semaphore.release()

    async def schedule(batch) -> None:
        await semaphore.acquire()
        task = asyncio.create_task(dispatch_and_release(batch))
        pending.add(task)
        task.add_done_callback(pending.discard)

    logger.info(
        "Starting ingestion",
        index=config.index,
        mode=config.write_mode.value,
        batch_size=config.batch_size,
        max_in_flight=config.max_in_flight,
    )

    try:
        async for document in decode_documents(reader, on_error=on_decode_error):
            result.documents += 1
            batch = batcher.push(document)
            if batch is not None:
                await schedule(batch)

        batch = batcher.flush()
        if batch is not None:
            await schedule(batch)
    finally:
        outcomes = await asyncio.gather(*list(pending), return_exceptions=True)
        result.batches = tracker.acknowledged
        result.skipped = summary.skipped

    failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
    if failures:
        raise failures[0]

    logger.info(
        "Ingestion complete",
        documents=result.documents,
        batches=result.batches,
        skipped=result.skipped,
        errors=summary.as_dict(),
    )
    return result
