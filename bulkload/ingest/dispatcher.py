"""Bulk dispatch of one batch per request with per-batch error isolation.

Dispatch Flow:
    1. Assign a write operation to every document (content hash or id field)
    2. Abort the batch if any document lacks its upsert id field
    3. Send all operations in a single bulk request
    4. Classify the response items
    5. Emit the batch error block when anything went wrong
    6. Acknowledge the batch on the completion tracker (always, exactly once)

Error Isolation:
    Each dispatch builds its own BatchReport; nothing per-batch is stored on
    the dispatcher, so concurrent dispatches cannot mix their errors. The
    shared ErrorSummary and CompletionTracker are only touched after the
    bulk await has returned, without further suspension.

Transport Failures:
    When the bulk call itself raises (connection refused, timeout after the
    client's own retries, HTTP-level rejection) the whole batch counts as
    not written, is logged, shown in the batch block and counted under
    "TransportError". The batch is still acknowledged so completion
    detection never hangs.
"""

from typing import Any, Callable, Optional

import structlog

from ..config import IngestConfig
from ..models.documents import Batch, BatchReport, OperationError
from ..reporter import render_batch_report
from ..tracking import ABORTED, MISSING_ID_FIELD, TRANSPORT_ERROR, CompletionTracker, ErrorSummary
from .classifier import classify
from .identifiers import MissingIdFieldError, assign

logger = structlog.get_logger()


class BulkDispatcher:
    """Sends batches to the configured index and accounts for every outcome.

    Args:
        client: Async search engine client exposing bulk(index=..., body=...)
        config: Run configuration
        tracker: Completion tracker acknowledged once per batch
        summary: Run-lifetime error summary
        emit: Sink for rendered batch error blocks (stdout by default)
    """

    def __init__(
        self,
        client,
        config: IngestConfig,
        tracker: CompletionTracker,
        summary: ErrorSummary,
        emit: Optional[Callable[[str], None]] = None,
    ):
        self.client = client
        self.config = config
        self.tracker = tracker
        self.summary = summary
        self.emit = emit or print

    def build_operations(self, batch: Batch) -> tuple[list[dict[str, Any]], list[OperationError]]:
        """Build the bulk body for a batch.

        Returns:
            tuple: (bulk lines, one OperationError per document without an id
                field); the lines are only usable when the error list is empty
        """
        lines: list[dict[str, Any]] = []
        missing: list[OperationError] = []
        for position, doc in enumerate(batch.documents):
            try:
                operation = assign(doc, self.config)
            except MissingIdFieldError as e:
                missing.append(OperationError(position=position, error_type=MISSING_ID_FIELD, reason=str(e)))
                continue
            lines.extend(operation.to_bulk_lines())
        return lines, missing

    async def dispatch(self, batch: Batch) -> BatchReport:
        """Send one batch as one bulk request and classify the result.

        Args:
            batch: Batch to write

        Returns:
            BatchReport: Outcome of this batch (never raises for per-document,
                per-operation or transport errors)
        """
        try:
            report = await self._send(batch)
            if report.has_errors:
                self.emit(render_batch_report(report))
            return report
        finally:
            self.tracker.record_acknowledged()

    async def _send(self, batch: Batch) -> BatchReport:
        lines, missing = self.build_operations(batch)
        if missing:
            logger.error(
                "Batch aborted: documents without id field",
                batch=batch.sequence,
                id_field=self.config.id_field,
                missing=len(missing),
            )
            self.summary.record(MISSING_ID_FIELD, len(missing))
            self.summary.record(ABORTED, len(batch) - len(missing))
            return BatchReport(
                sequence=batch.sequence,
                document_count=len(batch),
                errors=missing,
                aborted=True,
            )

        try:
            response = await self.client.bulk(index=self.config.index, body=lines)
        except Exception as e:
            logger.error(
                "Error during bulk request",
                batch=batch.sequence,
                documents=len(batch),
                error=str(e),
                exc_info=True,
            )
            self.summary.record(TRANSPORT_ERROR, len(batch))
            return BatchReport(
                sequence=batch.sequence,
                document_count=len(batch),
                transport_error=f"{type(e).__name__}: {e}",
            )

        logger.debug(
            "Batch acknowledged",
            batch=batch.sequence,
            documents=len(batch),
            operations=len(lines),
            errors=bool(response.get("errors")),
        )
        return classify(batch, response, self.config.write_mode, self.summary, self.config.verbose)
