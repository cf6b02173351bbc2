"""Plain-text rendering of batch error blocks and the final run summary."""

from .ingest.decoder import DocumentDecodeError
from .models.documents import BatchReport, OperationError
from .tracking import ErrorSummary

RULE = "-" * 40


def _render_error(error: OperationError) -> str:
    status = "n/a" if error.status is None else str(error.status)
    if error.retryable:
        status += " (retryable)"
    line = f"  [{error.position}] status={status}"
    if error.error_type:
        line += f" type={error.error_type}"
    return f"{line} reason={error.reason}"


def render_batch_report(report: BatchReport) -> str:
    """Render the error block for one batch."""
    lines = [
        RULE,
        f"Batch {report.sequence}: {report.document_count} documents, "
        f"{report.skipped} skipped, {report.error_count} errors",
    ]
    if report.transport_error is not None:
        lines.append(f"  bulk request failed, batch not written: {report.transport_error}")
    if report.aborted:
        lines.append("  batch aborted before dispatch, no documents written")
    lines.extend(_render_error(error) for error in report.errors)
    return "\n".join(lines)


def render_summary(summary: ErrorSummary, batches: int) -> str:
    """Render the status table followed by the run totals."""
    width = max([len("Status")] + [len(str(key)) for key, _ in summary.items()])
    lines = [RULE, "Summary", f"  {'Status':<{width}}  Count"]
    for key, count in summary.items():
        label = str(key)
        note = "  (retryable)" if key == 429 else ""
        lines.append(f"  {label:<{width}}  {count}{note}")
    lines.append(f"  {'Total':<{width}}  {summary.total}")
    lines.append(f"Skipped documents: {summary.skipped}")
    lines.append(f"Total batches: {batches}")
    return "\n".join(lines)


def render_stream_error(error: DocumentDecodeError) -> str:
    return f"streaming error: {error}"
