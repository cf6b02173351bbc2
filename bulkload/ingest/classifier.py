"""Classification of bulk response items into success, skip, and error outcomes.

A single bulk call normally returns a mix of outcomes. Each item is sorted
into one of four kinds:

    success            no error on the item
    skipped_duplicate  409 conflict in create mode; the content hash already
                       exists, which is the expected result of re-ingesting
    retryable          429 capacity rejection; the document is valid and a
                       later re-run may write it
    error              anything else, including 409 in upsert mode (an
                       upsert should never conflict)

Counting:
    - Skips increment BatchReport.skipped and the summary's skipped total,
      and when verbose also the "Skipped" row of the status table
    - Errors and retryable rejections are recorded on the BatchReport and
      counted in the run summary under their status code

The classifier never retries; retrying is left to the operator re-running
the load, which is safe because identifiers are deterministic.
"""

from typing import Any, Optional

from ..models.documents import (
    NO_REASON,
    Batch,
    BatchReport,
    OperationError,
    OutcomeKind,
    WriteMode,
)
from ..tracking import SKIPPED, UNKNOWN_STATUS, ErrorSummary

CONFLICT = 409
TOO_MANY_REQUESTS = 429


def _item_result(item: dict[str, Any]) -> dict[str, Any]:
    """Unwrap {"create": {...}} / {"update": {...}} to the inner result."""
    if not item:
        return {}
    if "status" in item:
        return item
    return next(iter(item.values())) or {}


def _error_details(error: Any) -> tuple[Optional[str], str]:
    if isinstance(error, dict):
        reason = error.get("reason") or NO_REASON
        return error.get("type"), str(reason)
    if error:
        return None, str(error)
    return None, NO_REASON


def classify_item(
    item: dict[str, Any], position: int, mode: WriteMode
) -> tuple[OutcomeKind, Optional[OperationError]]:
    """Classify one bulk response item.

    Args:
        item: Response item, e.g. {"create": {"status": 409, "error": {...}}}
        position: Index of the operation within its batch
        mode: Write mode of the run

    Returns:
        tuple: (kind, OperationError for retryable/error kinds, otherwise None)
    """
    result = _item_result(item)
    error = result.get("error")
    if not error:
        return OutcomeKind.SUCCESS, None

    status = result.get("status")
    if status == CONFLICT and mode is WriteMode.CREATE:
        return OutcomeKind.SKIPPED_DUPLICATE, None

    error_type, reason = _error_details(error)
    retryable = status == TOO_MANY_REQUESTS
    kind = OutcomeKind.RETRYABLE if retryable else OutcomeKind.ERROR
    return kind, OperationError(
        position=position,
        status=status,
        error_type=error_type,
        reason=reason,
        retryable=retryable,
    )


def classify(
    batch: Batch,
    response: dict[str, Any],
    mode: WriteMode,
    summary: ErrorSummary,
    verbose: bool = False,
) -> BatchReport:
    """Sort every item of a bulk response and update the run summary.

    Args:
        batch: The batch that was sent
        response: Bulk response with "errors" and "items"
        mode: Write mode of the run
        summary: Run-lifetime error summary, updated in place
        verbose: Also tally skipped duplicates in the summary

    Returns:
        BatchReport: Per-batch outcome local to this call
    """
    report = BatchReport(sequence=batch.sequence, document_count=len(batch))
    if not response.get("errors"):
        return report

    for position, item in enumerate(response.get("items") or []):
        kind, error = classify_item(item, position, mode)
        if kind is OutcomeKind.SKIPPED_DUPLICATE:
            report.skipped += 1
            summary.record_skipped()
            if verbose:
                summary.record(SKIPPED)
        elif error is not None:
            report.errors.append(error)
            summary.record(error.status if error.status is not None else UNKNOWN_STATUS)

    return report
