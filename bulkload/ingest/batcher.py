"""Fixed-size batching of the ordered document stream."""

from typing import Any, Optional

import structlog

from ..models.documents import Batch
from ..tracking import CompletionTracker

logger = structlog.get_logger()


class Batcher:
    """Groups documents into batches of batch_size, preserving arrival order.

    Every produced batch is counted on the tracker, which also hands out the
    batch sequence numbers. Only the final batch, emitted by flush(), may be
    smaller than batch_size.

    Args:
        batch_size: Maximum (and, except for the last batch, exact) batch length
        tracker: Completion tracker notified on produce and on exhaustion
    """

    def __init__(self, batch_size: int, tracker: CompletionTracker):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.tracker = tracker
        self._buffer: list[dict[str, Any]] = []
        self._flushed = False

    def push(self, doc: dict[str, Any]) -> Optional[Batch]:
        """Append a document; return a full batch once batch_size is reached."""
        if self._flushed:
            raise RuntimeError("Cannot push documents after flush()")
        self._buffer.append(doc)
        if len(self._buffer) < self.batch_size:
            return None
        return self._emit()

    def flush(self) -> Optional[Batch]:
        """Emit the remainder (if any) and mark the input as exhausted.

        An empty remainder produces no batch, so it neither counts as
        produced nor delays completion detection.
        """
        if self._flushed:
            raise RuntimeError("flush() may only be called once")
        self._flushed = True
        batch = self._emit() if self._buffer else None
        self.tracker.mark_exhausted()
        return batch

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def _emit(self) -> Batch:
        documents, self._buffer = self._buffer, []
        sequence = self.tracker.record_produced()
        logger.debug("Produced batch", batch=sequence, documents=len(documents))
        return Batch(sequence=sequence, documents=documents)
