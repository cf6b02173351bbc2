"""Run-lifetime counters: completion detection and the aggregate error summary.

This module holds the only state shared between concurrently running bulk
dispatches. Both objects are created once per run and passed explicitly into
the pipeline stages.

State Machine (CompletionTracker):
    (produced, acknowledged, exhausted) starts at (0, 0, False)
    - record_produced():     produced += 1      (batcher emits a batch)
    - record_acknowledged(): acknowledged += 1  (bulk call answered or failed)
    - mark_exhausted():      exhausted = True   (input fully consumed)
    The run is complete when produced == acknowledged and exhausted. The
    condition is checked after every acknowledgement and on exhaustion, and
    the completion callback fires exactly once.

Concurrency:
    Updates run on the single asyncio event loop and never span an await,
    so no locking is needed.

Used by:
    - bulkload.ingest.batcher: Production and exhaustion
    - bulkload.ingest.dispatcher: Acknowledgement
    - bulkload.ingest.classifier: Error summary updates
    - bulkload.reporter: Summary rendering
"""

from collections import Counter
from typing import Callable, Optional, Union

import structlog

logger = structlog.get_logger()

SummaryKey = Union[int, str]

SKIPPED = "Skipped"
MISSING_ID_FIELD = "MissingIdField"
ABORTED = "Aborted"
TRANSPORT_ERROR = "TransportError"
DECODE_ERROR = "DecodeError"
UNKNOWN_STATUS = "Unknown"


class ErrorSummary:
    """Running count per status code or synthetic category, plus skipped duplicates."""

    def __init__(self):
        self._counts: Counter = Counter()
        self.skipped = 0

    def record(self, key: SummaryKey, count: int = 1) -> None:
        if count > 0:
            self._counts[key] += count

    def record_skipped(self, count: int = 1) -> None:
        """Count skipped duplicates; kept out of the status table."""
        self.skipped += count

    def __getitem__(self, key: SummaryKey) -> int:
        return self._counts.get(key, 0)

    def __len__(self) -> int:
        return len(self._counts)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def items(self) -> list[tuple[SummaryKey, int]]:
        """Status codes ascending, then synthetic categories alphabetically."""
        return sorted(
            self._counts.items(),
            key=lambda kv: (0, kv[0], "") if isinstance(kv[0], int) else (1, 0, kv[0]),
        )

    def as_dict(self) -> dict[str, int]:
        return {str(key): count for key, count in self.items()}


class CompletionTracker:
    """Counts produced vs. acknowledged batches and detects run completion.

    Args:
        on_complete: Called once, with the tracker, when the run completes
    """

    def __init__(self, on_complete: Optional[Callable[["CompletionTracker"], None]] = None):
        self.produced = 0
        self.acknowledged = 0
        self.exhausted = False
        self.completed = False
        self._on_complete = on_complete

    def record_produced(self) -> int:
        """Count a new batch and return its 1-based sequence number."""
        if self.exhausted:
            raise RuntimeError("Cannot produce a batch after input is exhausted")
        self.produced += 1
        return self.produced

    def record_acknowledged(self) -> bool:
        """Count an acknowledged batch; returns True if this completed the run."""
        if self.acknowledged >= self.produced:
            raise RuntimeError(
                f"Acknowledged more batches than produced ({self.acknowledged + 1} > {self.produced})"
            )
        self.acknowledged += 1
        return self._check_complete()

    def mark_exhausted(self) -> bool:
        """Record the end of input; returns True if this completed the run."""
        self.exhausted = True
        return self._check_complete()

    @property
    def in_flight(self) -> int:
        return self.produced - self.acknowledged

    def _check_complete(self) -> bool:
        if self.completed or not self.exhausted or self.produced != self.acknowledged:
            return False
        self.completed = True
        logger.debug("Run complete", batches=self.produced)
        if self._on_complete is not None:
            self._on_complete(self)
        return True
