"""Pydantic data models for documents, bulk write operations, and batch outcomes.

This module defines the typed values that flow between the ingestion stages:
batches produced by the batcher, write operations built by the identifier
assigner, and the per-batch reports produced by the result classifier.

Model Categories:
    - Pipeline Values: Batch, WriteOperation
    - Outcome Models: OutcomeKind, OperationError, BatchReport

Bulk Wire Format:
    Every WriteOperation serializes to exactly two bulk lines, an action
    descriptor followed by a body:
        {"create": {"_id": "<sha1>"}}, {...document...}
        {"update": {"_id": "<base64>"}}, {"doc": {...}, "doc_as_upsert": true}

Dependencies:
    - pydantic: Validation and immutability of pipeline values

Used by:
    - bulkload.ingest.*: All pipeline stages
    - bulkload.reporter: Rendering of batch reports
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

NO_REASON = "no reason found"


class WriteMode(str, Enum):
    """Bulk action used for every document of a run."""

    CREATE = "create"
    UPDATE = "update"


class OutcomeKind(str, Enum):
    """Classification of a single bulk item outcome."""

    SUCCESS = "success"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    RETRYABLE = "retryable"
    ERROR = "error"


class Batch(BaseModel):
    """Ordered, finite group of documents sent as one bulk request.

    Attributes:
        sequence: 1-based position of the batch in the stream (reporting only)
        documents: Documents in arrival order
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1, description="Batch sequence number (1-based)")
    documents: list[dict[str, Any]] = Field(..., description="Documents in arrival order")

    @field_validator("documents")
    @classmethod
    def validate_documents(cls, v):
        """Reject empty batches; an empty flush never produces a batch."""
        if not v:
            raise ValueError("A batch must contain at least one document")
        return v

    def __len__(self) -> int:
        return len(self.documents)


class WriteOperation(BaseModel):
    """A single document paired with its bulk action descriptor.

    Created per document at dispatch time and consumed immediately by the
    dispatcher; never persisted.

    Attributes:
        mode: create (reject existing ids) or update with doc_as_upsert
        doc_id: Deterministic identifier for the document
        document: The document body
    """

    model_config = ConfigDict(frozen=True)

    mode: WriteMode
    doc_id: str = Field(..., min_length=1)
    document: dict[str, Any]

    def to_bulk_lines(self) -> list[dict[str, Any]]:
        """Return the action descriptor and body lines for the bulk request."""
        action = {self.mode.value: {"_id": self.doc_id}}
        if self.mode is WriteMode.UPDATE:
            return [action, {"doc": self.document, "doc_as_upsert": True}]
        return [action, self.document]


class OperationError(BaseModel):
    """One failed operation within a batch.

    Attributes:
        position: Index of the operation within its batch (0-based)
        status: HTTP-style status reported for the item, None when the
            document never reached the store
        error_type: Store-reported error type (e.g. mapper_parsing_exception)
        reason: Human-readable reason, with a generic fallback
        retryable: True for capacity rejections (429) that may succeed on re-run
    """

    position: int = Field(..., ge=0)
    status: Optional[int] = None
    error_type: Optional[str] = None
    reason: str = NO_REASON
    retryable: bool = False


class BatchReport(BaseModel):
    """Outcome of dispatching one batch.

    A report is created inside a single dispatch invocation and never shared
    with other batches, so concurrent dispatches cannot mix their errors.

    Attributes:
        sequence: Batch sequence number
        document_count: Number of documents in the batch
        skipped: Duplicates skipped in create mode (409 conflicts)
        errors: Failed operations, in position order
        transport_error: Set when the bulk call itself failed
        aborted: True when the batch was never sent (missing id field)
    """

    sequence: int
    document_count: int
    skipped: int = 0
    errors: list[OperationError] = Field(default_factory=list)
    transport_error: Optional[str] = None
    aborted: bool = False

    @property
    def has_errors(self) -> bool:
        return bool(self.errors) or self.transport_error is not None or self.aborted

    @property
    def error_count(self) -> int:
        if self.transport_error is not None:
            return self.document_count
        return len(self.errors)
