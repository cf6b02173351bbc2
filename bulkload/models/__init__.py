"""Data models for bulkload."""

from .documents import (
    Batch,
    BatchReport,
    OperationError,
    OutcomeKind,
    WriteMode,
    WriteOperation,
)

__all__ = [
    "Batch",
    "BatchReport",
    "OperationError",
    "OutcomeKind",
    "WriteMode",
    "WriteOperation",
]
