"""Test helper utilities: async readers, bulk response factories and a fake index."""

import asyncio
import json
from typing import Any, Optional


class ChunkedReader:
    """Async byte reader serving preset chunks, then b"" forever."""

    def __init__(self, *chunks: bytes):
        self.chunks = list(chunks)
        self.reads = 0

    @classmethod
    def from_documents(cls, documents: list[Any], chunk_size: int = 16) -> "ChunkedReader":
        """Encode documents as one JSON array split into small chunks."""
        payload = json.dumps(documents).encode("utf-8")
        return cls(*[payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)])

    @classmethod
    def from_lines(cls, *lines: str) -> "ChunkedReader":
        return cls(("\n".join(lines) + "\n").encode("utf-8"))

    async def read(self, size: int = -1) -> bytes:
        self.reads += 1
        await asyncio.sleep(0)
        if not self.chunks:
            return b""
        return self.chunks.pop(0)


class MockBulkResponses:
    """Factory for bulk API responses."""

    @staticmethod
    def create_item(action: str = "create", status: int = 201,
                    error_type: Optional[str] = None, reason: Optional[str] = None) -> dict:
        result: dict[str, Any] = {"_id": "x", "status": status}
        if error_type is not None or reason is not None:
            error: dict[str, Any] = {}
            if error_type is not None:
                error["type"] = error_type
            if reason is not None:
                error["reason"] = reason
            result["error"] = error
        return {action: result}

    @staticmethod
    def create_response(items: list[dict]) -> dict:
        errors = any("error" in next(iter(item.values())) for item in items)
        return {"took": 3, "errors": errors, "items": items}

    @staticmethod
    def all_created(count: int, action: str = "create") -> dict:
        return MockBulkResponses.create_response(
            [MockBulkResponses.create_item(action, 201) for _ in range(count)]
        )


class FakeIndex:
    """In-memory stand-in for the bulk API with create/update semantics.

    create fails with 409 when the _id exists; update merges the partial
    document and creates it when missing (doc_as_upsert). Ids listed in
    reject_ids answer 429. The fake tracks how many bulk calls overlap.
    """

    def __init__(self, reject_ids: Optional[set] = None, delay: float = 0.0):
        self.documents: dict[str, dict] = {}
        self.reject_ids = reject_ids or set()
        self.delay = delay
        self.calls: list[list[dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def bulk(self, index: str, body: list[dict]) -> dict:
        self.calls.append(body)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            items = [self._apply(body[i], body[i + 1]) for i in range(0, len(body), 2)]
        finally:
            self.in_flight -= 1
        return MockBulkResponses.create_response(items)

    def _apply(self, action: dict, source: dict) -> dict:
        op, meta = next(iter(action.items()))
        doc_id = meta["_id"]
        if doc_id in self.reject_ids:
            return MockBulkResponses.create_item(
                op, 429, "es_rejected_execution_exception", "rejected execution"
            )
        if op == "create":
            if doc_id in self.documents:
                return MockBulkResponses.create_item(
                    op, 409, "version_conflict_engine_exception",
                    f"[{doc_id}]: version conflict, document already exists",
                )
            self.documents[doc_id] = dict(source)
            return MockBulkResponses.create_item(op, 201)
        if op == "update":
            existing = self.documents.get(doc_id)
            if existing is None:
                self.documents[doc_id] = dict(source["doc"])
                return MockBulkResponses.create_item(op, 201)
            existing.update(source["doc"])
            return MockBulkResponses.create_item(op, 200)
        raise AssertionError(f"unexpected bulk action {op}")


class OutputCollector:
    """Collects emitted report text."""

    def __init__(self):
        self.blocks: list[str] = []

    def __call__(self, text: str) -> None:
        self.blocks.append(text)

    @property
    def text(self) -> str:
        return "\n".join(self.blocks)

    def summaries(self) -> list[str]:
        return [block for block in self.blocks if "Total batches:" in block]
