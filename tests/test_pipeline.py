"""End-to-end tests for the ingestion pipeline against an in-memory index."""

import pytest

from bulkload.config import IngestConfig
from bulkload.ingest.identifiers import compute_identifier, encode_id_value
from bulkload.ingest.pipeline import run_pipeline
from test_helpers import ChunkedReader, FakeIndex


@pytest.mark.asyncio
class TestCreateMode:
    """Test content-hash ingestion."""

    async def test_duplicate_documents_are_skipped(self, fake_index, output):
        config = IngestConfig(index="logs", batch_size=500, verbose=True)
        documents = [{"msg": "a"}, {"msg": "b"}, {"msg": "a"}]

        result = await run_pipeline(ChunkedReader.from_documents(documents), fake_index, config, output)

        assert len(fake_index.calls) == 1
        assert len(fake_index.documents) == 2
        assert result.skipped == 1
        assert result.summary["Skipped"] == 1
        assert result.summary.total == 1
        [summary_text] = output.summaries()
        assert "Skipped" in summary_text
        assert "Total batches: 1" in summary_text

    async def test_identical_pair_in_one_batch(self, fake_index, output):
        config = IngestConfig(index="logs", batch_size=2, verbose=True)

        result = await run_pipeline(ChunkedReader(b'[{"a": 1}, {"a": 1}]'), fake_index, config, output)

        [body] = fake_index.calls
        assert body[0] == body[2] == {"create": {"_id": compute_identifier({"a": 1})}}
        assert result.skipped == 1
        assert result.summary.as_dict() == {"Skipped": 1}
        assert not any("Batch 1:" in block for block in output.blocks)
        assert "Total batches: 1" in output.summaries()[0]

    async def test_reingest_with_excluded_timestamp_writes_nothing_new(self, fake_index, output):
        config = IngestConfig(index="logs", batch_size=10, exclude_keys=frozenset({"timestamp"}))
        first = [{"msg": f"m{i}", "timestamp": 1} for i in range(5)]
        again = [{"msg": f"m{i}", "timestamp": 2} for i in range(5)]

        await run_pipeline(ChunkedReader.from_documents(first), fake_index, config, output)
        result = await run_pipeline(ChunkedReader.from_documents(again), fake_index, config, output)

        assert len(fake_index.documents) == 5
        assert result.skipped == 5
        # skips are not errors and get no table row without verbose
        assert result.summary.total == 0
        assert "Skipped documents: 5" in output.summaries()[-1]

    async def test_batches_and_single_summary(self, fake_index, output):
        config = IngestConfig(index="logs", batch_size=500)
        documents = [{"n": i} for i in range(1300)]

        result = await run_pipeline(ChunkedReader.from_documents(documents, 4096), fake_index, config, output)

        assert [len(call) // 2 for call in fake_index.calls] == [500, 500, 300]
        assert result.model_dump(exclude={"summary"}) == {
            "batches": 3,
            "documents": 1300,
            "skipped": 0,
            "completed": True,
        }
        assert len(output.summaries()) == 1
        assert "Total batches: 3" in output.summaries()[0]

    async def test_empty_input_still_reports(self, fake_index, output):
        config = IngestConfig(index="logs")
        result = await run_pipeline(ChunkedReader(), fake_index, config, output)

        assert fake_index.calls == []
        assert result.completed
        assert result.batches == 0
        assert "Total batches: 0" in output.summaries()[0]

    async def test_retryable_rejections_are_summarized(self, output):
        rejected = compute_identifier({"n": 1})
        index = FakeIndex(reject_ids={rejected})
        config = IngestConfig(index="logs", batch_size=2)

        result = await run_pipeline(ChunkedReader.from_lines('{"n": 0}', '{"n": 1}', '{"n": 2}'), index, config, output)

        assert result.summary[429] == 1
        assert "(retryable)" in output.summaries()[0]
        assert len(index.documents) == 2


@pytest.mark.asyncio
class TestUpsertMode:
    """Test id-field upserts."""

    async def test_later_documents_merge_into_earlier(self, fake_index, output):
        config = IngestConfig(index="users", batch_size=1, upsert=True, id_field="id")
        reader = ChunkedReader.from_lines(
            '{"id": 7, "name": "ann", "age": 30}',
            '{"id": 7, "age": 31}',
        )

        result = await run_pipeline(reader, fake_index, config, output)

        assert fake_index.documents == {encode_id_value(7): {"id": 7, "name": "ann", "age": 31}}
        assert result.summary.total == 0

    async def test_missing_id_field_aborts_only_its_batch(self, fake_index, output):
        config = IngestConfig(index="users", batch_size=2, upsert=True, id_field="id")
        reader = ChunkedReader.from_lines('{"id": 1}', '{"name": "x"}', '{"id": 2}', '{"id": 3}')

        result = await run_pipeline(reader, fake_index, config, output)

        assert len(fake_index.calls) == 1
        assert set(fake_index.documents) == {encode_id_value(2), encode_id_value(3)}
        assert result.summary["MissingIdField"] == 1
        assert result.summary["Aborted"] == 1
        assert result.batches == 2
        assert result.completed


@pytest.mark.asyncio
class TestConcurrencyAndErrors:
    """Test the in-flight bound and stream-level failures."""

    async def test_in_flight_requests_are_bounded(self, output):
        index = FakeIndex(delay=0.01)
        config = IngestConfig(index="logs", batch_size=1, max_in_flight=2)
        documents = [{"n": i} for i in range(10)]

        result = await run_pipeline(ChunkedReader.from_documents(documents), index, config, output)

        assert index.max_in_flight <= 2
        assert len(index.calls) == 10
        assert result.batches == 10
        assert len(output.summaries()) == 1

    async def test_decode_errors_are_counted(self, fake_index, output):
        config = IngestConfig(index="logs")
        reader = ChunkedReader.from_lines('{"a": 1}', "{broken", '{"a": 2}')

        result = await run_pipeline(reader, fake_index, config, output)

        assert len(fake_index.documents) == 2
        assert result.summary["DecodeError"] == 1
        assert any(block.startswith("streaming error: line 2") for block in output.blocks)
        assert result.completed

    async def test_unexpected_dispatch_failure_propagates_after_drain(self, output):
        class BrokenIndex(FakeIndex):
            async def bulk(self, index, body):
                await super().bulk(index, body)
                return None

        index = BrokenIndex()
        config = IngestConfig(index="logs", batch_size=1)

        with pytest.raises(AttributeError):
            await run_pipeline(ChunkedReader.from_lines('{"a": 1}', '{"a": 2}'), index, config, output)
        assert len(index.calls) == 2
