"""Global test configuration and fixtures."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bulkload.config import IngestConfig
from bulkload.tracking import CompletionTracker, ErrorSummary
from test_helpers import FakeIndex, MockBulkResponses, OutputCollector


@pytest.fixture
def create_config():
    """Create-mode configuration with a small batch size."""
    return IngestConfig(index="test-index", batch_size=2)


@pytest.fixture
def upsert_config():
    """Upsert-mode configuration keyed by the 'id' field."""
    return IngestConfig(index="test-index", batch_size=2, upsert=True, id_field="id")


@pytest.fixture
def summary():
    return ErrorSummary()


@pytest.fixture
def tracker():
    return CompletionTracker()


@pytest.fixture
def output():
    """Collector standing in for stdout."""
    return OutputCollector()


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def mock_opensearch_client():
    """Mock AsyncOpenSearch client for testing."""
    mock_client = MagicMock()

    async def all_created(index, body):
        return MockBulkResponses.all_created(len(body) // 2)

    mock_client.bulk = AsyncMock(side_effect=all_created)
    mock_client.indices = MagicMock()
    mock_client.indices.create = AsyncMock(return_value={"acknowledged": True})
    mock_client.close = AsyncMock()
    return mock_client


@pytest.fixture
def mock_env_vars():
    """Mock environment variables for testing."""
    env_vars = {
        "BULKLOAD_ELASTIC_URI": "http://search:9200/",
        "BULKLOAD_INDEX": "env-index",
        "BULKLOAD_BATCH_SIZE": "250",
        "BULKLOAD_EXCLUDE_KEYS": "timestamp, ingested_at",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def clean_env():
    """Remove any BULKLOAD_* variables from the environment."""
    cleaned = {key: value for key, value in os.environ.items() if not key.startswith("BULKLOAD_")}
    with patch.dict(os.environ, cleaned, clear=True):
        yield
