"""Run configuration for bulkload with validation and environment defaults.

Configuration is resolved in three layers, lowest precedence first:
    1. Built-in defaults (matching the historic command-line tool)
    2. Environment variables prefixed with BULKLOAD_ (a .env file is loaded
       by the CLI through python-dotenv)
    3. Command-line arguments

The resulting IngestConfig is frozen; every pipeline stage receives the same
instance.

Dependencies:
    - pydantic: Field constraints and cross-field validation
    - json: Mappings file parsing

Used by:
    - bulkload.cli: Argument parsing and start-up validation
    - bulkload.ingest.*: Batch size, write mode, exclusion keys, concurrency
    - bulkload.models.index: Client construction and index bootstrap
"""

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models.documents import WriteMode

DEFAULT_ELASTIC_URI = "http://localhost:9200/"
DEFAULT_BATCH_SIZE = 500
DEFAULT_MAX_IN_FLIGHT = 4
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 10


class ConfigurationError(Exception):
    """Invalid or unusable configuration, detected before any network I/O.

    Attributes:
        exit_code: Process exit code the CLI should terminate with
    """

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class IngestConfig(BaseModel):
    """Validated settings for one ingestion run.

    Attributes:
        elastic_uri: Search engine URL
        index: Target index name (required)
        batch_size: Documents per bulk request
        mappings_file: Optional JSON file with index settings/mappings
        exclude_keys: Top-level keys ignored when hashing documents
        no_data: Create the index and exit without reading input
        verbose: Debug logging and "Skipped" tally in the final summary
        upsert: Use update-with-upsert keyed by id_field instead of create
        id_field: Document field whose value identifies it in upsert mode
        max_in_flight: Upper bound on concurrent bulk requests
        request_timeout: Client request timeout in seconds
        max_retries: Client-level transport retries
        verify_certs: Verify TLS certificates of the search engine
    """

    model_config = ConfigDict(frozen=True)

    elastic_uri: str = DEFAULT_ELASTIC_URI
    index: str = Field(..., min_length=1)
    batch_size: int = Field(DEFAULT_BATCH_SIZE, ge=1)
    mappings_file: Optional[str] = None
    exclude_keys: frozenset[str] = frozenset()
    no_data: bool = False
    verbose: bool = False
    upsert: bool = False
    id_field: Optional[str] = None
    max_in_flight: int = Field(DEFAULT_MAX_IN_FLIGHT, ge=1)
    request_timeout: float = Field(DEFAULT_REQUEST_TIMEOUT, gt=0)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=0)
    verify_certs: bool = False

    @field_validator("index")
    @classmethod
    def validate_index(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Index name cannot be empty")
        return v

    @field_validator("id_field")
    @classmethod
    def validate_id_field(cls, v):
        if v is not None:
            v = v.strip() or None
        return v

    @model_validator(mode="after")
    def validate_upsert(self):
        """Upsert mode cannot run without a designated id field."""
        if self.upsert and not self.id_field:
            raise ValueError("Upsert mode requires an id field (--id-field)")
        return self

    @property
    def write_mode(self) -> WriteMode:
        return WriteMode.UPDATE if self.upsert else WriteMode.CREATE


def load_mappings(mappings_file: Optional[str]) -> dict[str, Any]:
    """Read the index creation body from a JSON file.

    Args:
        mappings_file: Path to the file, or None for an empty body

    Returns:
        dict: Parsed JSON object (settings and/or mappings)

    Raises:
        ConfigurationError: exit code 2 when the file cannot be read, is not
            valid JSON, or does not contain a JSON object
    """
    if not mappings_file:
        return {}

    try:
        with open(Path(mappings_file), encoding="utf-8") as f:
            mappings = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Error trying to read mappings file: {e}", exit_code=2) from e

    if not isinstance(mappings, dict):
        raise ConfigurationError(
            f"Mappings file {mappings_file} must contain a JSON object", exit_code=2
        )
    return mappings
