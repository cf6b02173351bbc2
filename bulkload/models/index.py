"""Search engine client factory and index bootstrap.

Index creation runs once before ingestion starts. Its outcome decides whether
the run may continue:

    - created                         -> continue
    - 400 resource_already_exists     -> continue (the usual case on re-runs)
    - 401 unauthorized                -> IndexUnauthorizedError, process stops
    - any other transport error       -> logged as a warning, continue

Client Settings:
    The client mirrors the transport settings the loader has always used:
    60 s request timeout, 10 retries, no sniffing, gzip compression and no
    TLS certificate verification unless configured otherwise.

Dependencies:
    - opensearchpy: Async OpenSearch client (AsyncOpenSearch) and exceptions
    - structlog: Bootstrap logging
"""

from enum import Enum
from typing import Any, Optional

import structlog
from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import AuthenticationException, TransportError

from ..config import IngestConfig

logger = structlog.get_logger()

ALREADY_EXISTS_ERRORS = ("resource_already_exists_exception", "index_already_exists_exception")


class IndexStatus(str, Enum):
    CREATED = "created"
    EXISTS = "exists"
    FAILED = "failed"


class IndexUnauthorizedError(Exception):
    """The search engine rejected index creation with 401."""


def get_client(config: IngestConfig) -> AsyncOpenSearch:
    """Create an async OpenSearch client for the configured URI.

    Args:
        config: Run configuration (URI, timeout, retries, TLS verification)

    Returns:
        AsyncOpenSearch: Client ready for indices.create and bulk calls;
            the caller owns it and must close it
    """
    return AsyncOpenSearch(
        hosts=[config.elastic_uri],
        timeout=config.request_timeout,
        max_retries=config.max_retries,
        retry_on_timeout=True,
        sniff_on_start=False,
        http_compress=True,
        verify_certs=config.verify_certs,
        ssl_show_warn=False,
    )


def _is_already_exists(error: TransportError) -> bool:
    if error.status_code != 400:
        return False
    text = f"{error.error} {error.info}".lower()
    return any(marker in text for marker in ALREADY_EXISTS_ERRORS) or "already exists" in text


async def create_index(
    client: AsyncOpenSearch, index: str, mappings: Optional[dict[str, Any]] = None
) -> IndexStatus:
    """Create the target index, tolerating an existing one.

    Args:
        client: Async search engine client
        index: Index name
        mappings: Index creation body (settings/mappings), may be empty

    Returns:
        IndexStatus: CREATED, EXISTS, or FAILED (non-fatal failure)

    Raises:
        IndexUnauthorizedError: When the engine answers 401
    """
    try:
        await client.indices.create(index=index, body=dict(mappings or {}))
    except AuthenticationException as e:
        logger.error("Unauthorized to create index", index=index, status=e.status_code)
        raise IndexUnauthorizedError(f"Unauthorized to create index {index}") from e
    except TransportError as e:
        if e.status_code == 401:
            logger.error("Unauthorized to create index", index=index, status=e.status_code)
            raise IndexUnauthorizedError(f"Unauthorized to create index {index}") from e
        if _is_already_exists(e):
            logger.info("Index already exists", index=index)
            return IndexStatus.EXISTS
        logger.warning(
            "Error trying to create index, continuing",
            index=index,
            status=e.status_code,
            error=str(e.error),
        )
        return IndexStatus.FAILED

    logger.info("Created index", index=index)
    return IndexStatus.CREATED
