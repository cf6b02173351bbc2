"""Command-line entry point for bulkload.

Usage:
    cat docs.json | bulkload --index my-index --batch-size 500 -e timestamp
    cat docs.ndjson | bulkload -i my-index --upsert --id-field id
    bulkload -i my-index -m mappings.json --no-data

Execution Flow:
    1. Load .env and parse arguments (environment supplies defaults)
    2. Validate configuration and read the mappings file (no network I/O yet)
    3. Create the index (401 stops the run)
    4. Unless --no-data, stream stdin through the ingestion pipeline
    5. Close the client

Exit Codes:
    0    success
    1    configuration error (no index, upsert without id field, bad values)
    2    mappings file unreadable/invalid, or a top-level processing error
    401  index creation unauthorized (reported by the OS modulo 256)

Report text goes to stdout; logs go to stderr.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from .config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_ELASTIC_URI,
    DEFAULT_MAX_IN_FLIGHT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    ConfigurationError,
    IngestConfig,
    load_mappings,
)
from .ingest.decoder import AsyncFileReader
from .ingest.pipeline import run_pipeline
from .models.index import IndexUnauthorizedError, create_index, get_client

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PROCESSING = 2
EXIT_UNAUTHORIZED = 401

ENV_PREFIX = "BULKLOAD_"


def _env(name: str, default=None):
    return os.getenv(ENV_PREFIX + name, default)


def _env_flag(name: str) -> bool:
    return str(_env(name, "false")).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    raw = _env(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog to render to stderr, DEBUG when verbose."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkload",
        description="Stream JSON documents from stdin into an OpenSearch index via the bulk API",
    )
    parser.add_argument("-u", "--elastic-uri", "--elasticUri", dest="elastic_uri",
                        default=_env("ELASTIC_URI", DEFAULT_ELASTIC_URI),
                        help="Search engine URI")
    parser.add_argument("-i", "--index", dest="index", default=_env("INDEX"),
                        help="Target index")
    parser.add_argument("-b", "--batch-size", "--batchSize", dest="batch_size", type=int,
                        default=int(_env("BATCH_SIZE", DEFAULT_BATCH_SIZE)),
                        help="Documents per bulk request")
    parser.add_argument("-m", "--mappings-file", "--mappingsFile", dest="mappings_file",
                        default=_env("MAPPINGS_FILE"),
                        help="JSON file with index settings and mappings")
    parser.add_argument("-e", "--exclude-keys", "--excludeKeys", dest="exclude_keys",
                        nargs="*", action="extend", default=None,
                        help="Top-level keys ignored when hashing documents")
    parser.add_argument("-n", "--no-data", "--noData", dest="no_data", action="store_true",
                        default=_env_flag("NO_DATA"),
                        help="Create the index and exit without reading input")
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true",
                        default=_env_flag("VERBOSE"),
                        help="Debug logging and skipped-duplicate totals")
    parser.add_argument("--upsert", dest="upsert", action="store_true",
                        default=_env_flag("UPSERT"),
                        help="Update-with-upsert keyed by --id-field instead of create")
    parser.add_argument("--id-field", "--idField", dest="id_field", default=_env("ID_FIELD"),
                        help="Field identifying documents in upsert mode")
    parser.add_argument("-c", "--max-in-flight", dest="max_in_flight", type=int,
                        default=int(_env("MAX_IN_FLIGHT", DEFAULT_MAX_IN_FLIGHT)),
                        help="Maximum concurrent bulk requests")
    parser.add_argument("--request-timeout", dest="request_timeout", type=float,
                        default=float(_env("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
                        help="Request timeout in seconds")
    parser.add_argument("--max-retries", dest="max_retries", type=int,
                        default=int(_env("MAX_RETRIES", DEFAULT_MAX_RETRIES)),
                        help="Transport retries performed by the client")
    return parser


def parse_config(argv: Optional[list[str]] = None) -> IngestConfig:
    """Parse arguments into a validated IngestConfig.

    Raises:
        ConfigurationError: exit code 1 for a missing index or invalid values
    """
    try:
        args = build_parser().parse_args(argv)
    except ValueError as e:
        # int()/float() on a malformed environment default
        raise ConfigurationError(f"Invalid environment value: {e}") from e

    if not args.index or not args.index.strip():
        raise ConfigurationError("ERROR: no index specified.")

    exclude_keys = args.exclude_keys if args.exclude_keys is not None else _env_list("EXCLUDE_KEYS")

    try:
        return IngestConfig(
            elastic_uri=args.elastic_uri,
            index=args.index,
            batch_size=args.batch_size,
            mappings_file=args.mappings_file,
            exclude_keys=frozenset(exclude_keys),
            no_data=args.no_data,
            verbose=args.verbose,
            upsert=args.upsert,
            id_field=args.id_field,
            max_in_flight=args.max_in_flight,
            request_timeout=args.request_timeout,
            max_retries=args.max_retries,
        )
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ConfigurationError(f"ERROR: invalid configuration: {messages}") from e


async def run(config: IngestConfig, mappings: dict, client=None, stdin=None) -> int:
    """Bootstrap the index and ingest stdin; returns the process exit code."""
    client = client if client is not None else get_client(config)
    try:
        await create_index(client, config.index, mappings)
        if config.no_data:
            logger.info("No data mode, exiting after index bootstrap", index=config.index)
            return EXIT_OK

        source = stdin if stdin is not None else sys.stdin.buffer
        await run_pipeline(AsyncFileReader(source), client, config)
        return EXIT_OK
    except IndexUnauthorizedError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_UNAUTHORIZED
    except Exception as e:
        logger.error("Error during document processing", error=str(e), exc_info=True)
        return EXIT_PROCESSING
    finally:
        await client.close()


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()

    try:
        config = parse_config(argv)
        mappings = load_mappings(config.mappings_file)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return e.exit_code

    configure_logging(config.verbose)
    return asyncio.run(run(config, mappings))


if __name__ == "__main__":
    sys.exit(main())
