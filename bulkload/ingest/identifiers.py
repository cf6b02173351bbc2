"""Deterministic write identifiers for documents.

Two identifier schemes back the two write modes:

Create Mode (content hash):
    SHA-1 over the canonical JSON form of the document with the configured
    top-level keys removed. Keys are sorted at every depth, so documents that
    differ only in key order hash identically. Re-ingesting the same content
    produces the same _id and the store answers 409 instead of indexing a
    duplicate. Excluded keys (timestamps, ingestion metadata) do not perturb
    the identity of a document.

Upsert Mode (designated field):
    Base64 of the UTF-8 string form of config.id_field. Strings are used
    as-is; any other JSON value uses its compact JSON text (true -> "true",
    12 -> "12"). The encoding is reversible with base64.b64decode.

Dependencies:
    - hashlib: SHA-1 digest
    - base64: Reversible id encoding
    - json: Canonical serialization
"""

import base64
import hashlib
import json
from collections.abc import Iterable
from typing import Any

from ..config import IngestConfig
from ..models.documents import WriteMode, WriteOperation


class MissingIdFieldError(ValueError):
    """Upsert mode document without a usable id field value.

    Attributes:
        field: Name of the designated id field
    """

    def __init__(self, field: str):
        super().__init__(f"Document has no value for id field '{field}'")
        self.field = field


def canonical_json(doc: dict[str, Any], exclude_keys: Iterable[str] = ()) -> str:
    """Serialize a document deterministically, dropping excluded top-level keys."""
    excluded = frozenset(exclude_keys)
    filtered = {key: value for key, value in doc.items() if key not in excluded}
    return json.dumps(
        filtered,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def compute_identifier(doc: dict[str, Any], exclude_keys: Iterable[str] = ()) -> str:
    """Content hash of a document, ignoring top-level keys in exclude_keys.

    Args:
        doc: Document to hash
        exclude_keys: Top-level key names left out of the hash

    Returns:
        str: 40-character hexadecimal SHA-1 digest

    Examples:
        >>> compute_identifier({"a": 1, "b": 2}) == compute_identifier({"b": 2, "a": 1})
        True
        >>> compute_identifier({"a": 1, "ts": 1}, ["ts"]) == compute_identifier({"a": 1, "ts": 2}, ["ts"])
        True
    """
    payload = canonical_json(doc, exclude_keys).encode("utf-8")
    return hashlib.sha1(payload).hexdigest()


def id_value_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode_id_value(value: Any) -> str:
    """Base64-encode the string form of an id field value."""
    return base64.b64encode(id_value_to_string(value).encode("utf-8")).decode("ascii")


def assign(doc: dict[str, Any], config: IngestConfig) -> WriteOperation:
    """Build the write operation for a document under the configured mode.

    Args:
        doc: Document to write
        config: Run configuration (mode, id field, exclusion keys)

    Returns:
        WriteOperation: create-only with a content hash, or update with
            doc_as_upsert keyed by the encoded id field

    Raises:
        MissingIdFieldError: In upsert mode when the id field is absent, null or
            an empty string
    """
    if config.write_mode is WriteMode.UPDATE:
        value = doc.get(config.id_field)
        if value is None or value == "":
            raise MissingIdFieldError(config.id_field)
        return WriteOperation(mode=WriteMode.UPDATE, doc_id=encode_id_value(value), document=doc)

    return WriteOperation(
        mode=WriteMode.CREATE,
        doc_id=compute_identifier(doc, config.exclude_keys),
        document=doc,
    )
