"""Incremental JSON document decoder for unbounded input streams.

Turns an async byte stream into a lazy, ordered sequence of documents. The
input format is detected from its first non-whitespace byte:

Supported Input Formats:
    - JSON array: [doc1, doc2, ...] decoded incrementally with ijson, so the
      array never has to fit in memory
    - Concatenated JSON values separated by whitespace, which covers
      newline-delimited JSON as well as pretty-printed objects written one
      after another (the output of jq '.[]')

Error Handling:
    Decode problems are reported through the on_error callback and never
    raised to the consumer:
    - Array input: a parse error ends the sequence (the stream cannot be
      resynchronised inside an array), documents decoded so far are kept
    - Concatenated input: the parser is fed one line at a time; after a
      parse error the rest of the offending line is dropped and a fresh
      parser resumes at the next non-blank line
    - Non-object values in either format are skipped

Backpressure:
    The decoder only reads when its consumer asks for the next document, so
    a suspended consumer suspends reading.

Dependencies:
    - ijson: Iterative parsing of arrays and of concatenated values
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any, BinaryIO, Callable, Optional

import ijson
import structlog

logger = structlog.get_logger()

READ_SIZE = 64 * 1024
WHITESPACE = b" \t\r\n"
UTF8_BOM = b"\xef\xbb\xbf"


class DocumentDecodeError(Exception):
    """A fragment of the input could not be decoded into a document.

    Attributes:
        position: 1-based index of the value (array) or line (concatenated input)
    """

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.position = position


ErrorCallback = Callable[[DocumentDecodeError], None]


class AsyncFileReader:
    """Async read() over a blocking binary file such as stdin.

    Reads are offloaded to the event loop's default executor so the loop
    keeps serving in-flight bulk requests while waiting for input.
    """

    def __init__(self, fileobj: BinaryIO, chunk_size: int = READ_SIZE):
        self._file = fileobj
        self._read = getattr(fileobj, "read1", fileobj.read)
        self._chunk_size = chunk_size

    async def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = self._chunk_size
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, size)


class _ReplayReader:
    """Serves already-consumed head bytes before reading from the source."""

    def __init__(self, head: bytes, source):
        self._head = head
        self._source = source

    async def read(self, size: int = -1) -> bytes:
        if self._head:
            if size is None or size < 0 or size >= len(self._head):
                data, self._head = self._head, b""
            else:
                data, self._head = self._head[:size], self._head[size:]
            return data
        return await self._source.read(size if size and size > 0 else READ_SIZE)


async def _read_head(reader) -> bytes:
    """Read until the first non-whitespace byte or end of input."""
    head = b""
    while True:
        chunk = await reader.read(READ_SIZE)
        if not chunk:
            return head
        head += chunk
        if head.startswith(UTF8_BOM):
            head = head[len(UTF8_BOM):]
        if head.lstrip(WHITESPACE):
            return head


def _report(on_error: Optional[ErrorCallback], error: DocumentDecodeError) -> None:
    logger.warning("Failed to decode input", error=str(error), position=error.position)
    if on_error is not None:
        on_error(error)


async def _decode_array(reader, on_error: Optional[ErrorCallback]) -> AsyncIterator[dict[str, Any]]:
    position = 0
    try:
        async for value in ijson.items_async(reader, "item", use_float=True):
            position += 1
            if isinstance(value, dict):
                yield value
            else:
                _report(on_error, DocumentDecodeError(
                    f"expected a JSON object, got {type(value).__name__}", position
                ))
    except ijson.JSONError as e:
        _report(on_error, DocumentDecodeError(f"{e} (after {position} values)", position + 1))


class _LineFeeder:
    """Serves the source one line per read() so a parse error maps to a line.

    ijson consumes whatever read() returns; handing it single lines means a
    failed parser has seen nothing past the offending line, and a fresh
    parser can resume right after it.
    """

    def __init__(self, source):
        self._source = source
        self._buffer = b""
        self._eof = False
        self.line_number = 0

    async def _fill(self) -> None:
        chunk = await self._source.read(READ_SIZE)
        if chunk:
            self._buffer += chunk
        else:
            self._eof = True

    async def read(self, size: int = -1) -> bytes:
        while b"\n" not in self._buffer and not self._eof:
            await self._fill()
        line, newline, self._buffer = self._buffer.partition(b"\n")
        data = line + newline
        if data:
            self.line_number += 1
        return data

    async def skip_blank(self) -> bool:
        """Drop whitespace up to the next value; False once input is exhausted."""
        while True:
            stripped = self._buffer.lstrip(WHITESPACE)
            self.line_number += self._buffer.count(b"\n", 0, len(self._buffer) - len(stripped))
            self._buffer = stripped
            if self._buffer:
                return True
            if self._eof:
                return False
            await self._fill()


async def _decode_values(reader, on_error: Optional[ErrorCallback]) -> AsyncIterator[dict[str, Any]]:
    feeder = _LineFeeder(reader)
    while await feeder.skip_blank():
        try:
            async for value in ijson.items_async(feeder, "", multiple_values=True, use_float=True):
                if isinstance(value, dict):
                    yield value
                else:
                    _report(on_error, DocumentDecodeError(
                        f"line {feeder.line_number}: expected a JSON object, got {type(value).__name__}",
                        feeder.line_number,
                    ))
        except (ijson.JSONError, UnicodeDecodeError) as e:
            # resume with a fresh parser on the line after the failure
            _report(on_error, DocumentDecodeError(f"line {feeder.line_number}: {e}", feeder.line_number))


async def decode_documents(
    reader, on_error: Optional[ErrorCallback] = None
) -> AsyncIterator[dict[str, Any]]:
    """Yield documents from an async byte reader in input order.

    Args:
        reader: Object with an async read(size) method returning bytes;
            b"" signals end of input
        on_error: Called with a DocumentDecodeError for every malformed
            fragment; decoding continues where the format allows it

    Yields:
        dict: One document per JSON object in the input
    """
    head = await _read_head(reader)
    stripped = head.lstrip(WHITESPACE)
    if not stripped:
        return

    stream = _ReplayReader(stripped, reader)
    if stripped.startswith(b"["):
        decoded = _decode_array(stream, on_error)
    else:
        decoded = _decode_values(stream, on_error)

    async for document in decoded:
        yield document
