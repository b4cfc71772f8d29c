"""
Chunked Row Buffer
Accumulates serialized row bytes and cuts them into messages of max_rows rows.
"""
import logging
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


def _delimiter_byte(delimiter: Union[str, bytes, int, None]) -> Optional[int]:
    if delimiter is None:
        return None
    if isinstance(delimiter, int):
        if not 0 <= delimiter <= 255:
            raise ValueError(f"Delimiter must be a single byte, got {delimiter}")
        return delimiter
    if isinstance(delimiter, str):
        delimiter = delimiter.encode("utf-8")
    if len(delimiter) != 1:
        raise ValueError(f"Delimiter must be a single byte, got {delimiter!r}")
    return delimiter[0]


class ChunkedRowBuffer:
    """
    Append-only byte sink that batches rows into messages.

    Bytes are written into fixed-size chunks allocated on demand. After
    every row the caller signals a row boundary with count_row(); once
    max_rows rows are buffered the chunks are joined into one payload and
    handed to on_message, and the buffer is cleared.

    The chunk size only controls allocation granularity, it never changes
    the assembled payload.
    """

    def __init__(
        self,
        on_message: Callable[[bytes], None],
        max_rows: int = 1,
        chunk_size: int = 4096,
        delimiter: Union[str, bytes, int, None] = None
    ):
        """
        Initialize buffer.

        Args:
            on_message: Called with every assembled message payload
            max_rows: Rows per message
            chunk_size: Allocation size of a single chunk in bytes
            delimiter: Row delimiter, one trailing delimiter is stripped
                from every message
        """
        if max_rows < 1:
            raise ValueError(f"max_rows must be positive, got {max_rows}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.on_message = on_message
        self.max_rows = max_rows
        self.chunk_size = chunk_size
        self.delimiter = _delimiter_byte(delimiter)

        self.rows = 0
        self.chunks: List[bytearray] = []
        self._offset = 0

    @property
    def offset(self) -> int:
        """Write position inside the last chunk."""
        return self._offset

    @property
    def buffered_bytes(self) -> int:
        if not self.chunks:
            return 0
        return (len(self.chunks) - 1) * self.chunk_size + self._offset

    def is_empty(self) -> bool:
        return self.rows == 0 and not self.chunks

    def write(self, data: bytes) -> None:
        """Append raw bytes, spilling into new chunks as they fill up."""
        view = memoryview(data)
        pos = 0
        while pos < len(view):
            if not self.chunks or self._offset == self.chunk_size:
                self._next_chunk()

            count = min(self.chunk_size - self._offset, len(view) - pos)
            chunk = self.chunks[-1]
            chunk[self._offset:self._offset + count] = view[pos:pos + count]
            self._offset += count
            pos += count

    def count_row(self) -> None:
        """Mark a row boundary, emitting a message every max_rows rows."""
        self.rows += 1
        if self.rows % self.max_rows == 0:
            self._emit()

    def flush(self) -> bool:
        """
        Emit a pending partial batch.

        Returns:
            True if a message was emitted
        """
        if self.is_empty():
            return False

        logger.debug(f"Flushing partial batch of {self.rows} rows")
        self._emit()
        return True

    def _next_chunk(self) -> None:
        self.chunks.append(bytearray(self.chunk_size))
        self._offset = 0

    def _emit(self) -> None:
        payload = self._assemble()

        self.rows = 0
        self.chunks = []
        self._offset = 0

        self.on_message(payload)

    def _assemble(self) -> bytes:
        if not self.chunks:
            return b""

        last_chunk = self.chunks[-1]
        last_chunk_size = self._offset

        if (
            self.delimiter is not None
            and last_chunk_size > 0
            and last_chunk[last_chunk_size - 1] == self.delimiter
        ):
            last_chunk_size -= 1

        payload = bytearray()
        for chunk in self.chunks[:-1]:
            payload += chunk
        payload += last_chunk[:last_chunk_size]
        return bytes(payload)
