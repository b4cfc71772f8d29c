"""
RabbitMQ Row Producer
Byte sink for row-oriented writers, publishing every max_rows rows as one message.
"""
import logging
from typing import Dict, Optional

from .config import ProducerConfig
from .row_buffer import ChunkedRowBuffer
from .session import ProducerSession

logger = logging.getLogger(__name__)


class RabbitMQRowProducer:
    """
    Write serialized rows, get batched RabbitMQ messages.

    The writer calls write() with row bytes and count_row() after each row.
    Callers must leave the buffer on a max_rows boundary (or call flush())
    before close(); a pending partial batch at teardown is a bug in the
    caller and fails the teardown assertion.

    Example:
        with RabbitMQRowProducer(config) as producer:
            for row in rows:
                producer.write_row(row)
            producer.flush()
    """

    def __init__(
        self,
        config: ProducerConfig,
        session: Optional[ProducerSession] = None
    ):
        """
        Initialize producer.

        Args:
            config: Producer configuration
            session: Pre-built session (connects a new one if omitted)
        """
        self.config = config
        self.buffer = ChunkedRowBuffer(
            on_message=self._on_message,
            max_rows=config.buffer.max_rows,
            chunk_size=config.buffer.chunk_size,
            delimiter=config.buffer.delimiter
        )
        self.session = session or ProducerSession(config.rabbitmq)

        self._row_count = 0
        self._message_count = 0
        self._closed = False
        self._finalized = False

    def write(self, data: bytes) -> None:
        self.buffer.write(data)

    def count_row(self) -> None:
        self._row_count += 1
        self.buffer.count_row()

    def write_row(self, row: bytes) -> None:
        """Write one complete row and mark its boundary."""
        self.write(row)
        self.count_row()

    def flush(self) -> bool:
        """Publish a pending partial batch, if any."""
        return self.buffer.flush()

    def _on_message(self, payload: bytes) -> None:
        self._message_count += 1
        self.session.publish_batch(payload)

    def close(self) -> bool:
        """
        Finalize the session and check that no rows were left behind.

        Returns:
            True if the session confirmed everything published
        """
        if self._closed:
            return self._finalized
        self._closed = True

        finalized = self._finalized = self.session.close()

        if not self.buffer.is_empty():
            logger.error(
                f"Producer closed with {self.buffer.rows} unpublished row(s) "
                f"({self.buffer.buffered_bytes} bytes); rows written must be a "
                f"multiple of {self.buffer.max_rows} or flushed before close"
            )
        assert self.buffer.is_empty(), "row buffer is not empty at teardown"

        return finalized

    def __enter__(self) -> "RabbitMQRowProducer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return

        # Don't mask the writer's error with the teardown assertion
        self._closed = True
        self._finalized = self.session.close()
        if not self.buffer.is_empty():
            logger.warning(f"Discarding {self.buffer.rows} unpublished row(s) after error")

    @property
    def stats(self) -> Dict[str, int]:
        """Get producer statistics."""
        return {
            "rows_written": self._row_count,
            "messages_sent": self._message_count,
            "rows_pending": self.buffer.rows,
            **self.session.stats,
        }
