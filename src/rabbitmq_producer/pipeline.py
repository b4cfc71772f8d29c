"""
Row Pipeline
Streams delimited rows from a byte source into RabbitMQ.
"""
import logging
import signal
from dataclasses import replace
from datetime import datetime
from typing import Any, BinaryIO, Dict, Iterator, Optional

from .config import ProducerConfig, RabbitMQConfig
from .producer import RabbitMQRowProducer
from .session import ProducerSession

logger = logging.getLogger(__name__)


class DryRunSession:
    """Prints assembled messages instead of publishing them."""

    PREVIEW_BYTES = 80

    def __init__(self, config: RabbitMQConfig):
        self.exchange_name = config.exchange_name
        self._published = 0

    def publish_batch(self, payload: bytes) -> None:
        self._published += 1
        preview = payload[:self.PREVIEW_BYTES].decode("utf-8", errors="replace")
        suffix = "..." if len(payload) > self.PREVIEW_BYTES else ""
        print(f"[DRY-RUN] {self.exchange_name} #{self._published} ({len(payload)} bytes): {preview!r}{suffix}")

    def close(self) -> bool:
        return True

    @property
    def stats(self) -> Dict[str, int]:
        return {"messages_published": self._published, "messages_dropped": 0, "exchange_errors": 0}


class RowPipeline:
    """
    Orchestrates the row publishing pipeline.

    Flow: byte source -> row splitter -> RabbitMQRowProducer -> exchange

    Every row keeps its trailing delimiter; the producer strips the last
    one of each message. Without a configured delimiter rows are split on
    newlines, and the producer buffer strips the same byte. A trailing
    partial batch is flushed explicitly at end of input.
    """

    READ_SIZE = 64 * 1024
    DEFAULT_DELIMITER = "\n"

    def __init__(
        self,
        config: ProducerConfig,
        source: BinaryIO,
        dry_run: bool = False
    ):
        """
        Initialize pipeline.

        Args:
            config: Producer configuration
            source: Binary stream of delimited rows
            dry_run: If True, print messages instead of publishing
        """
        delimiter = config.buffer.delimiter or self.DEFAULT_DELIMITER
        self.config = replace(config, buffer=replace(config.buffer, delimiter=delimiter))
        self.source = source
        self.dry_run = dry_run
        self.row_delimiter = delimiter.encode("utf-8")

        self.producer: Optional[RabbitMQRowProducer] = None

        # State
        self._running = False
        self._start_time: Optional[datetime] = None
        self._previous_handlers: Dict[int, Any] = {}

    def _initialize_components(self) -> None:
        """Initialize pipeline components."""
        if self.dry_run:
            session = DryRunSession(self.config.rabbitmq)
        else:
            session = ProducerSession(self.config.rabbitmq)

        self.producer = RabbitMQRowProducer(self.config, session=session)
        logger.info("Pipeline components initialized")

    def iter_rows(self) -> Iterator[bytes]:
        """Split the source into rows, each ending with the delimiter."""
        carry = b""
        while self._running:
            block = self.source.read(self.READ_SIZE)
            if not block:
                break

            parts = (carry + block).split(self.row_delimiter)
            carry = parts.pop()
            for part in parts:
                if not self._running:
                    return
                yield part + self.row_delimiter

        if carry and self._running:
            yield carry

    def run(self) -> bool:
        """
        Run the pipeline until the source is exhausted or a signal arrives.

        Returns:
            True if every published message was confirmed
        """
        self._initialize_components()
        self._running = True
        self._start_time = datetime.utcnow()

        self._setup_signal_handlers()
        logger.info("Starting row pipeline...")

        try:
            for row in self.iter_rows():
                self.producer.write_row(row)
        finally:
            self._restore_signal_handlers()
            confirmed = self._cleanup()

        return confirmed

    def stop(self) -> None:
        self._running = False

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown on SIGTERM/SIGINT."""
        def handle_signal(sig, frame):
            logger.info(f"Received signal {sig}, shutting down...")
            self.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[sig] = signal.signal(sig, handle_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def _cleanup(self) -> bool:
        """Flush the partial batch and close the producer."""
        logger.info("Cleaning up pipeline...")
        self._running = False

        confirmed = False
        if self.producer:
            self.producer.flush()
            confirmed = self.producer.close()

        self._print_stats()
        return confirmed

    def _print_stats(self) -> None:
        """Print pipeline statistics."""
        duration = datetime.utcnow() - self._start_time if self._start_time else None
        duration_str = str(duration).split(".")[0] if duration else "N/A"

        logger.info("=" * 50)
        logger.info("Pipeline Statistics")
        logger.info("=" * 50)
        logger.info(f"Duration: {duration_str}")

        if self.producer:
            stats = self.producer.stats
            logger.info(f"Rows written: {stats['rows_written']}")
            logger.info(f"Messages sent: {stats['messages_sent']}")
            logger.info(f"Messages dropped: {stats['messages_dropped']}")
            logger.info(f"Exchange errors: {stats['exchange_errors']}")
        logger.info("=" * 50)

    def get_metrics(self) -> Dict[str, Any]:
        """Get current pipeline metrics."""
        return {
            "running": self._running,
            "producer": self.producer.stats if self.producer else None,
            "uptime_seconds": (
                (datetime.utcnow() - self._start_time).total_seconds()
                if self._start_time else 0
            )
        }
