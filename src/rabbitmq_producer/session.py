"""
Producer Session
Publishes row batches to a RabbitMQ exchange over one dedicated connection.
"""
import logging
import time
from typing import Dict, Optional

from .amqp_client import AMQPConnection
from .config import RabbitMQConfig
from .confirmation import Confirmation

logger = logging.getLogger(__name__)


class ProducerSession:
    """
    Blocking facade over an asynchronous AMQP connection.

    There is no background thread: the event loop only advances when this
    session pumps it. Waits are poll loops over a Confirmation:

    - connection setup and transaction commit are bounded by
      loop_retries_max attempts
    - the exchange check runs until the broker answers, and doubles as the
      checkpoint that flushes queued publishes to the network
    """

    def __init__(
        self,
        config: RabbitMQConfig,
        connection: Optional[AMQPConnection] = None
    ):
        """
        Initialize session.

        Args:
            config: Broker, routing and loop settings
            connection: Pre-built connection (a new AMQPConnection if omitted)
        """
        if config.num_queues < 1:
            raise ValueError(f"num_queues must be positive, got {config.num_queues}")
        if config.batch < 1:
            raise ValueError(f"batch must be positive, got {config.batch}")

        self.config = config
        self.exchange_name = config.exchange_name
        self.routing_key = config.routing_key
        self.num_queues = config.num_queues
        self.bind_by_id = config.bind_by_id
        self.use_transactional_channel = config.transactional

        self.next_queue = 0
        self.message_counter = 0
        self._published = 0
        self._exchange_errors = 0
        self._closed = False
        self._finalized = False

        if connection is None:
            connection = AMQPConnection(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                vhost=config.vhost
            )
        self.connection = connection
        self.loop = connection.loop

        self._setup_connection()

        self.channel = connection.channel()
        if not self._wait(
            self.channel.opened,
            self.config.loop_retries_max,
            self.config.connection_setup_sleep_ms
        ):
            logger.error(f"Producer channel was not opened: {self.channel.opened.error}")

        self.check_exchange()

        # Wrap publishing in transactions
        if self.use_transactional_channel:
            self.channel.start_transaction()

    @property
    def connected(self) -> bool:
        return self.connection.ready()

    def _setup_connection(self) -> None:
        """Poll the loop until the connection is ready, fails or retries run out."""
        sleep_s = self.config.connection_setup_sleep_ms / 1000
        retries = 0
        while not self.connection.ready() and retries < self.config.loop_retries_max:
            self.loop.run_nowait()
            # A failed attempt is final, the connection does not retry
            if self.connection.error is not None:
                break
            time.sleep(sleep_s)
            retries += 1

        if not self.connection.ready():
            if self.connection.error is not None:
                logger.error(
                    f"Cannot set up connection for producer! Reason: {self.connection.error}"
                )
            else:
                logger.error("Cannot set up connection for producer!")
        else:
            logger.info(f"Producer connected to {self.config.address}, exchange: {self.exchange_name}")

    def publish_batch(self, payload: bytes) -> None:
        """
        Publish one assembled message.

        The publish is only queued in the channel; it reaches the network
        when the loop is pumped, which happens every `batch` messages.
        A channel that is not open drops the message and counts it in
        stats["messages_dropped"].

        Args:
            payload: Message body
        """
        self.next_queue = self.next_queue % self.num_queues + 1

        if self.bind_by_id:
            routing_key = str(self.next_queue)
        else:
            routing_key = self.routing_key

        self.channel.publish(self.exchange_name, routing_key, payload)
        self._published += 1

        self.message_counter = (self.message_counter + 1) % self.config.batch
        if self.message_counter == 0:
            self.check_exchange()

    def check_exchange(self) -> bool:
        """
        Passively declare the exchange and pump the loop until answered.

        Returns:
            True if the exchange exists
        """
        confirmation = self.channel.declare_exchange(
            self.exchange_name, "direct", passive=True
        )

        while not confirmation.done:
            self.loop.run_once()

        if confirmation.failed:
            self._exchange_errors += 1
            logger.error(
                f"Exchange for INSERT query was not declared. Reason: {confirmation.error}"
            )
            return False
        return True

    def finalize(self) -> bool:
        """
        Flush pending publishes and commit the transaction, if any.

        Returns:
            True if everything published was confirmed
        """
        exchange_ok = self.check_exchange()

        if not self.use_transactional_channel:
            return exchange_ok

        confirmation = self.channel.commit_transaction()
        self._wait(confirmation, self.config.loop_retries_max, self.config.loop_wait_ms)

        if confirmation.succeeded:
            logger.debug("All messages were successfully published")
            return exchange_ok
        if confirmation.failed:
            logger.warning(f"None of messages were published: {confirmation.error}")
        else:
            logger.warning(
                f"Transaction commit was not acknowledged after "
                f"{self.config.loop_retries_max} retries"
            )
        return False

    def close(self) -> bool:
        """Finalize, close the connection and stop the loop."""
        if self._closed:
            return self._finalized
        self._closed = True

        finalized = self._finalized = self.finalize()
        self.connection.close()
        self.loop.stop()

        logger.info(
            f"Producer closed. Published: {self._published}, "
            f"Dropped: {self.channel.dropped}, "
            f"Exchange errors: {self._exchange_errors}"
        )
        return finalized

    def _wait(self, confirmation: Confirmation, max_retries: int, sleep_ms: int) -> bool:
        """Pump the loop until resolved or max_retries pumps, sleeping between."""
        sleep_s = sleep_ms / 1000
        retries = 0
        while not confirmation.done and retries < max_retries:
            self.loop.run_once()
            time.sleep(sleep_s)
            retries += 1
        return confirmation.succeeded

    @property
    def stats(self) -> Dict[str, int]:
        """Get session statistics."""
        return {
            "messages_published": self._published,
            "messages_dropped": self.channel.dropped,
            "exchange_errors": self._exchange_errors,
        }
