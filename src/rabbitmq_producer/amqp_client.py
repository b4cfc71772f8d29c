"""
AMQP Client
Thin adapters over pika's asynchronous SelectConnection. The ioloop is never
started; the producer pumps it from the calling thread instead.
"""
import logging
from typing import List, Optional

import pika
from pika.channel import Channel
from pika.exchange_type import ExchangeType

from .confirmation import Confirmation

logger = logging.getLogger(__name__)


def _noop() -> None:
    pass


class PikaLoop:
    """
    Manually pumped pika IOLoop.

    run_nowait() processes whatever is ready without blocking, run_once()
    waits for the next I/O event or timer and dispatches it.
    """

    def __init__(self, ioloop):
        self._ioloop = ioloop
        self._active = True
        # poll() needs an active poller; start() would normally do this
        self._ioloop.activate_poller()

    def run_nowait(self) -> None:
        if not self._active:
            return
        # A zero-delay timer caps the poll timeout at zero
        self._ioloop.call_later(0, _noop)
        self.run_once()

    def run_once(self) -> None:
        if not self._active:
            return
        self._ioloop.poll()
        self._ioloop.process_timeouts()

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._ioloop.deactivate_poller()
        self._ioloop.close()


class PikaChannel:
    """
    Channel capability over a pika Channel.

    Requests that complete asynchronously return a Confirmation. The broker
    reports failures by closing the channel, so every pending confirmation
    fails with the close reason. Once the channel is gone, new requests fail
    immediately and publishes are dropped.
    """

    DROP_LOG_INTERVAL = 1000

    def __init__(self, connection: Optional[pika.SelectConnection]):
        self.opened = Confirmation("channel.open")
        self._channel: Optional[Channel] = None
        self._pending: List[Confirmation] = []
        self._closed_reason: Optional[str] = None
        self._dropped = 0

        if connection is None or not connection.is_open:
            self._closed_reason = "connection is not open"
            self.opened.fail(self._closed_reason)
            return

        self._channel = connection.channel(on_open_callback=self._on_open)
        self._channel.add_on_close_callback(self._on_closed)

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.is_open

    @property
    def dropped(self) -> int:
        """Messages discarded because the channel was not open."""
        return self._dropped

    def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        """Fire-and-forget publish."""
        if not self.is_open:
            self._dropped += 1
            if self._dropped % self.DROP_LOG_INTERVAL == 1:
                logger.error(
                    f"Channel is not open ({self._closed_reason or 'opening'}), "
                    f"dropped {self._dropped} message(s)"
                )
            return
        self._channel.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=payload
        )

    def declare_exchange(
        self,
        name: str,
        exchange_type: str = "direct",
        passive: bool = False
    ) -> Confirmation:
        confirmation = self._track(Confirmation(f"exchange.declare {name}"))
        if confirmation.done:
            return confirmation

        self._channel.exchange_declare(
            exchange=name,
            exchange_type=ExchangeType(exchange_type),
            passive=passive,
            callback=lambda _frame: self._resolve(confirmation)
        )
        return confirmation

    def start_transaction(self) -> None:
        """Fire-and-forget tx.select."""
        if not self.is_open:
            logger.error(
                f"Cannot start transaction: {self._closed_reason or 'channel is not open'}"
            )
            return
        self._channel.tx_select()

    def commit_transaction(self) -> Confirmation:
        confirmation = self._track(Confirmation("tx.commit"))
        if confirmation.done:
            return confirmation

        self._channel.tx_commit(callback=lambda _frame: self._resolve(confirmation))
        return confirmation

    def _track(self, confirmation: Confirmation) -> Confirmation:
        if not self.is_open:
            confirmation.fail(self._closed_reason or "channel is not open")
        else:
            self._pending.append(confirmation)
        return confirmation

    def _resolve(self, confirmation: Confirmation) -> None:
        confirmation.succeed()
        if confirmation in self._pending:
            self._pending.remove(confirmation)

    def _on_open(self, _channel) -> None:
        logger.debug("Producer channel opened")
        self.opened.succeed()

    def _on_closed(self, _channel, reason: Exception) -> None:
        self._closed_reason = str(reason)
        logger.debug(f"Producer channel closed: {reason}")

        self.opened.fail(self._closed_reason)
        pending, self._pending = self._pending, []
        for confirmation in pending:
            confirmation.fail(self._closed_reason)


class AMQPConnection:
    """
    Dedicated broker connection owning its loop and a single channel.

    Each producer gets its own connection: publishing from several threads
    through one connection corrupts the protocol stream.
    """

    CLOSE_RETRIES = 100

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        vhost: str = "/"
    ):
        self.parameters = pika.ConnectionParameters(
            host=host,
            port=port,
            virtual_host=vhost,
            credentials=pika.PlainCredentials(user, password)
        )
        self._error: Optional[str] = None
        self._connection = pika.SelectConnection(
            parameters=self.parameters,
            on_open_callback=self._on_open,
            on_open_error_callback=self._on_open_error,
            on_close_callback=self._on_closed
        )
        self.loop = PikaLoop(self._connection.ioloop)

    @property
    def error(self) -> Optional[str]:
        return self._error

    def ready(self) -> bool:
        return self._connection.is_open

    def channel(self) -> PikaChannel:
        return PikaChannel(self._connection if self.ready() else None)

    def close(self) -> None:
        """Close the connection, pumping the loop until the broker answers."""
        if not self._connection.is_open:
            return

        self._connection.close()
        retries = 0
        while not self._connection.is_closed and retries < self.CLOSE_RETRIES:
            self.loop.run_once()
            retries += 1

    def _on_open(self, _connection) -> None:
        logger.info(f"Connected to RabbitMQ at {self.parameters.host}:{self.parameters.port}")

    def _on_open_error(self, _connection, error) -> None:
        self._error = str(error)
        logger.warning(f"RabbitMQ connection attempt failed: {error}")

    def _on_closed(self, _connection, reason) -> None:
        logger.info(f"RabbitMQ connection closed: {reason}")
