"""
Pytest Configuration and Shared Fixtures
"""
from typing import Callable, List, Optional, Tuple

import pytest

from src.rabbitmq_producer.confirmation import Confirmation


# =============================================================================
# Broker Doubles
# =============================================================================

class FakeLoop:
    """Event loop double: callbacks scheduled by the channel run on pump."""

    def __init__(self):
        self.scheduled: List[Callable[[], None]] = []
        self.nowait_pumps = 0
        self.once_pumps = 0
        self.stopped = False

    @property
    def pumps(self) -> int:
        return self.nowait_pumps + self.once_pumps

    def schedule(self, callback: Callable[[], None]) -> None:
        self.scheduled.append(callback)

    def _dispatch(self) -> None:
        ready, self.scheduled = self.scheduled, []
        for callback in ready:
            callback()

    def run_nowait(self) -> None:
        self.nowait_pumps += 1
        self._dispatch()

    def run_once(self) -> None:
        self.once_pumps += 1
        self._dispatch()

    def stop(self) -> None:
        self.stopped = True


class FakeChannel:
    """
    Channel double answering requests on the next loop pump.

    commit_outcome: "ok", "error" or None for a broker that never answers.
    """

    def __init__(
        self,
        loop: FakeLoop,
        is_open: bool = True,
        exchange_exists: bool = True,
        commit_outcome: Optional[str] = "ok"
    ):
        self.loop = loop
        self.is_open = is_open
        self.exchange_exists = exchange_exists
        self.commit_outcome = commit_outcome

        self.published: List[Tuple[str, str, bytes]] = []
        self.declared: List[Tuple[str, str, bool]] = []
        self.dropped = 0
        self.transactions_started = 0
        self.commits = 0
        self.events: List[str] = []

        self.opened = Confirmation("channel.open")
        if is_open:
            loop.schedule(self.opened.succeed)
        else:
            self.opened.fail("connection is not open")

    def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        if not self.is_open:
            self.dropped += 1
            return
        self.published.append((exchange, routing_key, payload))
        self.events.append("publish")

    def declare_exchange(self, name: str, exchange_type: str = "direct", passive: bool = False) -> Confirmation:
        self.declared.append((name, exchange_type, passive))
        self.events.append("declare")
        confirmation = Confirmation(f"exchange.declare {name}")
        if not self.is_open:
            confirmation.fail("connection is not open")
        elif self.exchange_exists:
            self.loop.schedule(confirmation.succeed)
        else:
            self.loop.schedule(
                lambda: confirmation.fail(f"NOT_FOUND - no exchange '{name}' in vhost '/'")
            )
        return confirmation

    def start_transaction(self) -> None:
        self.transactions_started += 1
        self.events.append("tx.select")

    def commit_transaction(self) -> Confirmation:
        self.commits += 1
        self.events.append("tx.commit")
        confirmation = Confirmation("tx.commit")
        if self.commit_outcome == "ok":
            self.loop.schedule(confirmation.succeed)
        elif self.commit_outcome == "error":
            self.loop.schedule(lambda: confirmation.fail("PRECONDITION_FAILED - channel is not transactional"))
        return confirmation


class FakeConnection:
    """
    Connection double that becomes ready after `ready_after` loop pumps.

    With `fail_after` set, the connection attempt is refused after that many
    pumps and `error` carries the reason.
    """

    def __init__(
        self,
        ready_after: Optional[int] = 1,
        fail_after: Optional[int] = None,
        **channel_options
    ):
        self.loop = FakeLoop()
        self.ready_after = ready_after
        self.fail_after = fail_after
        self.channel_options = channel_options
        self.channels: List[FakeChannel] = []
        self.closed = False

    @property
    def error(self) -> Optional[str]:
        if self.fail_after is not None and self.loop.pumps >= self.fail_after:
            return "ConnectionRefusedError: [Errno 111] Connection refused"
        return None

    def ready(self) -> bool:
        if self.closed or self.ready_after is None:
            return False
        return self.loop.pumps >= self.ready_after

    def channel(self) -> FakeChannel:
        channel = FakeChannel(self.loop, is_open=self.ready(), **self.channel_options)
        self.channels.append(channel)
        return channel

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_connection():
    """Factory for connection doubles."""
    return FakeConnection


@pytest.fixture
def fake_connection() -> FakeConnection:
    """Connection double that is ready after one pump."""
    return FakeConnection()


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def rabbitmq_config():
    """Broker configuration without sleeps and with a short retry budget."""
    from src.rabbitmq_producer.config import RabbitMQConfig

    return RabbitMQConfig(
        host="localhost",
        port=5672,
        user="guest",
        password="guest",
        exchange="test",
        routing_key="rows",
        num_queues=1,
        bind_by_id=False,
        transactional=False,
        connection_setup_sleep_ms=0,
        loop_wait_ms=0,
        loop_retries_max=5,
        batch=10000
    )


@pytest.fixture
def test_config(rabbitmq_config):
    """Producer configuration batching two ';'-delimited rows per message."""
    from src.rabbitmq_producer.config import BufferConfig, ProducerConfig

    return ProducerConfig(
        rabbitmq=rabbitmq_config,
        buffer=BufferConfig(delimiter=";", max_rows=2, chunk_size=7)
    )


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture
def env_vars(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("RABBITMQ_HOST", "rabbit.internal")
    monkeypatch.setenv("RABBITMQ_PORT", "5673")
    monkeypatch.setenv("RABBITMQ_EXCHANGE", "events")
    monkeypatch.setenv("RABBITMQ_NUM_QUEUES", "4")
    monkeypatch.setenv("RABBITMQ_BIND_BY_ID", "true")
    monkeypatch.setenv("ROW_DELIMITER", "\\n")
    monkeypatch.setenv("ROWS_PER_MESSAGE", "100")
    monkeypatch.setenv("ENVIRONMENT", "test")
