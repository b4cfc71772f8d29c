"""
Configuration Management
Centralized configuration for the RabbitMQ row producer.
"""
import codecs
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_AMQP_PORT = 5672


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def decode_delimiter(value: str) -> str:
    """
    Resolve a row delimiter given on the command line or in the environment.

    Backslash escapes such as ``\\n`` or ``\\x1e`` are expanded. The result
    must be a single ASCII character so that it is exactly one byte.

    Args:
        value: Raw delimiter text

    Returns:
        The delimiter character
    """
    if not value.isascii():
        raise ValueError(f"Row delimiter must be ASCII, got {value!r}")
    try:
        delimiter = codecs.decode(value, "unicode_escape")
    except UnicodeDecodeError:
        raise ValueError(f"Invalid escape in row delimiter: {value!r}") from None
    if len(delimiter) != 1 or not delimiter.isascii():
        raise ValueError(f"Row delimiter must be a single ASCII character, got {value!r}")
    return delimiter


def _env_delimiter() -> Optional[str]:
    value = os.getenv("ROW_DELIMITER")
    if value is None or value == "":
        return None
    return decode_delimiter(value)


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` broker address.

    Args:
        address: Address string, port is optional

    Returns:
        Tuple of (host, port)
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        return port, DEFAULT_AMQP_PORT
    if not host:
        raise ValueError(f"Missing host in broker address: {address!r}")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port in broker address: {address!r}") from None


@dataclass
class RabbitMQConfig:
    """RabbitMQ connection and routing configuration."""
    host: str = field(
        default_factory=lambda: os.getenv("RABBITMQ_HOST", "localhost")
    )
    port: int = field(
        default_factory=lambda: int(os.getenv("RABBITMQ_PORT", str(DEFAULT_AMQP_PORT)))
    )
    user: str = field(default_factory=lambda: os.getenv("RABBITMQ_USER", "guest"))
    password: str = field(
        default_factory=lambda: os.getenv("RABBITMQ_PASSWORD", "guest")
    )
    vhost: str = "/"
    exchange: str = field(
        default_factory=lambda: os.getenv("RABBITMQ_EXCHANGE", "rows")
    )
    routing_key: str = field(
        default_factory=lambda: os.getenv("RABBITMQ_ROUTING_KEY", "")
    )
    num_queues: int = field(
        default_factory=lambda: int(os.getenv("RABBITMQ_NUM_QUEUES", "1"))
    )
    bind_by_id: bool = field(
        default_factory=lambda: _env_bool("RABBITMQ_BIND_BY_ID")
    )
    transactional: bool = field(
        default_factory=lambda: _env_bool("RABBITMQ_TRANSACTIONAL")
    )

    # Event loop pumping
    connection_setup_sleep_ms: int = 200
    loop_wait_ms: int = 10
    loop_retries_max: int = 1000
    batch: int = 10000

    EXCHANGE_SUFFIX = "_direct"

    @property
    def exchange_name(self) -> str:
        """Actual exchange name on the broker."""
        return self.exchange + self.EXCHANGE_SUFFIX

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class BufferConfig:
    """Row batching configuration."""
    delimiter: Optional[str] = field(default_factory=_env_delimiter)
    max_rows: int = field(
        default_factory=lambda: int(os.getenv("ROWS_PER_MESSAGE", "1"))
    )
    chunk_size: int = field(
        default_factory=lambda: int(os.getenv("CHUNK_SIZE", "4096"))
    )


@dataclass
class ProducerConfig:
    """Complete producer configuration."""
    rabbitmq: RabbitMQConfig = field(default_factory=RabbitMQConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)

    # General settings
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    environment: str = field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development")
    )

    @classmethod
    def from_env(cls) -> "ProducerConfig":
        """Load configuration from environment variables."""
        return cls()


def get_config() -> ProducerConfig:
    """Get producer configuration."""
    return ProducerConfig()
