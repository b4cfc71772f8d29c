# src/rabbitmq_producer module
"""Batching row producer for RabbitMQ."""

from .config import (
    BufferConfig,
    ProducerConfig,
    RabbitMQConfig,
    decode_delimiter,
    get_config,
    parse_address,
)
from .confirmation import Confirmation
from .row_buffer import ChunkedRowBuffer
from .amqp_client import AMQPConnection, PikaChannel, PikaLoop
from .session import ProducerSession
from .producer import RabbitMQRowProducer
from .pipeline import DryRunSession, RowPipeline

__all__ = [
    "BufferConfig",
    "ProducerConfig",
    "RabbitMQConfig",
    "decode_delimiter",
    "get_config",
    "parse_address",
    "Confirmation",
    "ChunkedRowBuffer",
    "AMQPConnection",
    "PikaChannel",
    "PikaLoop",
    "ProducerSession",
    "RabbitMQRowProducer",
    "DryRunSession",
    "RowPipeline",
]
