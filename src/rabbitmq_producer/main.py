"""
RabbitMQ Row Producer - Main Entry Point
CLI interface for streaming delimited rows into a RabbitMQ exchange.
"""
import argparse
import logging
import sys
from typing import List, Optional

from .config import ProducerConfig, decode_delimiter, parse_address
from .pipeline import RowPipeline


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )

    # Reduce noise from libraries
    logging.getLogger("pika").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Publish delimited rows to RabbitMQ in batched messages",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--input",
        type=str,
        default="-",
        help="File with delimited rows, '-' for stdin"
    )

    parser.add_argument(
        "--address",
        type=str,
        default=None,
        help="Broker address as host:port (overrides env/config)"
    )

    parser.add_argument(
        "--exchange",
        type=str,
        default=None,
        help="Exchange base name, '_direct' is appended"
    )

    parser.add_argument(
        "--routing-key",
        type=str,
        default=None,
        help="Routing key for every message"
    )

    parser.add_argument(
        "--num-queues",
        type=int,
        default=None,
        help="Number of queues bound by id"
    )

    parser.add_argument(
        "--bind-by-id",
        action="store_true",
        help="Route messages round-robin to queue ids 1..num-queues"
    )

    parser.add_argument(
        "--transactional",
        action="store_true",
        help="Publish inside a transaction committed on shutdown"
    )

    parser.add_argument(
        "--delimiter",
        type=str,
        default=None,
        help="Row delimiter (single byte, escapes like \\n allowed)"
    )

    parser.add_argument(
        "--rows-per-message",
        type=int,
        default=None,
        help="Rows batched into one message"
    )

    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Buffer chunk size in bytes"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print messages to console instead of RabbitMQ"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ProducerConfig:
    """Load configuration from the environment and apply CLI overrides."""
    config = ProducerConfig.from_env()

    if args.address:
        config.rabbitmq.host, config.rabbitmq.port = parse_address(args.address)
    if args.exchange:
        config.rabbitmq.exchange = args.exchange
    if args.routing_key is not None:
        config.rabbitmq.routing_key = args.routing_key
    if args.num_queues is not None:
        config.rabbitmq.num_queues = args.num_queues
    if args.bind_by_id:
        config.rabbitmq.bind_by_id = True
    if args.transactional:
        config.rabbitmq.transactional = True
    if args.delimiter is not None:
        config.buffer.delimiter = decode_delimiter(args.delimiter)
    if args.rows_per_message is not None:
        config.buffer.max_rows = args.rows_per_message
    if args.chunk_size is not None:
        config.buffer.chunk_size = args.chunk_size

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    # Load configuration
    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    logger.info("=" * 50)
    logger.info("RabbitMQ Row Producer")
    logger.info("=" * 50)
    logger.info(f"Mode: {'DRY-RUN' if args.dry_run else 'PRODUCTION'}")
    logger.info(f"RabbitMQ: {config.rabbitmq.address}")
    logger.info(f"Exchange: {config.rabbitmq.exchange_name}")
    logger.info(f"Rows per message: {config.buffer.max_rows}")
    logger.info("=" * 50)

    try:
        source = sys.stdin.buffer if args.input == "-" else open(args.input, "rb")
    except OSError as e:
        logger.error(f"Cannot open input: {e}")
        return 1

    try:
        pipeline = RowPipeline(config=config, source=source, dry_run=args.dry_run)
        confirmed = pipeline.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1
    finally:
        if source is not sys.stdin.buffer:
            source.close()

    if not confirmed:
        logger.warning("Not every published message was confirmed by the broker")
    return 0


if __name__ == "__main__":
    sys.exit(main())
