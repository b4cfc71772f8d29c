"""
Unit Tests for RabbitMQRowProducer
"""
import logging
from unittest.mock import MagicMock

import pytest


class TestRabbitMQRowProducer:
    """Tests for the byte sink wiring buffer and session together."""

    @pytest.fixture
    def session(self, test_config, fake_connection):
        from src.rabbitmq_producer.session import ProducerSession

        return ProducerSession(test_config.rabbitmq, connection=fake_connection)

    @pytest.fixture
    def producer(self, test_config, session):
        """Create producer over a session backed by broker doubles."""
        from src.rabbitmq_producer.producer import RabbitMQRowProducer

        return RabbitMQRowProducer(test_config, session=session)

    # =========================================================================
    # Write Tests
    # =========================================================================

    def test_rows_published_as_batches(self, producer, session):
        """Test max_rows rows become one published message."""
        for row in (b"a;", b"b;", b"c;", b"d;"):
            producer.write_row(row)

        assert session.channel.published == [
            ("test_direct", "rows", b"a;b"),
            ("test_direct", "rows", b"c;d"),
        ]

    def test_write_and_count_row_separately(self, producer, session):
        """Test the low-level write/count_row contract."""
        producer.write(b"long-")
        producer.write(b"row;")
        producer.count_row()
        producer.write(b"x;")
        producer.count_row()

        assert session.channel.published[0][2] == b"long-row;x"

    def test_flush_publishes_partial_batch(self, producer, session):
        """Test flush sends fewer than max_rows rows."""
        producer.write_row(b"only;")

        assert producer.flush() is True
        assert session.channel.published[-1][2] == b"only"

    def test_stats(self, producer):
        """Test stats combine buffer and session counters."""
        for row in (b"a;", b"b;", b"c;"):
            producer.write_row(row)

        stats = producer.stats

        assert stats["rows_written"] == 3
        assert stats["messages_sent"] == 1
        assert stats["rows_pending"] == 1
        assert stats["messages_published"] == 1

    # =========================================================================
    # Close Tests
    # =========================================================================

    def test_close_with_aligned_rows(self, producer, fake_connection):
        """Test close succeeds when rows end on a batch boundary."""
        producer.write_row(b"a;")
        producer.write_row(b"b;")

        assert producer.close() is True
        assert fake_connection.closed is True

    def test_close_with_pending_rows_fails_invariant(self, producer, fake_connection, caplog):
        """Test unflushed rows at teardown are a caller bug."""
        producer.write_row(b"a;")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(AssertionError):
                producer.close()

        assert "unpublished row(s)" in caplog.text
        # teardown still happened before the check
        assert fake_connection.closed is True

    def test_close_is_idempotent(self, producer):
        """Test a second close returns the first result."""
        assert producer.close() is True
        assert producer.close() is True

    def test_context_manager_closes(self, test_config, session):
        """Test leaving the block closes the session."""
        from src.rabbitmq_producer.producer import RabbitMQRowProducer

        with RabbitMQRowProducer(test_config, session=session) as producer:
            producer.write_row(b"a;")
            producer.write_row(b"b;")

        assert session.connection.closed is True

    def test_context_manager_keeps_original_error(self, test_config, session):
        """Test an error inside the block is not replaced by the invariant check."""
        from src.rabbitmq_producer.producer import RabbitMQRowProducer

        with pytest.raises(RuntimeError, match="writer failed"):
            with RabbitMQRowProducer(test_config, session=session) as producer:
                producer.write_row(b"a;")
                raise RuntimeError("writer failed")

        assert session.connection.closed is True

    def test_default_session_built_from_config(self, test_config, monkeypatch):
        """Test a session is created from the broker config when not given."""
        from src.rabbitmq_producer import producer as producer_module

        session_cls = MagicMock()
        monkeypatch.setattr(producer_module, "ProducerSession", session_cls)

        producer = producer_module.RabbitMQRowProducer(test_config)

        session_cls.assert_called_once_with(test_config.rabbitmq)
        assert producer.session is session_cls.return_value
