"""
Tests for the Inbound Frame Queue
=================================
"""

import logging
import threading

import pytest

from dc3_client.comms.inbound import InboundQueue
from dc3_client.config import DEFAULT_QUEUE_CAPACITY
from dc3_client.error_codes import ClientErrorCode
from dc3_client.errors import QueueFullError


class TestInboundQueue:
    """Tests for InboundQueue."""

    def test_default_capacity(self):
        assert InboundQueue().capacity == DEFAULT_QUEUE_CAPACITY == 128

    def test_fifo_order(self):
        q = InboundQueue(capacity=4)
        for frame in (b"a", b"b", b"c"):
            assert q.push(frame)
        assert len(q) == 3
        assert [q.try_pop(), q.try_pop(), q.try_pop()] == [b"a", b"b", b"c"]

    def test_pop_empty_returns_none(self):
        assert InboundQueue().try_pop() is None

    def test_full_queue_drops_and_logs(self, caplog):
        """A push into a full queue fails at once and is logged."""
        q = InboundQueue(capacity=2)
        assert q.push(b"a")
        assert q.push(b"b")
        with caplog.at_level(logging.WARNING, logger="dc3_client.comms.inbound"):
            assert not q.push(b"c")
        assert q.dropped == 1
        assert "Unable to push data into queue" in caplog.text
        assert q.try_pop() == b"a"

    def test_put_raises_when_full(self):
        q = InboundQueue(capacity=1)
        q.put(b"a")
        with pytest.raises(QueueFullError) as exc_info:
            q.put(b"b")
        assert exc_info.value.code == ClientErrorCode.QUEUE_FULL
        assert q.dropped == 0
        assert len(q) == 1

    def test_clear(self):
        q = InboundQueue(capacity=4)
        q.push(b"a")
        q.push(b"b")
        assert q.clear() == 2
        assert len(q) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError, match="positive"):
            InboundQueue(capacity=0)

    def test_push_from_another_thread(self):
        """Frames pushed by a receive thread are popped by the caller."""
        q = InboundQueue(capacity=200)
        producer = threading.Thread(
            target=lambda: [q.push(bytes([i])) for i in range(100)]
        )
        producer.start()
        producer.join()
        received = []
        while (frame := q.try_pop()) is not None:
            received.append(frame[0])
        assert received == list(range(100))
