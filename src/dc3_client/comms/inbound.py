"""
Inbound Frame Queue
===================

Bounded, thread-safe queue between a transport's receive thread and the
transaction engine.

The transport pushes every raw frame it receives; the engine pops them
while waiting for a response. Neither side ever blocks on the other.
On a full queue ``put`` raises QueueFullError, while ``push`` (the
receive thread's entry point) logs and counts the drop. ``try_pop``
returns immediately when empty.
"""

import logging
import queue
from typing import Optional

from dc3_client.config import DEFAULT_QUEUE_CAPACITY
from dc3_client.errors import QueueFullError

# Configure module logger
logger = logging.getLogger(__name__)


class InboundQueue:
    """
    Bounded FIFO of raw received frames.

    Attributes:
        capacity: Maximum number of frames held
        dropped: Number of frames rejected because the queue was full

    Example:
        >>> q = InboundQueue(capacity=2)
        >>> q.push(b"a"), q.push(b"b"), q.push(b"c")
        (True, True, False)
        >>> q.try_pop()
        b'a'
    """

    def __init__(self, capacity: int = DEFAULT_QUEUE_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Queue capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.dropped = 0
        self._queue: queue.Queue[bytes] = queue.Queue(maxsize=capacity)

    def put(self, frame: bytes) -> None:
        """
        Add a received frame without blocking.

        Raises:
            QueueFullError: The queue already holds ``capacity`` frames.
        """
        try:
            self._queue.put_nowait(bytes(frame))
        except queue.Full:
            raise QueueFullError(
                f"Inbound queue full ({self.capacity} frames)"
            ) from None

    def push(self, frame: bytes) -> bool:
        """
        Like ``put``, but a full queue drops the frame instead of raising.

        Returns:
            True if queued, False if the frame was dropped.
        """
        try:
            self.put(frame)
        except QueueFullError:
            self.dropped += 1
            logger.warning(
                "Unable to push data into queue. (%d frames dropped)",
                self.dropped,
            )
            return False
        return True

    def try_pop(self) -> Optional[bytes]:
        """Remove and return the oldest frame, or None if empty."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def clear(self) -> int:
        """Discard all queued frames, returning how many were discarded."""
        count = 0
        while self.try_pop() is not None:
            count += 1
        return count

    def __len__(self) -> int:
        return self._queue.qsize()
