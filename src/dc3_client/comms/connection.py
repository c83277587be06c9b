"""
DC3 Connection
==============

A ``Connection`` ties one transport to one inbound queue and one message
id counter. It is the only state shared between the transport's receive
thread (which pushes into the queue) and the command thread (which sends
requests and pops responses), and it replaces any process-wide transport
or queue: two connections to two boards never share anything.
"""

import logging
from typing import Optional

from dc3_client.comms.codec import encode_frame
from dc3_client.comms.inbound import DEFAULT_QUEUE_CAPACITY, InboundQueue
from dc3_client.comms.messages import UINT32_MAX, Header, MsgRoute, Payload
from dc3_client.comms.transport import Transport

# Configure module logger
logger = logging.getLogger(__name__)


class Connection:
    """
    A transport, its inbound queue and its message id counter.

    Args:
        transport: Transport to send through and receive from.
        queue_capacity: Inbound queue size in frames.
        route: Route stamped on requests. Defaults to the transport's.

    Example:
        with Connection(UdpTransport("192.168.1.75")) as conn:
            engine = TransactionEngine(conn)
            frame = engine.transact(MsgName.GET_BOOT_MODE)
    """

    def __init__(
        self,
        transport: Transport,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        route: Optional[MsgRoute] = None,
    ):
        self.transport = transport
        self.queue = InboundQueue(queue_capacity)
        self.route = route if route is not None else transport.route
        self._msg_id = 0

    @property
    def is_open(self) -> bool:
        return self.transport.running

    @property
    def last_msg_id(self) -> int:
        """Id of the most recently sent request (0 before the first)."""
        return self._msg_id

    def open(self) -> "Connection":
        """Start the transport delivering frames into the inbound queue."""
        if not self.is_open:
            self.transport.start(self.queue.push)
        return self

    def close(self) -> None:
        """Stop the transport. Unread frames stay in the queue."""
        self.transport.stop()

    def next_msg_id(self) -> int:
        """
        Advance and return the message id counter.

        Ids are 32-bit and wrap to 1, so 0 is never used for a request.
        """
        self._msg_id = self._msg_id + 1 if self._msg_id < UINT32_MAX else 1
        return self._msg_id

    def send_frame(self, header: Header, payload: Optional[Payload] = None) -> int:
        """
        Encode and transmit one frame.

        Returns:
            Number of bytes handed to the transport.

        Raises:
            FrameTooLargeError: If the frame exceeds the transport's limit.
        """
        wire = encode_frame(header, payload, max_size=self.transport.max_frame_size)
        self.transport.send(wire)
        return len(wire)

    def __enter__(self) -> "Connection":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
