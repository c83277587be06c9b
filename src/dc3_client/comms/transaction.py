"""
DC3 Transaction Engine
======================

Drives one request to completion over a ``Connection``.

Transaction Lifecycle
---------------------
A transaction is the send-then-wait-twice exchange for one request:

    AWAITING_ACK ──ACK──> AWAITING_DONE ──DONE──> DONE
         │                      │
         └──timeout──> FAILED <─┘──timeout / protocol error

1. The connection's message id counter is advanced and exactly one
   REQUEST frame is sent.
2. The inbound queue is polled until an ACK for that id arrives, bounded
   by the ack timeout. If it expires the transaction fails at once; no
   Completion wait is attempted.
3. The queue is polled again until the DONE for that id arrives, bounded
   by an operation-specific timeout (short for mode queries, long for
   flash metadata or RAM tests).

Only one transaction is ever in flight per connection. Frames whose id
does not match the awaited request (for example a Completion arriving
after its request already timed out) are discarded, so a late answer is
never mistaken for the answer to the next request.

Polling
-------
Waiting is a busy-poll: pop a frame, or sleep one poll interval (1 ms by
default) and try again until the deadline. The transport thread is
never blocked; only the calling thread waits.

Error Handling
--------------
Local protocol errors (malformed frame, unknown payload, a REQUEST from
the device, a Completion without payload) and timeouts are raised and
never retried here. Device error codes are not interpreted: the DONE
frame is returned as received, and the caller decides what its
``error_code`` means.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from dc3_client.comms.codec import decode_frame
from dc3_client.comms.connection import Connection
from dc3_client.comms.messages import (
    EXPECTED_RESPONSES,
    Frame,
    Header,
    MsgName,
    MsgType,
    Payload,
    Role,
    StatusPayload,
    payload_tag_of,
)
from dc3_client.config import DEFAULT_ACK_TIMEOUT, DEFAULT_DONE_TIMEOUT, DEFAULT_POLL_INTERVAL
from dc3_client.errors import (
    AckTimeoutError,
    DoneTimeoutError,
    MissingPayloadError,
    TimeoutError,
    UnexpectedPayloadError,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Transaction State
# =============================================================================

class TransactionState(Enum):
    """Lifecycle of one request."""

    AWAITING_ACK = "awaiting_ack"
    AWAITING_DONE = "awaiting_done"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Transaction:
    """
    One in-flight request.

    Attributes:
        request: Header of the REQUEST frame that was sent
        payload: Payload sent with the request, if any
        state: Current lifecycle state
        response: The DONE frame, once received
        error: Why the transaction failed, if it did
    """

    request: Header
    payload: Optional[Payload] = None
    state: TransactionState = TransactionState.AWAITING_ACK
    response: Optional[Frame] = None
    error: Optional[Exception] = None

    @property
    def msg_id(self) -> int:
        return self.request.msg_id

    @property
    def name(self) -> MsgName:
        return self.request.name


# =============================================================================
# Transaction Engine
# =============================================================================

class TransactionEngine:
    """
    Request/acknowledge/completion engine for one connection.

    Args:
        connection: Open connection to send through and poll.
        ack_timeout: Default Acknowledge wait, in seconds.
        done_timeout: Default Completion wait, in seconds.
        poll_interval: Sleep between empty queue polls, in seconds.
        clock: Monotonic time source (injectable for tests).
        sleep: Sleep function (injectable for tests).

    Attributes:
        discarded: Frames dropped because their id did not match
        last_transaction: The most recent transaction, for diagnostics
    """

    def __init__(
        self,
        connection: Connection,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
        done_timeout: float = DEFAULT_DONE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connection = connection
        self.ack_timeout = ack_timeout
        self.done_timeout = done_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self.discarded = 0
        self.last_transaction: Optional[Transaction] = None

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    def _poll(self, deadline: float, msg_id: Optional[int]) -> Optional[Frame]:
        """
        Poll until a frame for ``msg_id`` arrives or ``deadline`` passes.

        Returns:
            The frame (ACK or DONE), or None on timeout.
        """
        queue = self.connection.queue
        while True:
            raw = queue.try_pop()
            if raw is None:
                if self._clock() >= deadline:
                    return None
                self._sleep(self.poll_interval)
                continue

            frame, _ = decode_frame(raw, Role.HOST)

            if msg_id is not None and frame.msg_id != msg_id:
                self.discarded += 1
                logger.debug(
                    "Discarding %s frame for id %d while waiting for id %d",
                    frame.msg_type.name, frame.msg_id, msg_id,
                )
                continue

            if frame.msg_type == MsgType.ACK:
                return frame

            if frame.msg_type == MsgType.PROGRESS:
                logger.debug("Ignoring progress frame for id %d", frame.msg_id)
                continue

            if frame.payload is None:
                raise MissingPayloadError(
                    f"{frame.msg_type.name} frame for id {frame.msg_id} "
                    f"({frame.header.name.name}) has no payload"
                )
            return frame

    def wait_for_response(
        self,
        timeout: float,
        msg_id: Optional[int] = None,
        stage: str = "response",
    ) -> Frame:
        """
        Wait for the next ACK or DONE frame.

        Args:
            timeout: Seconds to wait.
            msg_id: Only accept frames with this id; others are discarded.
                None accepts any id.
            stage: "ack" or "done" selects the timeout exception raised.

        Returns:
            An ACK frame (no payload) or a DONE frame with its payload.

        Raises:
            AckTimeoutError / DoneTimeoutError / TimeoutError: No frame in time.
            UnexpectedRequestError: The device sent a REQUEST.
            MissingPayloadError: A DONE frame carried no payload.
            UnknownPayloadError, MalformedFrameError: Undecodable frame.
        """
        frame = self._poll(self._clock() + timeout, msg_id)
        if frame is None:
            raise self._timeout(stage, timeout)
        return frame

    @staticmethod
    def _timeout(stage: str, timeout: float) -> TimeoutError:
        if stage == "ack":
            return AckTimeoutError(timeout)
        if stage == "done":
            return DoneTimeoutError(timeout)
        return TimeoutError(stage=stage, timeout=timeout)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def send_request(self, name: MsgName, payload: Optional[Payload] = None) -> Transaction:
        """
        Send one REQUEST frame with a fresh message id.

        Returns:
            The transaction in AWAITING_ACK state.
        """
        header = Header(
            msg_id=self.connection.next_msg_id(),
            msg_type=MsgType.REQUEST,
            route=self.connection.route,
            requesting_progress=False,
            name=name,
            payload_tag=payload_tag_of(payload),
        )
        tx = Transaction(request=header, payload=payload)
        self.last_transaction = tx
        self.connection.send_frame(header, payload)
        logger.debug("Sent %s", header)
        return tx

    def transact(
        self,
        name: MsgName,
        payload: Optional[Payload] = None,
        done_timeout: Optional[float] = None,
        ack_timeout: Optional[float] = None,
        expect: Optional[tuple[type, ...]] = None,
    ) -> Frame:
        """
        Run one full transaction: send, wait for ACK, wait for DONE.

        Args:
            name: Operation to request.
            payload: Request payload, if the operation takes one.
            done_timeout: Completion wait (default: engine's done_timeout).
            ack_timeout: Acknowledge wait (default: engine's ack_timeout).
            expect: Payload types the DONE may carry. Defaults to the
                usual response for ``name``. A StatusPayload is always
                accepted since it is how the device reports errors.

        Returns:
            The DONE frame, with the device's error code untouched.

        Raises:
            AckTimeoutError: No ACK in time (no Completion wait follows).
            DoneTimeoutError: ACK received but no DONE in time.
            UnexpectedPayloadError: DONE carried an unexpected payload type.
            ProtocolError: Any other protocol violation.
        """
        ack_timeout = self.ack_timeout if ack_timeout is None else ack_timeout
        done_timeout = self.done_timeout if done_timeout is None else done_timeout

        tx = self.send_request(name, payload)
        try:
            frame = self.wait_for_response(ack_timeout, tx.msg_id, stage="ack")

            if frame.msg_type == MsgType.ACK:
                tx.state = TransactionState.AWAITING_DONE
                frame = self._wait_done(tx, done_timeout)
            else:
                logger.warning(
                    "Completion for %s id %d arrived before its acknowledge",
                    name.name, tx.msg_id,
                )

            self._check_payload(tx, frame, expect)
        except Exception as e:
            tx.state = TransactionState.FAILED
            tx.error = e
            logger.debug("Transaction %s id %d failed: %s", name.name, tx.msg_id, e)
            raise

        tx.state = TransactionState.DONE
        tx.response = frame
        return frame

    def _wait_done(self, tx: Transaction, timeout: float) -> Frame:
        deadline = self._clock() + timeout
        while True:
            frame = self._poll(deadline, tx.msg_id)
            if frame is None:
                raise DoneTimeoutError(timeout)
            if frame.msg_type == MsgType.ACK:
                logger.debug("Ignoring duplicate acknowledge for id %d", tx.msg_id)
                continue
            return frame

    @staticmethod
    def _check_payload(
        tx: Transaction,
        frame: Frame,
        expect: Optional[tuple[type, ...]],
    ) -> None:
        allowed = expect if expect is not None else EXPECTED_RESPONSES.get(tx.name)
        if allowed is None or isinstance(frame.payload, (StatusPayload, *allowed)):
            return
        raise UnexpectedPayloadError(
            f"{tx.name.name} answered with {type(frame.payload).__name__}, "
            f"expected {' or '.join(t.__name__ for t in allowed)}"
        )
