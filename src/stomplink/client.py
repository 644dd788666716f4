"""
This module contains a STOMP client that manages a single broker connection.
"""

import asyncio
import enum
import logging

from collections import namedtuple
from typing import Optional

from stomplink.exceptions import (
    HandshakeFailed,
    InvalidStateError,
    ProtocolError,
    SendFailed,
    TransportError,
)
from stomplink.frame import Command, Frame, FrameBuffer, MAX_FRAME_SIZE, encode
from stomplink.transport.base import BaseTransport

logger = logging.getLogger(__name__)


ACCEPT_VERSION = "1.0,1.1,1.2"
HEART_BEAT = "0,0"
ACK_AUTO = "auto"
CONTENT_TYPE_TEXT = "text/plain"
DEFAULT_SUBSCRIPTION_ID = "sub-1"

DEFAULT_READ_TIMEOUT = 0.5
DEFAULT_HANDSHAKE_TIMEOUT = 5.0
DEFAULT_RECEIVE_SIZE = 4096


Subscription = namedtuple("Subscription", ["id", "destination", "ack"])


class ConnectionState(enum.Enum):
    Disconnected = 0
    Connecting = 1
    Connected = 2
    Closed = 3


class StompClient(object):
    """
    A STOMP client bound to one transport.

    The same client supports a producer role (``send_message``) and a consumer
    role (``subscribe`` then ``poll_message``). Both are simply different call
    sequences on one connection.

    A client is owned by a single task. At most one call may be in progress at
    any time; the client performs no locking of its own.

    .. code-block:: python

        async with StompClient(TcpTransport()) as client:
            await client.connect("localhost", 61613)
            await client.subscribe("/queue/a")
            body = await client.poll_message()
    """

    def __init__(
        self,
        transport: BaseTransport,
        *,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        receive_size: int = DEFAULT_RECEIVE_SIZE,
        max_frame_size: int = MAX_FRAME_SIZE,
        login: str = None,
        passcode: str = None,
    ):
        """
        :param transport: The transport used to carry frames.

        :param read_timeout: The maximum number of seconds a single
          ``poll_message`` call will wait for bytes to arrive.

        :param handshake_timeout: The maximum number of seconds to wait for
          the broker to reply to a CONNECT frame.

        :param receive_size: The maximum number of bytes pulled from the
          transport per read.

        :param max_frame_size: The largest frame body that will be accepted
          from the broker.

        :param login: An optional user name sent in the CONNECT frame.

        :param passcode: An optional password sent in the CONNECT frame.
        """
        self.transport = transport
        self.read_timeout = read_timeout
        self.handshake_timeout = handshake_timeout
        self.receive_size = receive_size
        self.login = login
        self.passcode = passcode

        self._state = ConnectionState.Disconnected
        self._buffer = FrameBuffer(max_frame_size)
        self._subscription = None  # type: Optional[Subscription]

        # Details reported by the broker in its CONNECTED frame
        self.version = None  # type: Optional[str]
        self.server = None  # type: Optional[str]
        self.session = None  # type: Optional[str]

    @property
    def state(self) -> ConnectionState:
        """ Return the current connection state """
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.Connected

    @property
    def subscription(self) -> Optional[Subscription]:
        """ Return the active subscription, if any """
        return self._subscription

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    def _require_state(self, state: ConnectionState, operation: str) -> None:
        if self._state != state:
            raise InvalidStateError(
                f"Can't {operation} while {self._state.name}, "
                f"client must be {state.name}"
            )

    async def connect(self, host: str, port: int, vhost: str = None) -> None:
        """ Open the transport and perform the STOMP handshake.

        :param host: The broker host to connect to.

        :param port: The broker port to connect to.

        :param vhost: The virtual host to name in the CONNECT frame. Defaults
          to host.

        :raises ConnectError: if the transport could not connect.

        :raises HandshakeFailed: if the broker did not accept the session.
        """
        self._require_state(ConnectionState.Disconnected, "connect")
        await self.transport.connect(host, port)
        await self.handshake(vhost or host)

    async def handshake(self, host: str) -> None:
        """ Exchange CONNECT / CONNECTED frames with the broker.

        The transport must already be connected. On failure the transport is
        closed and the client returns to the Disconnected state so that the
        handshake can be attempted again.

        :param host: The value of the CONNECT frame's host header.

        :raises HandshakeFailed: if the broker replied with anything other
          than a CONNECTED frame, the reply could not be decoded or no reply
          arrived within the handshake timeout.
        """
        self._require_state(ConnectionState.Disconnected, "handshake")
        self._state = ConnectionState.Connecting
        self._buffer.clear()

        headers = [
            ("accept-version", ACCEPT_VERSION),
            ("host", host),
            ("heart-beat", HEART_BEAT),
        ]
        if self.login is not None:
            headers.append(("login", self.login))
        if self.passcode is not None:
            headers.append(("passcode", self.passcode))

        try:
            await self.transport.send(encode(Frame(Command.CONNECT, headers)))
            reply = await self._read_frame(self.handshake_timeout)
        except (TransportError, ProtocolError) as exc:
            self._abort_handshake()
            raise HandshakeFailed(f"Error during handshake with {host}: {exc}") from exc

        if reply is None:
            self._abort_handshake()
            raise HandshakeFailed(
                f"No reply from {host} within {self.handshake_timeout} seconds"
            )

        if reply.command != Command.CONNECTED:
            self._abort_handshake()
            detail = ""
            if reply.command == Command.ERROR:
                detail = f": {reply.get_header('message', reply.text)}"
            raise HandshakeFailed(
                f"Expected CONNECTED frame, got {reply.command.value}{detail}"
            )

        self.version = reply.get_header("version", "1.0")
        self.server = reply.get_header("server")
        self.session = reply.get_header("session")
        self._state = ConnectionState.Connected
        logger.info(
            f"Connected to {host} using STOMP {self.version}"
            + (f" ({self.server})" if self.server else "")
        )

    def _abort_handshake(self) -> None:
        self.transport.close()
        self._buffer.clear()
        self._state = ConnectionState.Disconnected

    async def _read_frame(self, timeout: float) -> Optional[Frame]:
        """ Read from the transport until a frame is decoded or timeout
        seconds have elapsed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            frame = self._buffer.next_frame()
            if frame is not None:
                return frame
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            data = await self.transport.receive(self.receive_size, remaining)
            if data:
                self._buffer.feed(data)

    async def _send_frame(self, frame: Frame) -> None:
        try:
            await self.transport.send(encode(frame))
        except TransportError as exc:
            logger.error(f"Error sending {frame.command.value} frame: {exc}")
            raise SendFailed(f"Error sending {frame.command.value} frame: {exc}") from exc

    async def subscribe(
        self, destination: str, id: str = DEFAULT_SUBSCRIPTION_ID
    ) -> Subscription:
        """ Subscribe to a destination.

        No reply is awaited from the broker. Messages for the subscription
        are collected with ``poll_message``. Only one subscription per
        connection is supported.

        :param destination: The queue or topic to subscribe to.

        :param id: The subscription identifier.

        :raises SendFailed: if the SUBSCRIBE frame could not be written. The
          client stays Connected.
        """
        self._require_state(ConnectionState.Connected, "subscribe")
        if self._subscription is not None:
            raise InvalidStateError(
                f"Already subscribed to {self._subscription.destination}"
            )

        subscription = Subscription(id=id, destination=destination, ack=ACK_AUTO)
        frame = Frame(
            Command.SUBSCRIBE,
            [("destination", destination), ("id", id), ("ack", ACK_AUTO)],
        )
        await self._send_frame(frame)
        self._subscription = subscription
        logger.info(f"Subscribed to {destination}")
        return subscription

    async def send_message(self, destination: str, body: str) -> None:
        """ Send a text message to a destination.

        The body is sent verbatim with a content-length header. It must not
        contain a NUL character, which NUL delimited readers treat as the end
        of the frame.

        :param destination: The queue or topic to send to.

        :param body: The message text.

        :raises SendFailed: if the SEND frame could not be written. The
          client stays Connected.
        """
        self._require_state(ConnectionState.Connected, "send a message")
        payload = body.encode("utf-8")
        frame = Frame(
            Command.SEND,
            [
                ("destination", destination),
                ("content-type", CONTENT_TYPE_TEXT),
                ("content-length", str(len(payload))),
            ],
            payload,
        )
        await self._send_frame(frame)
        logger.debug(f"Sent {len(payload)} byte message to {destination}")

    async def poll_message(self) -> Optional[str]:
        """ Return the body of the next MESSAGE frame, if one is available.

        Performs at most one bounded read from the transport and decodes at
        most one frame. Frames other than MESSAGE are discarded. Pacing
        between calls is up to the caller.

        :returns: The message body text, or None if no MESSAGE frame was
          completed by this call.

        :raises ProtocolError: if the received bytes are not a valid frame.
          The reassembly buffer is discarded.

        :raises TransportError: if reading from the transport failed.
        """
        self._require_state(ConnectionState.Connected, "poll for messages")

        try:
            frame = self._buffer.next_frame()
            if frame is None:
                data = await self.transport.receive(
                    self.receive_size, self.read_timeout
                )
                if not data:
                    return None
                self._buffer.feed(data)
                frame = self._buffer.next_frame()
        except ProtocolError as exc:
            logger.error(f"Discarding {len(self._buffer)} buffered bytes: {exc}")
            self._buffer.clear()
            raise

        if frame is None:
            return None

        if frame.command == Command.MESSAGE:
            return frame.text

        if frame.command == Command.ERROR:
            logger.error(
                f"Broker reported error: {frame.get_header('message', frame.text)}"
            )
        else:
            logger.debug(f"Ignoring unexpected {frame.command.value} frame")
        return None

    async def disconnect(self) -> None:
        """ End the session and close the transport.

        Allowed from any state. Repeated calls have no effect.
        """
        if self._state == ConnectionState.Closed:
            return

        if self._state == ConnectionState.Connected:
            try:
                await self.transport.send(encode(Frame(Command.DISCONNECT)))
            except TransportError as exc:
                logger.warning(f"Error sending DISCONNECT frame: {exc}")

        self.transport.close()
        self._buffer.clear()
        self._subscription = None
        was_connected = self._state == ConnectionState.Connected
        self._state = ConnectionState.Closed
        if was_connected:
            logger.info("Disconnected from broker")
