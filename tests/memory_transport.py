import asyncio

from typing import List

from stomplink.exceptions import (
    ConnectError,
    ConnectErrorReason,
    ConnectionClosedError,
    TransportError,
)
from stomplink.frame import decode
from stomplink.transport.base import BaseTransport


class MemoryTransport(BaseTransport):
    """
    An in-memory transport used to exercise a client without a network.

    Bytes written by the client are collected in ``sent``. Bytes to be read by
    the client are queued with ``push``. Each queued chunk is returned by a
    separate receive call (split further if it exceeds max_bytes) so tests
    can control how a stream is fragmented.
    """

    def __init__(self, connect_failures: int = 0, on_connect_reply: bytes = None):
        """
        :param connect_failures: The number of connect calls that will fail
          before connections succeed.

        :param on_connect_reply: Bytes to put at the front of the read
          queue each time the client sends its first frame after connecting,
          e.g. a CONNECTED frame.
        """
        self.connect_failures = connect_failures
        self.on_connect_reply = on_connect_reply
        self.connect_calls = 0
        self.close_calls = 0
        self.sent = []  # type: List[bytes]
        self.fail_sends = False
        self.fail_receives = False
        self.peer_closed = False
        self._incoming = []  # type: List[bytes]
        self._open = False
        self._awaiting_first_send = False

    @property
    def is_open(self) -> bool:
        return self._open

    def push(self, data: bytes) -> None:
        """ Queue bytes for the client to receive """
        self._incoming.append(data)

    def sent_frames(self):
        """ Return the frames the client has written, in order """
        frames = []
        data = b"".join(self.sent)
        offset = 0
        while offset < len(data):
            frame, consumed = decode(data, offset)
            frames.append(frame)
            offset += consumed
        return frames

    async def connect(self, host: str, port: int) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.connect_failures:
            raise ConnectError(
                ConnectErrorReason.REFUSED_OR_UNREACHABLE, f"{host}:{port} refused"
            )
        self._open = True
        self._awaiting_first_send = True

    async def send(self, data: bytes) -> None:
        if not self._open or self.fail_sends:
            raise TransportError("Error writing to stream")
        self.sent.append(data)
        if self._awaiting_first_send:
            self._awaiting_first_send = False
            if self.on_connect_reply is not None:
                # The reply is read before anything queued earlier
                self._incoming.insert(0, self.on_connect_reply)

    async def receive(self, max_bytes: int, timeout: float) -> bytes:
        if not self._open or self.fail_receives:
            raise TransportError("Error reading from stream")
        if not self._incoming:
            if self.peer_closed:
                raise ConnectionClosedError("Connection closed by peer")
            # Yield to the loop the way a real read with a timeout would.
            await asyncio.sleep(0)
            return b""
        chunk = self._incoming.pop(0)
        if len(chunk) > max_bytes:
            self._incoming.insert(0, chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk

    def close(self) -> None:
        self.close_calls += 1
        self._open = False
