import asyncio
import binascii
import logging
import os

from typing import Optional, Tuple


logger = logging.getLogger(__name__)


# Reading from the socket is paused once this many received bytes are waiting
# to be collected and resumed when the buffer drains below the low mark.
HIGH_WATER_MARK = 256 * 1024
LOW_WATER_MARK = 64 * 1024


class StompStreamProtocol(asyncio.Protocol):
    """
    This protocol collects bytes received from the stream so that they can be
    pulled by a transport's receive method.

    The protocol is not capable of extracting frames from the stream. It
    simply accumulates received bytes and signals their arrival. Frame
    extraction is the job of the client.
    """

    def __init__(self):
        self._remote_address = None  # type: Optional[Tuple[str, int]]
        self._local_address = None  # type: Optional[Tuple[str, int]]
        self._identity = b""
        self._buffer = bytearray()
        self._data_available = asyncio.Event()
        self._paused = False
        self._closed = False
        self._exc = None  # type: Optional[Exception]

        self.transport = None

    @property
    def raddr(self) -> Tuple[str, int]:
        """ Return the remote address the protocol is connected with """
        return self._remote_address

    @property
    def laddr(self) -> Tuple[str, int]:
        """ Return the local address the protocol is using """
        return self._local_address

    @property
    def identity(self):
        """ Return the protocol's unique identifier, used in log messages """
        return self._identity

    @property
    def closed(self) -> bool:
        """ Return True once the connection has been lost or closed """
        return self._closed

    @property
    def exception(self) -> Optional[Exception]:
        """ Return the error that caused the connection to be lost, if any """
        return self._exc

    def connection_made(self, transport):
        """
        Called by the event loop when the protocol is connected with a transport.
        """
        self.transport = transport

        # AF_INET6 returns a four-tuple (host, port, flowinfo, scopeid) which
        # needs to be converted to the expected 2-tuple.
        def get_host_port(info) -> Tuple[str, int]:
            if info and len(info) == 4:
                host, port, _flowinfo, _scopeid = info
                info = (host, port)
            return info

        self._remote_address = get_host_port(transport.get_extra_info("peername"))
        self._local_address = get_host_port(transport.get_extra_info("sockname"))
        self._identity = binascii.hexlify(os.urandom(5))

        logger.debug(
            f"Connection made. id={self._identity}, "
            f"laddr={self._local_address}, "
            f"raddr={self._remote_address}"
        )

    def connection_lost(self, exc):
        """
        Called by the event loop when the protocol is disconnected from a transport.
        """
        logger.debug(
            f"Connection lost. id={self._identity}, "
            f"laddr={self._local_address}, "
            f"raddr={self._remote_address}, "
            f"reason={exc}"
        )

        self._closed = True
        self._exc = exc
        # Wake any reader so it can observe the closed state.
        self._data_available.set()

        if self.transport:
            self.transport.close()
        self.transport = None

    def close(self):
        """
        Close this connection.
        """
        logger.debug(
            f"Closing connection. id={self._identity}, "
            f"laddr={self._local_address}, raddr={self._remote_address}"
        )

        if self.transport:
            self.transport.close()

    def write(self, data: bytes) -> None:
        """ Write data to the underlying transport.

        :raises ConnectionError: if the connection is closed or closing.
        """
        if self._closed or self.transport is None or self.transport.is_closing():
            raise ConnectionResetError("Connection is closed")

        logger.debug(f"Sending {len(data)} bytes. id={self._identity}")

        self.transport.write(data)

    def data_received(self, data):
        """ Process some bytes received from the transport."""
        self._buffer.extend(data)
        self._data_available.set()

        if not self._paused and len(self._buffer) > HIGH_WATER_MARK:
            logger.debug(
                f"Receive buffer above {HIGH_WATER_MARK} bytes, pausing reads. "
                f"id={self._identity}"
            )
            self._paused = True
            self.transport.pause_reading()

    def eof_received(self):
        """ Called when the peer signals it will send no more data """
        logger.debug(f"EOF received. id={self._identity}")
        # Returning a false value lets the transport close itself, which in
        # turn triggers connection_lost.
        return False

    async def read(self, max_bytes: int, timeout: float) -> bytes:
        """ Return up to max_bytes buffered bytes.

        Waits up to timeout seconds for bytes to arrive. Returns an empty
        bytes object on timeout.

        :raises ConnectionError: if the connection has been lost and there are
          no buffered bytes left.
        """
        if not self._buffer and not self._closed:
            try:
                await asyncio.wait_for(self._data_available.wait(), timeout)
            except asyncio.TimeoutError:
                return b""

        if self._buffer:
            chunk = bytes(self._buffer[:max_bytes])
            del self._buffer[:max_bytes]
            if not self._buffer and not self._closed:
                self._data_available.clear()
            if self._paused and len(self._buffer) < LOW_WATER_MARK:
                self._paused = False
                if self.transport:
                    self.transport.resume_reading()
            return chunk

        if self._exc:
            raise ConnectionResetError(str(self._exc)) from self._exc
        raise ConnectionAbortedError("Connection closed by peer")
