import asyncio
import logging
import socket

from typing import Optional

from stomplink.exceptions import (
    ConnectError,
    ConnectErrorReason,
    ConnectionClosedError,
    TransportError,
)
from stomplink.transport.base import BaseTransport
from stomplink.transport.protocol import StompStreamProtocol

logger = logging.getLogger(__name__)


DEFAULT_CONNECT_TIMEOUT = 5.0


class TcpTransport(BaseTransport):
    """
    A transport that carries bytes over a TCP connection using the asyncio
    event loop.

    Host names are resolved to a list of addresses. By default each address
    is tried in turn until one accepts the connection. Setting
    ``try_all_addresses`` to False only attempts the first resolved address.
    """

    protocol_class = StompStreamProtocol

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        family: int = socket.AF_UNSPEC,
        try_all_addresses: bool = True,
    ):
        """
        :param connect_timeout: The number of seconds to wait for name
          resolution, and separately for each connection attempt.

        :param family: An optional address family integer from the socket
          module used to restrict name resolution. Defaults to AF_UNSPEC.

        :param try_all_addresses: A flag that determines whether every
          resolved address is attempted or only the first one.
        """
        self.connect_timeout = connect_timeout
        self.family = family
        self.try_all_addresses = try_all_addresses
        self._transport = None  # type: Optional[asyncio.Transport]
        self._protocol = None  # type: Optional[StompStreamProtocol]

    @property
    def is_open(self) -> bool:
        return self._protocol is not None and not self._protocol.closed

    @property
    def raddr(self):
        """ Return the remote address of the current connection """
        return self._protocol.raddr if self._protocol else None

    async def connect(self, host: str, port: int) -> None:
        """ Connect to a broker.

        :param host: The broker host name or address.

        :param port: The broker port.

        :raises ConnectError: if name resolution fails or no resolved address
          accepts a connection.
        """
        self.close()

        loop = asyncio.get_running_loop()

        logger.debug(f"Resolving {host}:{port}")
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(
                    host, port, family=self.family, type=socket.SOCK_STREAM
                ),
                self.connect_timeout,
            )
        except socket.gaierror as exc:
            logger.error(f"Error resolving hostname {host}: {exc}")
            raise ConnectError(ConnectErrorReason.DNS_FAILURE, f"{host}: {exc}") from exc
        except asyncio.TimeoutError:
            logger.error(f"Timed out resolving hostname {host}")
            raise ConnectError(ConnectErrorReason.TIMEOUT, f"resolving {host}") from None

        if not infos:
            raise ConnectError(ConnectErrorReason.DNS_FAILURE, f"{host}: no addresses")

        if not self.try_all_addresses:
            infos = infos[:1]

        reason = ConnectErrorReason.REFUSED_OR_UNREACHABLE
        detail = ""
        for family, type_, proto, _canonname, sockaddr in infos:
            addr = sockaddr[0]
            try:
                transport, protocol = await asyncio.wait_for(
                    self._connect_sockaddr(loop, family, type_, proto, sockaddr),
                    self.connect_timeout,
                )
            except asyncio.TimeoutError:
                reason = ConnectErrorReason.TIMEOUT
                detail = f"connecting to {addr}:{port}"
                logger.warning(f"Connection to {addr}:{port} timed out")
                continue
            except OSError as exc:
                reason = ConnectErrorReason.REFUSED_OR_UNREACHABLE
                detail = f"{addr}:{port}: {exc}"
                logger.warning(f"Connection to {addr}:{port} was refused: {exc}")
                continue

            self._transport = transport
            self._protocol = protocol
            logger.debug(f"Connected to {host} via {addr}:{port}")
            return

        logger.error(f"Error connecting to broker at {host}:{port}")
        raise ConnectError(reason, detail)

    async def _connect_sockaddr(self, loop, family, type_, proto, sockaddr):
        """ Connect to the complete resolved socket address.

        The full sockaddr carries the scope id of IPv6 link-local addresses.
        """
        sock = socket.socket(family, type_, proto)
        try:
            sock.setblocking(False)
            await loop.sock_connect(sock, sockaddr)
            return await loop.create_connection(self.protocol_class, sock=sock)
        except BaseException:
            sock.close()
            raise

    async def send(self, data: bytes) -> None:
        if self._protocol is None:
            raise TransportError("Transport is not connected")
        try:
            self._protocol.write(data)
        except ConnectionError as exc:
            raise TransportError(f"Error writing to stream: {exc}") from exc
        # Allow the event loop to iterate so the write can be flushed.
        await asyncio.sleep(0)

    async def receive(self, max_bytes: int, timeout: float) -> bytes:
        if self._protocol is None:
            raise TransportError("Transport is not connected")
        try:
            return await self._protocol.read(max_bytes, timeout)
        except ConnectionAbortedError as exc:
            raise ConnectionClosedError(str(exc)) from exc
        except ConnectionError as exc:
            raise TransportError(f"Error reading from stream: {exc}") from exc

    def close(self) -> None:
        if self._protocol is not None:
            self._protocol.close()
        self._protocol = None
        self._transport = None
