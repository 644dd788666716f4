import abc


class BaseTransport(abc.ABC):
    """
    This class defines the interface a client expects of a transport.

    A transport carries raw bytes over a single bidirectional stream. It
    knows nothing about frames. A transport instance may be connected,
    closed and connected again.
    """

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        """ Return True if the transport holds an open connection """

    @abc.abstractmethod
    async def connect(self, host: str, port: int) -> None:
        """ Open a connection to host:port.

        :raises ConnectError: if no connection could be established.
        """

    @abc.abstractmethod
    async def send(self, data: bytes) -> None:
        """ Write all of data to the stream.

        :raises TransportError: if the data could not be written.
        """

    @abc.abstractmethod
    async def receive(self, max_bytes: int, timeout: float) -> bytes:
        """ Return up to max_bytes bytes from the stream.

        Waits at most timeout seconds for data to arrive and returns an empty
        bytes object if none did.

        :raises ConnectionClosedError: if the peer closed the connection and
          no buffered bytes remain.

        :raises TransportError: if reading from the stream failed.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """ Close the connection.

        Must be safe to call repeatedly and on a transport that never
        connected.
        """
