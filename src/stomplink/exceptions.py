"""
This module contains the exceptions raised by stomplink.
"""

import enum


class StompError(Exception):
    """ Base class for all stomplink errors """


class InvalidStateError(StompError):
    """ Raised when an operation is called while the client is in a state
    that does not permit it.
    """


class ProtocolErrorReason(enum.Enum):
    UNKNOWN_COMMAND = "unknown command"
    MALFORMED_HEADER = "malformed header"
    FRAME_TOO_LARGE = "frame too large"
    MISSING_TERMINATOR = "missing frame terminator"


class ProtocolError(StompError):
    """ Raised when bytes on the stream can not be parsed into a frame. """

    def __init__(self, reason: ProtocolErrorReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        msg = reason.value
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ConnectErrorReason(enum.Enum):
    DNS_FAILURE = "dns failure"
    REFUSED_OR_UNREACHABLE = "refused or unreachable"
    TIMEOUT = "timeout"


class ConnectError(StompError):
    """ Raised when a transport can not establish a connection. """

    def __init__(self, reason: ConnectErrorReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        msg = reason.value
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class TransportError(StompError):
    """ Raised when reading from or writing to an established connection fails. """


class ConnectionClosedError(TransportError):
    """ Raised when the peer has closed the connection. """


class SendFailed(TransportError):
    """ Raised when a frame could not be written to the transport. """


class HandshakeFailed(StompError):
    """ Raised when the CONNECT / CONNECTED exchange does not complete. """


class ExhaustedError(StompError):
    """ Raised when the connection retry budget has been used up.

    The failure of the final attempt is available as ``last_error`` and is
    also chained as the exception cause.
    """

    def __init__(self, attempts: int, last_error: Exception = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to connect after {attempts} attempts. Last error: {last_error}"
        )
