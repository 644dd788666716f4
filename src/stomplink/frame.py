"""
This module implements the STOMP frame model and its wire codec.

A STOMP frame is a command line, zero or more header lines, a blank line, an
optional body and a single NUL terminator byte.

.. code-block:: console

    COMMAND\\n
    key:value\\n
    ...
    \\n
    body ...\\x00

No escaping of ``:``, ``\\n`` or ``\\\\`` is applied to header values.
"""

import enum
import logging

from typing import List, Optional, Sequence, Tuple, Union

from stomplink.exceptions import ProtocolError, ProtocolErrorReason

logger = logging.getLogger(__name__)


NULL = b"\x00"
LF = b"\n"
CR = b"\r"
EOL_BYTES = b"\r\n"

CONTENT_LENGTH_HEADER = "content-length"

MAX_FRAME_SIZE = 16 * 1024 * 1024  # limit declared body size as a precaution

HeaderList = List[Tuple[str, str]]


class Command(enum.Enum):
    CONNECT = "CONNECT"
    CONNECTED = "CONNECTED"
    SUBSCRIBE = "SUBSCRIBE"
    SEND = "SEND"
    MESSAGE = "MESSAGE"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


class Frame(object):
    """ A single STOMP protocol unit.

    Headers are held as an ordered list of (key, value) pairs so that the
    order they were added in (or received in) is preserved on the wire.
    """

    __slots__ = ("command", "headers", "body")

    def __init__(
        self,
        command: Command,
        headers: Sequence[Tuple[str, str]] = None,
        body: Union[bytes, str] = b"",
    ):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.command = command
        self.headers = list(headers) if headers else []  # type: HeaderList
        self.body = bytes(body)

    def get_header(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """ Return the value of the first header matching key """
        for k, v in self.headers:
            if k == key:
                return v
        return default

    @property
    def text(self) -> str:
        """ Return the body decoded as UTF-8 text """
        return self.body.decode("utf-8", errors="replace")

    def __eq__(self, other):
        if not isinstance(other, Frame):
            return NotImplemented
        return (
            self.command == other.command
            and self.headers == other.headers
            and self.body == other.body
        )

    def __repr__(self):
        return (
            f"Frame(command={self.command.value}, headers={self.headers}, "
            f"body={self.body!r})"
        )


def _check_header_token(token: str, is_key: bool) -> None:
    if "\n" in token or "\x00" in token or (is_key and ":" in token):
        raise ProtocolError(
            ProtocolErrorReason.MALFORMED_HEADER, f"invalid header token {token!r}"
        )


def encode(frame: Frame) -> bytes:
    """ Serialize a frame into its wire format.

    :param frame: The frame to encode.

    :returns: The frame bytes, including the trailing NUL terminator.
    """
    lines = [frame.command.value]
    for key, value in frame.headers:
        key, value = str(key), str(value)
        _check_header_token(key, is_key=True)
        _check_header_token(value, is_key=False)
        lines.append(f"{key}:{value}")
    head = "\n".join(lines) + "\n\n"
    return head.encode("utf-8") + frame.body + NULL


def _content_length(headers: HeaderList) -> Optional[int]:
    for key, value in headers:
        if key == CONTENT_LENGTH_HEADER:
            # Only the first occurrence counts. A value that is not a
            # non-negative integer falls back to NUL delimiting.
            return int(value) if value.isascii() and value.isdigit() else None
    return None


def _read_line(data, start: int, limit: int) -> Tuple[Optional[str], int]:
    """ Return the line starting at start (without EOL) and the index just
    past its LF, or (None, start) if the line has not fully arrived yet.
    """
    eol = data.find(LF, start)
    if eol == -1:
        if len(data) - start > limit:
            raise ProtocolError(
                ProtocolErrorReason.FRAME_TOO_LARGE,
                f"no line terminator within {limit} bytes",
            )
        return None, start
    line = bytes(data[start:eol])
    if line.endswith(CR):
        line = line[:-1]
    return line.decode("utf-8", errors="replace"), eol + 1


def decode(
    data: Union[bytes, bytearray],
    offset: int = 0,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> Optional[Tuple[Frame, int]]:
    """ Extract one frame from data starting at offset.

    Any end-of-line bytes that precede the command (heart-beats or the
    trailing newline some brokers put after the NUL) are skipped and counted
    as consumed.

    :param data: A buffer that may hold a partial frame, exactly one frame or
      several frames.

    :param offset: The index in data at which the frame starts.

    :param max_frame_size: The largest body (and the largest command line or
      header block) that will be accepted.

    :returns: A two-item tuple containing the frame and the number of bytes
      consumed from offset, or None when data does not yet hold a complete
      frame.

    :raises ProtocolError: if the bytes can not form a valid frame.
    """
    pos = offset
    end = len(data)
    while pos < end and data[pos] in EOL_BYTES:
        pos += 1
    if pos == end:
        return None

    header_start = pos
    command_token, pos = _read_line(data, pos, max_frame_size)
    if command_token is None:
        return None
    try:
        command = Command(command_token)
    except ValueError:
        raise ProtocolError(
            ProtocolErrorReason.UNKNOWN_COMMAND, repr(command_token)
        ) from None

    headers = []  # type: HeaderList
    while True:
        line, pos = _read_line(data, pos, max_frame_size - (pos - header_start))
        if line is None:
            return None
        if not line:
            break
        key, sep, value = line.partition(":")
        if not sep:
            raise ProtocolError(ProtocolErrorReason.MALFORMED_HEADER, repr(line))
        headers.append((key, value))

    body_start = pos
    content_length = _content_length(headers)
    if content_length is not None:
        if content_length > max_frame_size:
            raise ProtocolError(
                ProtocolErrorReason.FRAME_TOO_LARGE,
                f"declared content-length {content_length} exceeds {max_frame_size}",
            )
        body_end = body_start + content_length
        if end < body_end + 1:
            return None
        if data[body_end] != 0:
            raise ProtocolError(
                ProtocolErrorReason.MISSING_TERMINATOR,
                f"expected NUL after {content_length} body bytes",
            )
    else:
        body_end = data.find(NULL, body_start)
        if body_end == -1:
            if end - body_start > max_frame_size:
                raise ProtocolError(
                    ProtocolErrorReason.FRAME_TOO_LARGE,
                    f"no frame terminator within {max_frame_size} bytes",
                )
            return None

    frame = Frame(command, headers, bytes(data[body_start:body_end]))
    return frame, body_end + 1 - offset


class FrameBuffer(object):
    """
    A reassembly buffer for frames arriving on a stream.

    Stream reads never align with frame boundaries. Bytes are accumulated
    here and complete frames are extracted one at a time, leaving any
    trailing bytes that belong to a later frame in the buffer.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    def __len__(self):
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        """ Append bytes received from the stream """
        self._buffer.extend(data)

    def next_frame(self) -> Optional[Frame]:
        """ Return the next complete frame, or None if more bytes are needed.

        :raises ProtocolError: if the buffered bytes are not a valid frame. The
          buffer contents are left untouched so the caller can decide whether
          to discard them.
        """
        result = decode(self._buffer, 0, self.max_frame_size)
        if result is None:
            return None
        frame, consumed = result
        del self._buffer[:consumed]
        logger.debug(
            f"Extracted {frame.command.value} frame ({consumed} bytes), "
            f"{len(self._buffer)} bytes remain buffered"
        )
        return frame

    def clear(self) -> None:
        """ Discard all buffered bytes """
        self._buffer.clear()
