"""
This module contains the bounded retry logic used to establish a broker
session before handing the client over to application code.
"""

import asyncio
import itertools
import logging
import random

from typing import Awaitable, Callable, Iterable, Iterator, Union

from stomplink.client import StompClient
from stomplink.exceptions import ConnectError, ExhaustedError, HandshakeFailed

logger = logging.getLogger(__name__)


DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_BACKOFF = 3.0

# The percentage of jitter to apply to exponential backoff times
BACKOFF_JITTER = 0.05

BackoffType = Union[float, Iterable[float]]
SleepType = Callable[[float], Awaitable[None]]


def exponential_backoff(
    initial: float = 1.0, maximum: float = 10.0, jitter: float = BACKOFF_JITTER
) -> Iterator[float]:
    """ Yield an exponentially increasing sequence of delays up to maximum.

    A small amount of jitter is added to each delay, to help in situations
    where many clients simultaneously attempt to reconnect to a restarted
    broker. E.g. 1.0, 2.5, 4.75, 8.1, 10.0, 10.0...

    :param initial: The first delay in seconds.

    :param maximum: The largest delay in seconds, before jitter.

    :param jitter: The fraction of each delay used as the jitter range.
    """
    backoff = initial
    while True:
        spread = backoff * jitter
        yield random.uniform(max(0, backoff - spread), backoff + spread)
        backoff = min(maximum, backoff + (backoff / 2) + 1)


def _schedule(backoff: BackoffType) -> Iterator[float]:
    if isinstance(backoff, (int, float)):
        return itertools.repeat(float(backoff))

    def _repeat_last(delays):
        delay = 0.0
        for delay in delays:
            yield delay
        while True:
            yield delay

    return _repeat_last(backoff)


async def connect_with_retry(
    client: StompClient,
    host: str,
    port: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: BackoffType = DEFAULT_BACKOFF,
    *,
    vhost: str = None,
    sleep: SleepType = asyncio.sleep,
) -> None:
    """ Connect a client to a broker, retrying failed attempts.

    Each attempt opens the transport and performs the STOMP handshake. A
    delay is applied between attempts but never after the final one.

    :param client: A client in the Disconnected state.

    :param host: The broker host.

    :param port: The broker port.

    :param max_attempts: The maximum number of connection attempts.

    :param backoff: The delay in seconds between attempts, or an iterable of
      delays. When an iterable runs out its last value is reused.

    :param vhost: The virtual host to name in the CONNECT frame. Defaults to
      host.

    :param sleep: The coroutine function used to wait between attempts.

    :raises ExhaustedError: if no attempt succeeded. The last attempt's
      failure is chained as the cause.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    delays = _schedule(backoff)
    last_error = None

    for attempt in range(1, max_attempts + 1):
        logger.info(f"Connection attempt {attempt}/{max_attempts} to {host}:{port}")
        try:
            await client.connect(host, port, vhost=vhost)
            return
        except (ConnectError, HandshakeFailed) as exc:
            last_error = exc
            logger.warning(f"Connection attempt {attempt}/{max_attempts} failed: {exc}")

        if attempt < max_attempts:
            delay = next(delays)
            logger.info(f"Retrying in {delay:.1f} seconds...")
            await sleep(delay)

    logger.error(f"Failed to connect to {host}:{port} after {max_attempts} attempts")
    raise ExhaustedError(max_attempts, last_error) from last_error
