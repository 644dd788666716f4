"""
The consumer application connects to a broker, subscribes to a destination
and waits until a fixed number of messages have been received.
"""

import asyncio
import logging
import sys

from typing import List

from stomplink.apps.common import (
    build_parser,
    configure_logging,
    parse_args,
    retry_backoff,
)
from stomplink.client import StompClient
from stomplink.config import parse_stomp_url
from stomplink.exceptions import (
    ExhaustedError,
    ProtocolError,
    SendFailed,
    TransportError,
)
from stomplink.runner import run
from stomplink.supervisor import SleepType, connect_with_retry
from stomplink.transport import TcpTransport

logger = logging.getLogger(__name__)


async def consume(
    client: StompClient,
    count: int,
    poll_interval: float = 0.1,
    sleep: SleepType = asyncio.sleep,
) -> List[str]:
    """ Poll the client until count messages have been received.

    An undecodable frame is logged and polling continues. Transport errors
    propagate to the caller.

    :returns: The received message bodies in arrival order.
    """
    messages = []  # type: List[str]
    while len(messages) < count:
        try:
            message = await client.poll_message()
        except ProtocolError as exc:
            logger.error(f"Discarded undecodable data from broker: {exc}")
            continue

        if message is None:
            # Avoid busy waiting
            await sleep(poll_interval)
            continue

        messages.append(message)
        logger.info(f"Received message {len(messages)}/{count}: {message}")

    logger.info(f"All {count} messages received successfully!")
    return messages


async def run_consumer(client: StompClient, args) -> int:
    """ Connect, subscribe, receive the messages and disconnect. Returns an
    exit code.
    """
    broker = parse_stomp_url(args.url)
    try:
        await connect_with_retry(
            client,
            broker.host,
            broker.port,
            max_attempts=args.max_attempts,
            backoff=retry_backoff(args),
        )
    except ExhaustedError as exc:
        logger.error(f"Failed to connect to broker: {exc}")
        return 1

    try:
        await client.subscribe(args.destination)
    except SendFailed as exc:
        logger.error(f"Failed to subscribe to {args.destination}: {exc}")
        return 1

    logger.info(f"Waiting for {args.count} messages from {args.destination}")
    try:
        messages = await consume(client, args.count, args.poll_interval)
    except TransportError as exc:
        logger.error(f"Connection to broker lost: {exc}")
        return 1

    logger.info(f"Total messages received: {len(messages)}")
    logger.info("Shutting down gracefully...")
    await client.disconnect()
    logger.info("Consumer application completed successfully")
    return 0


def main(argv=None) -> int:
    parser = build_parser("STOMP Consumer")
    parser.add_argument(
        "--poll-interval",
        metavar="<seconds>",
        type=float,
        default=0.1,
        help="Seconds to wait after a poll that returned no message. "
        "Default is 0.1.",
    )
    args = parse_args(parser, argv)
    configure_logging(args.log_level)

    broker = parse_stomp_url(args.url)
    client = StompClient(TcpTransport(), login=broker.login, passcode=broker.passcode)

    logger.info("Starting Python Consumer Application")
    exit_code = run(run_consumer(client, args), finalize=client.disconnect)
    return 1 if exit_code is None else exit_code


if __name__ == "__main__":
    sys.exit(main())
