"""
The producer application connects to a broker and sends a fixed number of
text messages to a destination, pausing between messages.
"""

import asyncio
import datetime
import logging
import sys

from stomplink.apps.common import (
    build_parser,
    configure_logging,
    parse_args,
    retry_backoff,
)
from stomplink.client import StompClient
from stomplink.config import parse_stomp_url
from stomplink.exceptions import ExhaustedError, SendFailed
from stomplink.runner import run
from stomplink.supervisor import SleepType, connect_with_retry
from stomplink.transport import TcpTransport

logger = logging.getLogger(__name__)


def generate_message_id(index: int, now: datetime.datetime = None) -> str:
    """ Return a message identifier such as MSG_20240101_093000_INDEX_1 """
    now = now or datetime.datetime.now()
    return f"MSG_{now:%Y%m%d_%H%M%S}_INDEX_{index}"


async def produce(
    client: StompClient,
    destination: str,
    count: int,
    interval: float = 1.0,
    sleep: SleepType = asyncio.sleep,
) -> int:
    """ Send count messages to destination.

    A failed send is logged and the remaining messages are still attempted.

    :returns: The number of messages sent successfully.
    """
    logger.info(f"Sending {count} messages to {destination}")
    sent = 0
    for i in range(1, count + 1):
        message = f"Hello from Python Producer - {generate_message_id(i)}"
        logger.info(f"Sending message {i}/{count}: {message}")
        try:
            await client.send_message(destination, message)
        except SendFailed as exc:
            logger.error(f"Failed to send message {i}: {exc}")
        else:
            sent += 1
            logger.info(f"Message {i} sent successfully")

        if i < count:
            await sleep(interval)
    return sent


async def run_producer(client: StompClient, args) -> int:
    """ Connect, send the messages and disconnect. Returns an exit code. """
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

    await produce(client, args.destination, args.count, args.interval)

    logger.info("All messages sent. Disconnecting...")
    await client.disconnect()
    logger.info("Producer application completed successfully")
    return 0


def main(argv=None) -> int:
    parser = build_parser("STOMP Producer")
    parser.add_argument(
        "--interval",
        metavar="<seconds>",
        type=float,
        default=1.0,
        help="Seconds to wait between messages. Default is 1.0.",
    )
    args = parse_args(parser, argv)
    configure_logging(args.log_level)

    broker = parse_stomp_url(args.url)
    client = StompClient(TcpTransport(), login=broker.login, passcode=broker.passcode)

    logger.info("Starting Python Producer Application")
    exit_code = run(run_producer(client, args), finalize=client.disconnect)
    return 1 if exit_code is None else exit_code


if __name__ == "__main__":
    sys.exit(main())
