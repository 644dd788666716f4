import argparse
import logging

from stomplink.config import build_stomp_url, default_destination
from stomplink.supervisor import (
    DEFAULT_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    BackoffType,
    exponential_backoff,
)


LOG_FORMAT = "%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_RETRY_INTERVAL = 30.0


def build_parser(description: str) -> argparse.ArgumentParser:
    """ Return an argument parser holding the options shared by the apps """
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--url",
        metavar="<url>",
        type=str,
        default=None,
        help="The broker URL, e.g. stomp://activemq:61613. Defaults to a URL "
        "built from the STOMP_HOST, STOMP_PORT, STOMP_USER and STOMP_PASS "
        "environment variables.",
    )
    parser.add_argument(
        "--destination",
        metavar="<destination>",
        type=str,
        default=default_destination(),
        help="The queue or topic to use. Default is $STOMP_DESTINATION or "
        "'/queue/ProjectQueue'.",
    )
    parser.add_argument(
        "--count",
        metavar="<count>",
        type=int,
        default=10,
        help="The number of messages to handle. Default is 10.",
    )
    parser.add_argument(
        "--max-attempts",
        metavar="<attempts>",
        type=int,
        default=DEFAULT_MAX_ATTEMPTS,
        help=f"The number of connection attempts. Default is {DEFAULT_MAX_ATTEMPTS}.",
    )
    parser.add_argument(
        "--retry-interval",
        metavar="<seconds>",
        type=float,
        default=DEFAULT_BACKOFF,
        help="Seconds between connection attempts, or the first delay of an "
        f"exponential backoff. Default is {DEFAULT_BACKOFF}.",
    )
    parser.add_argument(
        "--backoff",
        type=str,
        choices=["fixed", "exponential"],
        default="fixed",
        help="How the delay between connection attempts changes. Default is "
        "'fixed'.",
    )
    parser.add_argument(
        "--max-retry-interval",
        metavar="<seconds>",
        type=float,
        default=MAX_RETRY_INTERVAL,
        help="The largest delay of an exponential backoff. Default is "
        f"{MAX_RETRY_INTERVAL}.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "error"],
        default="info",
        help="Logging level. Default is 'info'.",
    )
    return parser


def parse_args(parser: argparse.ArgumentParser, argv=None) -> argparse.Namespace:
    args = parser.parse_args(argv)
    if args.url is None:
        args.url = build_stomp_url()
    return args


def configure_logging(level: str) -> None:
    logging.basicConfig(
        format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, level=getattr(logging, level.upper())
    )


def retry_backoff(args: argparse.Namespace) -> BackoffType:
    """ Return the delay schedule selected by the retry options """
    if args.backoff == "exponential":
        return exponential_backoff(
            initial=args.retry_interval, maximum=args.max_retry_interval
        )
    return args.retry_interval
