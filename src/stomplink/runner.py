import asyncio
import inspect
import logging

from asyncio import AbstractEventLoop
from signal import SIGTERM, SIGINT
from typing import Any, Awaitable, Optional


logger = logging.getLogger(__name__)


def run(
    func: Optional[Awaitable[Any]],
    *,
    finalize: Optional[Awaitable[None]] = None,
    loop: AbstractEventLoop = None,
) -> Any:
    """ Configure an event loop to react to signals and exceptions then run
    the provided coroutine until it completes.

    This function provides the boilerplate needed to run the producer and
    consumer applications. It registers signal handlers for SIGINT and
    SIGTERM that cancel the main coroutine. It registers a global exception
    handler that cancels the main coroutine when a task that was spun off
    fails, so the problem is reported as soon as it occurs. Whichever way the
    main coroutine ends, the finalize coroutine is run so that connections
    are released.

    :param func: A coroutine, or a coroutine function that takes no
      arguments, that performs the application's work.

    :param finalize: An optional coroutine, or coroutine function that takes
      no arguments, to run when shutting down. Use this to perform graceful
      cleanup such as disconnecting from the broker.

    :param loop: An optional event loop to run. If not supplied a new event
      loop is created. The loop is closed on return.

    :returns: The value returned by func, or None if it was cancelled.
    """
    logger.debug("Application runner starting")

    if not (inspect.isawaitable(func) or inspect.iscoroutinefunction(func)):
        raise Exception(
            "func must be a coroutine or a coroutine function "
            f"that takes no arguments, got {func}"
        )

    if finalize:
        if not (inspect.isawaitable(finalize) or inspect.iscoroutinefunction(finalize)):
            raise Exception(
                "finalize must be a coroutine or a coroutine function "
                f"that takes no arguments, got {finalize}"
            )

    # Use a supplied loop unless it is closed (which can happen in unit tests).
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    if inspect.iscoroutinefunction(func):
        func = func()  # type: ignore
    main_task = asyncio.ensure_future(func, loop=loop)  # type: ignore

    def signal_handler(sig):
        logger.info(f"Caught {sig.name}, stopping.")
        main_task.cancel()

    loop.add_signal_handler(SIGINT, signal_handler, SIGINT)
    loop.add_signal_handler(SIGTERM, signal_handler, SIGTERM)

    def exception_handler(loop, context):
        logger.error(f"Caught exception: {context}")
        main_task.cancel()

    loop.set_exception_handler(exception_handler)

    result = None
    try:
        result = loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        logger.info("Application cancelled")
    finally:
        logger.debug("Application shutdown sequence starting")
        loop.remove_signal_handler(SIGINT)
        loop.remove_signal_handler(SIGTERM)

        if finalize:
            if inspect.iscoroutinefunction(finalize):
                finalize = finalize()  # type: ignore
            assert finalize is not None
            loop.run_until_complete(finalize)

        # Shutdown any outstanding tasks that are left running
        pending_tasks = asyncio.all_tasks(loop=loop)
        if pending_tasks:
            logger.debug(f"Cancelling {len(pending_tasks)} pending tasks.")
            for task in pending_tasks:
                logger.debug(f"Cancelling task: {task}")
                task.cancel()
            loop.run_until_complete(
                asyncio.gather(*pending_tasks, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        logger.debug("Application shutdown sequence complete")

        asyncio.set_event_loop(None)
        loop.close()

        logger.debug("Application runner stopped")

    return result
