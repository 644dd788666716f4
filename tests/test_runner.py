import asyncio
import logging
import os
import signal
import unittest
import unittest.mock
from stomplink.runner import run


def invalid_func():
    pass


async def valid_func():
    await asyncio.sleep(0.01)
    return 0


async def valid_finalize():
    pass


async def exception_func():
    await asyncio.sleep(0.01)
    raise Exception("Boom")


async def failing_callback_func():
    def boom():
        raise Exception("Boom")

    asyncio.get_running_loop().call_soon(boom)
    await asyncio.sleep(10)


async def sigint_func():
    await asyncio.sleep(0.1)
    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.sleep(10)


async def sigterm_func():
    await asyncio.sleep(0.1)
    os.kill(os.getpid(), signal.SIGTERM)
    await asyncio.sleep(10)


async def spawn_another_task():
    async def a_long_running_task():
        while True:
            await asyncio.sleep(0.05)

    asyncio.get_running_loop().create_task(a_long_running_task())
    await asyncio.sleep(0.1)


class RunnerTestCase(unittest.TestCase):
    def test_exception_is_raised_if_func_is_not_awaitable(self):
        with self.assertRaises(Exception) as exc:
            run(invalid_func)
        self.assertIn(
            "func must be a coroutine or a coroutine function", str(exc.exception)
        )

    def test_exception_is_raised_if_finalize_is_not_awaitable(self):
        with self.assertRaises(Exception) as exc:
            run(valid_func, finalize=invalid_func)
        self.assertIn(
            "finalize must be a coroutine or a coroutine function", str(exc.exception)
        )

    def test_valid_runner_func(self):
        self.assertEqual(run(valid_func), 0)
        self.assertEqual(run(valid_func()), 0)
        self.assertEqual(run(valid_func, finalize=valid_finalize), 0)
        self.assertEqual(run(valid_func, finalize=valid_finalize()), 0)

    def test_finalize_runs_when_func_raises(self):
        finalize_mock = unittest.mock.AsyncMock()
        with self.assertRaises(Exception) as exc:
            run(exception_func, finalize=finalize_mock())
        self.assertIn("Boom", str(exc.exception))
        finalize_mock.assert_awaited_once()

    def test_handle_callback_exceptions(self):
        finalize_mock = unittest.mock.AsyncMock()
        with self.assertLogs("stomplink.runner", level=logging.ERROR) as log:
            result = run(failing_callback_func, finalize=finalize_mock())
        self.assertIsNone(result)
        self.assertIn("Caught exception", log.output[0])
        finalize_mock.assert_awaited_once()

    def test_handle_signals(self):
        with self.assertLogs("stomplink.runner", level=logging.INFO) as log:
            self.assertIsNone(run(sigint_func))
        self.assertIn("Caught SIGINT", log.output[0])

        with self.assertLogs("stomplink.runner", level=logging.INFO) as log:
            self.assertIsNone(run(sigterm_func))
        self.assertIn("Caught SIGTERM", log.output[0])

    def test_pending_tasks_are_cancelled_when_func_completes(self):
        with self.assertLogs("stomplink.runner", level=logging.DEBUG) as log:
            run(spawn_another_task)
        self.assertTrue(
            any("Cancelling 1 pending tasks" in log_msg for log_msg in log.output)
        )


if __name__ == "__main__":
    unittest.main()
