"""Base class for class-based async tests."""

from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import Mock

from async_testcase.runner import TestInvocation


class AsyncTestCase:
    """Base class giving test methods access to their invocation.

    The plugin binds the running invocation to ``async_case`` before any
    fixture is set up, so the helpers below may be used from fixtures,
    ``setup_method`` and the test body alike::

        class TestServer(AsyncTestCase):
            async def test_accepts_connection(self) -> None:
                self.set_timeout(500)
                ...

            async def cleanup(self) -> None:
                await self.server.close()
    """

    async_case: TestInvocation

    def cleanup(self) -> Awaitable[None] | None:
        """Execute any needed cleanup before loop watchers are checked."""
        return None

    def set_minimum_runtime(self, runtime: int) -> None:
        """Fail the test if the loop does not run for at least ``runtime`` ms."""
        self.async_case.set_minimum_runtime(runtime)

    def set_timeout(self, timeout: int) -> None:
        """Fail the test after ``timeout`` ms."""
        self.async_case.set_timeout(timeout)

    def check_loop_watchers(self) -> None:
        self.async_case.check_loop_watchers()

    def ignore_loop_watchers(self) -> None:
        self.async_case.ignore_loop_watchers()

    def check_unreferenced_loop_watchers(self) -> None:
        self.async_case.check_unreferenced_loop_watchers()

    def ignore_unreferenced_loop_watchers(self) -> None:
        self.async_case.ignore_unreferenced_loop_watchers()

    def create_callback(
        self,
        invocation_count: int,
        return_callback: Callable[..., Any] | None = None,
    ) -> Mock:
        """Create a callback that must be invoked exactly ``invocation_count`` times."""
        return self.async_case.create_callback(invocation_count, return_callback)
