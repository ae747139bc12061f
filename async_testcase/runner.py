"""Runs a single async test under timeout and event loop hygiene rules."""

import asyncio
import gc
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import Mock

import pytest

from async_testcase.callbacks import CallbackExpectation
from async_testcase.config import TRACE_WATCHERS_ENV
from async_testcase.drivers.base import EventLoopDriver
from async_testcase.errors import (
    LoopCaughtException,
    RuntimeTooShortFailure,
    TimeoutFailure,
    WatcherLeakFailure,
)
from async_testcase.models.options import InvocationOptions
from async_testcase.sink import CompletionSink

log = logging.getLogger(__name__)

RUNTIME_PRECISION = 2

# pytest.xfail raises a subclass of the fail exception
PYTEST_OUTCOMES = (pytest.fail.Exception, pytest.skip.Exception)

type Cleanup = Callable[[], Awaitable[Any] | None]


class _CarriedOutcome(Exception):
    """Carries a pytest outcome exception out of the test body task."""

    def __init__(self, outcome: BaseException) -> None:
        super().__init__(outcome)
        self.outcome = outcome


@dataclass(kw_only=True)
class TestInvocation:
    """One execution attempt of a single async test.

    The invocation owns a completion sink shared by three concurrent paths:
    the test body, the loop error handler and the optional timeout. Whichever
    writes to it first decides the outcome. Whatever happens, the loop is
    cleared once the invocation is over so the next test starts clean.

    Usage::

        invocation = TestInvocation(name="test_x", driver=driver)
        invocation.set_up()
        invocation.set_timeout(100)
        result = driver.run(invocation.run(body))
    """

    __test__ = False

    name: str
    driver: EventLoopDriver
    minimum_runtime: int | None = field(default=None, init=False)
    timeout: int | None = field(default=None, init=False)
    ignore_watchers: bool = field(default=False, init=False)
    include_unreferenced_watchers: bool = field(default=False, init=False)
    started_at: float | None = field(default=None, init=False)
    _sink: CompletionSink[Any] | None = field(default=None, init=False, repr=False)
    _timeout_handle: asyncio.TimerHandle | None = field(
        default=None, init=False, repr=False
    )
    _cleanups: list[Cleanup] = field(default_factory=list, init=False, repr=False)
    _callbacks: list[CallbackExpectation] = field(
        default_factory=list, init=False, repr=False
    )

    def set_up(self) -> None:
        """Prepare the loop and the completion sink for this invocation."""
        self.driver.clear()
        # Extensions holding loop resources may only release them on collection
        gc.collect()

        self._sink = CompletionSink()
        self.driver.set_error_handler(self._on_loop_error)
        log.debug("Set up invocation of %s", self.name)

    def configure(self, options: InvocationOptions) -> None:
        """Apply per-test options, typically taken from the test's marker.

        The timeout is only recorded here. Its timer starts together with the
        test body, so slow fixtures do not count against it.
        """
        if options.timeout is not None:
            self.timeout = options.timeout
        if options.minimum_runtime is not None:
            self.set_minimum_runtime(options.minimum_runtime)
        self.ignore_watchers = not options.check_watchers
        self.include_unreferenced_watchers = options.include_unreferenced

    async def run(
        self,
        body: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run the test body and report exactly one outcome.

        Args:
            body: Test callable; an awaitable return value is awaited
            *args: Positional arguments passed to the body
            **kwargs: Keyword arguments passed to the body

        Returns:
            Whatever the body returned

        Raises:
            RuntimeError: If the invocation was not set up or already ran
            LoopCaughtException: If the loop reported an error first
            TimeoutFailure: If the time limit elapsed first
            RuntimeTooShortFailure: If the body finished too quickly
            WatcherLeakFailure: If watchers were left on the loop

        """
        sink = self._sink
        if sink is None:
            raise RuntimeError(
                f"set_up() must be called before running {self.name}"
            )
        if self.started_at is not None:
            raise RuntimeError(f"Invocation of {self.name} already ran")

        if self.timeout is not None and self._timeout_handle is None:
            self.set_timeout(self.timeout)

        self.started_at = time.monotonic()

        try:
            try:
                result, _ = await asyncio.gather(
                    self.driver.spawn(self._invoke(sink, body, args, kwargs)),
                    sink.wait(),
                )
            finally:
                await self._run_cleanups()
        except _CarriedOutcome as exc:
            self.ignore_loop_watchers()
            self._tear_down()
            raise exc.outcome from None
        except BaseException:
            # The loop state is unknown after a failure, leaks are not reported
            self.ignore_loop_watchers()
            self._tear_down()
            raise

        elapsed = time.monotonic() - self.started_at

        leak: WatcherLeakFailure | None = None
        try:
            self._tear_down()
        except WatcherLeakFailure as exc:
            leak = exc

        if self.minimum_runtime is not None:
            actual_runtime = int(round(round(elapsed, RUNTIME_PRECISION) * 1000))
            if actual_runtime < self.minimum_runtime:
                raise RuntimeTooShortFailure(self.minimum_runtime, actual_runtime)

        if leak is not None:
            raise leak

        for expectation in self._callbacks:
            expectation.verify()

        return result

    def abandon(self) -> None:
        """Release the loop when the body never ran, e.g. after a fixture error.

        Leaked watchers are not reported since no test code was run.
        """
        if self._sink is None or self.started_at is not None:
            return

        log.debug("Abandoning invocation of %s before its body ran", self.name)
        self.ignore_loop_watchers()
        try:
            self._tear_down()
        finally:
            self._sink = None

    def set_minimum_runtime(self, runtime: int) -> None:
        """Fail the test if it completes in less than ``runtime`` milliseconds."""
        if runtime < 1:
            raise ValueError("Minimum runtime must be at least 1ms")

        self.minimum_runtime = runtime

    def set_timeout(self, timeout: int) -> None:
        """Fail the test if it does not complete within ``timeout`` milliseconds.

        The timer is unreferenced so it never counts as a leaked watcher.
        Setting a new timeout replaces the previous one.
        """
        if timeout < 1:
            raise ValueError("Timeout must be at least 1ms")

        if self._timeout_handle is not None:
            self.driver.cancel(self._timeout_handle)

        self.timeout = timeout
        self._timeout_handle = self.driver.delay(
            timeout, lambda: self._on_timeout(timeout)
        )
        self.driver.unreference(self._timeout_handle)

    def check_loop_watchers(self) -> None:
        """Fail if referenced watchers are still enabled when the test ends."""
        self.ignore_watchers = False

    def ignore_loop_watchers(self) -> None:
        """Do not fail because of watchers left enabled when the test ends."""
        self.ignore_watchers = True

    def check_unreferenced_loop_watchers(self) -> None:
        """Fail if referenced or unreferenced watchers are left enabled."""
        self.ignore_watchers = False
        self.include_unreferenced_watchers = True

    def ignore_unreferenced_loop_watchers(self) -> None:
        """Do not count unreferenced watchers left enabled when the test ends."""
        self.include_unreferenced_watchers = False

    def add_cleanup(self, cleanup: Cleanup) -> None:
        """Register a callback run after the test body, before the final checks.

        Cleanups run in registration order on every exit path; coroutine
        functions are awaited.
        """
        self._cleanups.append(cleanup)

    def create_callback(
        self,
        invocation_count: int,
        return_callback: Callable[..., Any] | None = None,
    ) -> Mock:
        """Create a callback that must be invoked exactly ``invocation_count`` times.

        Args:
            invocation_count: Number of times the callback must be invoked
            return_callback: Computes the callback's return value from its
                arguments

        Returns:
            Mock object recording the invocations

        """
        expectation = CallbackExpectation(
            invocation_count=invocation_count, return_callback=return_callback
        )
        self._callbacks.append(expectation)
        return expectation.mock

    async def _invoke(
        self,
        sink: CompletionSink[Any],
        body: Callable[..., Any],
        args: Sequence[Any],
        kwargs: Mapping[str, Any],
    ) -> Any:
        log.debug("Running body of %s", self.name)
        try:
            result = body(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            sink.resolve(result)
            return result
        except PYTEST_OUTCOMES as exc:
            raise _CarriedOutcome(exc) from exc
        finally:
            sink.resolve(None)

    async def _run_cleanups(self) -> None:
        for cleanup in self._cleanups:
            result = cleanup()
            if inspect.isawaitable(result):
                await result

    def _on_loop_error(self, exception: BaseException) -> None:
        sink = self._sink
        if sink is None or sink.done:
            log.warning(
                "Ignoring loop error raised after the outcome of %s was decided: %r",
                self.name,
                exception,
            )
            return

        sink.fail(LoopCaughtException(exception))

    def _on_timeout(self, timeout: int) -> None:
        # Errors after the timeout are not attributed to this test
        self.driver.set_error_handler(None)

        sink = self._sink
        if sink is None or sink.done:
            return

        details = self.driver.dump()
        if details is None:
            details = (
                f"Set {TRACE_WATCHERS_ENV}=true as environment variable "
                "to trace watchers keeping the loop running."
            )

        log.info("Test %s exceeded its %dms time limit", self.name, timeout)
        sink.fail(TimeoutFailure(timeout, details))

    def _tear_down(self) -> None:
        try:
            if self._timeout_handle is not None:
                self.driver.cancel(self._timeout_handle)
                return

            if self.ignore_watchers:
                return

            info = self.driver.get_info()
            count = info.enabled_watchers.total(
                include_unreferenced=self.include_unreferenced_watchers
            )
            if count > 0:
                raise WatcherLeakFailure(self.name, info.model_dump_json(indent=4))
        finally:
            self.driver.clear()
            self.driver.set_error_handler(None)
            log.debug("Tore down invocation of %s", self.name)
