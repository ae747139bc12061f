"""Abstract base class for event loop drivers."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from typing import Any

from async_testcase.models.loop_info import LoopInfo

type ErrorHandler = Callable[[BaseException], None]
type Watcher = asyncio.Handle | asyncio.Future[Any]


class EventLoopDriver(ABC):
    """Scheduling and introspection surface of the loop tests run on.

    The runner only talks to the loop through this interface so that it can
    be exercised against a fake implementation.
    """

    @abstractmethod
    def spawn[T](self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        """Schedule a coroutine as an independent unit of work."""

    @abstractmethod
    def delay(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        """Invoke the callback once after the given number of milliseconds."""

    @abstractmethod
    def cancel(self, watcher: Watcher) -> None:
        """Cancel a delayed callback or a task."""

    @abstractmethod
    def unreference(self, watcher: Watcher) -> None:
        """Exclude a watcher from the referenced watcher count."""

    @abstractmethod
    def reference(self, watcher: Watcher) -> None:
        """Count a previously unreferenced watcher as referenced again."""

    @abstractmethod
    def set_error_handler(self, handler: ErrorHandler | None) -> None:
        """Install the loop-wide handler for uncaught errors.

        Args:
            handler: Called with every exception surfacing from the loop, or
                None to restore the default behaviour.

        """

    @abstractmethod
    def clear(self) -> None:
        """Remove every pending watcher from the loop."""

    @abstractmethod
    def get_info(self) -> LoopInfo:
        """Take a snapshot of the watchers currently pending on the loop."""

    @abstractmethod
    def dump(self) -> str | None:
        """Describe the pending watchers, or None if tracing is disabled."""

    @abstractmethod
    def run[T](self, coro: Coroutine[Any, Any, T]) -> T:
        """Drive a coroutine to completion from synchronous code."""

    @abstractmethod
    def close(self) -> None:
        """Release the loop and everything still scheduled on it."""
