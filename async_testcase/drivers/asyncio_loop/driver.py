"""Event loop driver backed by a standard asyncio event loop."""

import asyncio
import logging
import weakref
from collections.abc import Callable, Coroutine, Sequence
from typing import Any, Self

from async_testcase.config import AsyncTestCaseConfig
from async_testcase.drivers.base import ErrorHandler, EventLoopDriver, Watcher
from async_testcase.models.loop_info import LoopInfo, WatcherCounts

log = logging.getLogger(__name__)


class AsyncioDriver(EventLoopDriver):
    """Drives and inspects an ``asyncio`` event loop.

    Watchers are the loop's pending timer handles, the tasks that are not
    done (other than the one currently running), and the registered reader
    and writer callbacks. Asyncio has no notion of unreferenced watchers, so
    the driver keeps a weak set of the ones marked through ``unreference``.

    The timer heap and the selector map are private to the standard loop
    implementations; loops without them simply report no such watchers.
    """

    def __init__(
        self, loop: asyncio.AbstractEventLoop, *, trace: bool = False
    ) -> None:
        self.loop = loop
        self.trace = trace
        self._unreferenced: weakref.WeakSet[Watcher] = weakref.WeakSet()
        if trace:
            # Debug mode records where handles and tasks were created
            loop.set_debug(True)

    @classmethod
    def from_config(cls, config: AsyncTestCaseConfig) -> Self:
        """Create a driver on a fresh event loop."""
        return cls(asyncio.new_event_loop(), trace=config.trace_watchers)

    def spawn[T](self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        return self.loop.create_task(coro)

    def delay(
        self, delay_ms: int, callback: Callable[[], None]
    ) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_ms / 1000, callback)

    def cancel(self, watcher: Watcher) -> None:
        watcher.cancel()
        self._unreferenced.discard(watcher)

    def unreference(self, watcher: Watcher) -> None:
        self._unreferenced.add(watcher)

    def reference(self, watcher: Watcher) -> None:
        self._unreferenced.discard(watcher)

    def set_error_handler(self, handler: ErrorHandler | None) -> None:
        if handler is None:
            self.loop.set_exception_handler(None)
            return

        def exception_handler(
            loop: asyncio.AbstractEventLoop, context: dict[str, Any]
        ) -> None:
            exception = context.get("exception")
            if not isinstance(exception, BaseException):
                exception = RuntimeError(context.get("message", "Unhandled loop error"))
            handler(exception)

        self.loop.set_exception_handler(exception_handler)

    def clear(self) -> None:
        timers = self._timers()
        tasks = self._tasks()
        readers, writers = self._io_watchers()
        log.debug(
            "Clearing loop: %d timer(s), %d task(s), %d reader(s), %d writer(s)",
            len(timers),
            len(tasks),
            len(readers),
            len(writers),
        )

        for timer in timers:
            timer.cancel()
        for task in tasks:
            task.cancel()
        for fd, _ in readers:
            self.loop.remove_reader(fd)
        for fd, _ in writers:
            self.loop.remove_writer(fd)

        self._unreferenced.clear()

    def get_info(self) -> LoopInfo:
        timers = self._timers()
        tasks = self._tasks()
        readers, writers = self._io_watchers()

        watchers: list[Watcher] = [*timers, *tasks]
        unreferenced = sum(1 for watcher in watchers if watcher in self._unreferenced)
        total = len(watchers) + len(readers) + len(writers)

        return LoopInfo(
            delay=len(timers),
            task=len(tasks),
            on_readable=len(readers),
            on_writable=len(writers),
            enabled_watchers=WatcherCounts(
                referenced=total - unreferenced,
                unreferenced=unreferenced,
            ),
            running=self.loop.is_running(),
        )

    def dump(self) -> str | None:
        if not self.trace:
            return None

        readers, writers = self._io_watchers()
        lines = ["Pending watchers:"]
        lines.extend(f"  delay: {self._describe(t)}" for t in self._timers())
        lines.extend(f"  task: {self._describe(t)}" for t in self._tasks())
        lines.extend(f"  on_readable: fd={fd} {handle!r}" for fd, handle in readers)
        lines.extend(f"  on_writable: fd={fd} {handle!r}" for fd, handle in writers)
        if len(lines) == 1:
            lines.append("  (none)")
        return "\n".join(lines)

    def run[T](self, coro: Coroutine[Any, Any, T]) -> T:
        return self.loop.run_until_complete(coro)

    def close(self) -> None:
        if self.loop.is_closed():
            return

        tasks = self._tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            self.loop.run_until_complete(
                asyncio.gather(*tasks, return_exceptions=True)
            )
        self.loop.run_until_complete(self.loop.shutdown_asyncgens())
        self.loop.close()
        log.debug("Closed event loop %r", self.loop)

    def _describe(self, watcher: Watcher) -> str:
        suffix = " (unreferenced)" if watcher in self._unreferenced else ""
        return f"{watcher!r}{suffix}"

    def _timers(self) -> Sequence[asyncio.TimerHandle]:
        scheduled: Sequence[asyncio.TimerHandle] = getattr(self.loop, "_scheduled", ())
        return [timer for timer in scheduled if not timer.cancelled()]

    def _tasks(self) -> Sequence[asyncio.Task[Any]]:
        if self.loop.is_closed():
            return []
        current = asyncio.current_task(self.loop)
        return [task for task in asyncio.all_tasks(self.loop) if task is not current]

    def _io_watchers(
        self,
    ) -> tuple[list[tuple[int, asyncio.Handle]], list[tuple[int, asyncio.Handle]]]:
        readers: list[tuple[int, asyncio.Handle]] = []
        writers: list[tuple[int, asyncio.Handle]] = []

        selector = getattr(self.loop, "_selector", None)
        if selector is None:
            return readers, writers

        self_pipe = getattr(self.loop, "_ssock", None)
        self_pipe_fd = self_pipe.fileno() if self_pipe is not None else None

        for key in selector.get_map().values():
            if key.fd == self_pipe_fd:
                continue
            reader, writer = key.data
            if reader is not None and not reader.cancelled():
                readers.append((key.fd, reader))
            if writer is not None and not writer.cancelled():
                writers.append((key.fd, writer))

        return readers, writers
