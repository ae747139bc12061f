"""Single-assignment completion signal shared by concurrent paths."""

import asyncio
from typing import Any, cast

_UNSET: Any = object()


class CompletionSink[T]:
    """Holds the first value or exception written to it.

    The sink is not bound to an event loop until somebody waits on it, so it
    can be created before the loop runs. Every waiter observes the first
    write; later writes are ignored and reported as ``False``.
    """

    def __init__(self) -> None:
        self._value: T = _UNSET
        self._exception: BaseException | None = None
        self._waiters: list[asyncio.Future[T]] = []

    @property
    def done(self) -> bool:
        """Whether a value or an exception has been recorded."""
        return self._value is not _UNSET or self._exception is not None

    def resolve(self, value: T) -> bool:
        """Record a value unless the sink is already done."""
        if self.done:
            return False
        self._value = value
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(value)
        self._waiters.clear()
        return True

    def fail(self, exception: BaseException) -> bool:
        """Record an exception unless the sink is already done."""
        if self.done:
            return False
        self._exception = exception
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_exception(exception)
        self._waiters.clear()
        return True

    def result(self) -> T:
        """Return the recorded value or raise the recorded exception."""
        if self._exception is not None:
            raise self._exception
        if self._value is _UNSET:
            raise asyncio.InvalidStateError("Completion sink is not resolved yet")
        return cast(T, self._value)

    async def wait(self) -> T:
        """Wait until the sink is resolved and return its outcome."""
        if self.done:
            return self.result()
        waiter: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter
