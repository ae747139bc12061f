"""Failures reported by the async test runner."""


class AsyncTestFailure(AssertionError):
    """Base class for failures generated by the runner itself."""


class TimeoutFailure(AsyncTestFailure):
    """Raised when a test does not complete within its time limit."""

    def __init__(self, timeout: int, details: str = "") -> None:
        self.timeout = timeout
        message = f"Expected test to complete before {timeout}ms time limit"
        if details:
            message = f"{message}\n\n{details}"
        super().__init__(message)


class RuntimeTooShortFailure(AsyncTestFailure):
    """Raised when a test finishes sooner than its minimum runtime."""

    def __init__(self, minimum_runtime: int, actual_runtime: int) -> None:
        self.minimum_runtime = minimum_runtime
        self.actual_runtime = actual_runtime
        super().__init__(
            f"Expected test to take at least {minimum_runtime}ms "
            f"but instead took {actual_runtime}ms"
        )


class WatcherLeakFailure(AsyncTestFailure):
    """Raised when enabled watchers are still pending after a test."""

    def __init__(self, test_name: str, snapshot: str) -> None:
        self.test_name = test_name
        self.snapshot = snapshot
        super().__init__(
            f"Found enabled watchers at end of test '{test_name}': {snapshot}"
        )


class CallbackExpectationFailure(AsyncTestFailure):
    """Raised when a runner callback is invoked a wrong number of times."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected callback to be invoked {expected} time(s) "
            f"but it was invoked {actual} time(s)"
        )


class LoopCaughtException(Exception):
    """Wraps an exception that surfaced through the event loop error handler."""

    def __init__(self, exception: BaseException) -> None:
        self.exception = exception
        super().__init__(
            f"An exception was raised on the event loop: "
            f"{type(exception).__name__}: {exception}"
        )
        self.__cause__ = exception
