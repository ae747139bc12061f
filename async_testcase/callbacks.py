"""Invocation-counted callbacks for asserting how often code calls back."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import Mock

from async_testcase.errors import CallbackExpectationFailure


@dataclass(kw_only=True)
class CallbackExpectation:
    """A mock callback that must be invoked an exact number of times."""

    invocation_count: int
    return_callback: Callable[..., Any] | None = None
    mock: Mock = field(init=False)

    def __post_init__(self) -> None:
        if self.invocation_count < 0:
            raise ValueError("Invocation count must not be negative")
        self.mock = Mock(side_effect=self._invoke)

    def _invoke(self, *args: Any, **kwargs: Any) -> Any:
        # Mock bumps call_count before running the side effect
        if self.mock.call_count > self.invocation_count:
            raise CallbackExpectationFailure(
                self.invocation_count, self.mock.call_count
            )
        if self.return_callback is not None:
            return self.return_callback(*args, **kwargs)
        return None

    def verify(self) -> None:
        """Fail if the callback was not invoked the expected number of times."""
        if self.mock.call_count != self.invocation_count:
            raise CallbackExpectationFailure(
                self.invocation_count, self.mock.call_count
            )
