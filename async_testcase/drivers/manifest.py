"""Driver manifest definition for the plugin system."""

from collections.abc import Callable
from dataclasses import dataclass

from async_testcase.config import AsyncTestCaseConfig
from async_testcase.drivers.base import EventLoopDriver


@dataclass(frozen=True, kw_only=True)
class DriverManifest[DriverT: EventLoopDriver]:
    """Manifest describing an event loop driver plugin.

    The manifest references the driver factory so drivers can be loaded
    lazily based on the key configured for the test session.
    """

    driver_factory: Callable[[AsyncTestCaseConfig], DriverT]
