"""Asyncio driver manifest."""

from async_testcase.drivers.asyncio_loop.driver import AsyncioDriver
from async_testcase.drivers.manifest import DriverManifest

asyncio_manifest = DriverManifest(driver_factory=AsyncioDriver.from_config)
