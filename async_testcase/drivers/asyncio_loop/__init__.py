"""Asyncio event loop driver module."""

from async_testcase.drivers.asyncio_loop.driver import AsyncioDriver
from async_testcase.drivers.asyncio_loop.manifest import asyncio_manifest

__all__ = ["AsyncioDriver", "asyncio_manifest"]
