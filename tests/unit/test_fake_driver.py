"""Tests for the driver double."""

import asyncio

from async_testcase.models.options import InvocationOptions
from async_testcase.runner import TestInvocation
from async_testcase.testing.fake_driver import FakeDriver


async def current_loop() -> asyncio.AbstractEventLoop:
    return asyncio.get_running_loop()


def test_run_reuses_one_loop_until_closed() -> None:
    """Every run shares one loop and closing the driver closes it."""
    driver = FakeDriver()

    first = driver.run(current_loop())
    second = driver.run(current_loop())
    driver.close()

    assert first is second
    assert first.is_closed()


def test_drives_an_invocation_to_completion() -> None:
    """An invocation can be run on the double's own loop."""
    driver = FakeDriver()
    invocation = TestInvocation(name="test_case", driver=driver)
    invocation.set_up()
    invocation.configure(InvocationOptions(timeout=1000))

    async def body() -> str:
        await asyncio.sleep(0.01)
        return "done"

    try:
        assert driver.run(invocation.run(body)) == "done"
    finally:
        driver.close()

    assert len(driver.cancelled) == 1
    assert driver.cancelled[0].cancelled()
