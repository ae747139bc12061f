"""Fixtures for runner unit tests."""

import pytest

from async_testcase.runner import TestInvocation
from async_testcase.testing.fake_driver import FakeDriver


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Create a driver double with no pending watchers."""
    return FakeDriver()


@pytest.fixture
def invocation(fake_driver: FakeDriver) -> TestInvocation:
    """Create an invocation that has been set up on the fake driver."""
    invocation = TestInvocation(name="test_invocation", driver=fake_driver)
    invocation.set_up()
    return invocation
