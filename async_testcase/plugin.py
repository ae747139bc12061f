"""Pytest plugin running ``async def`` tests through the async test runner."""

import gc
import inspect
import logging
import os
from typing import Any, TypeGuard

import pytest
from pydantic import ValidationError

from async_testcase.case import AsyncTestCase
from async_testcase.config import TRACE_WATCHERS_ENV, AsyncTestCaseConfig
from async_testcase.drivers.base import EventLoopDriver
from async_testcase.drivers.loading import DriverLoadError, load_driver_manifest
from async_testcase.drivers.manifest import DriverManifest
from async_testcase.models.options import InvocationOptions
from async_testcase.runner import TestInvocation

log = logging.getLogger(__name__)

MARKER = "async_case"

config_key = pytest.StashKey[AsyncTestCaseConfig]()
manifest_key = pytest.StashKey[DriverManifest[Any]]()
driver_key = pytest.StashKey[EventLoopDriver]()
invocation_key = pytest.StashKey[TestInvocation]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("async_testcase", "async test runner")
    group.addoption(
        "--async-testcase-timeout",
        type=int,
        default=None,
        dest="async_testcase_timeout",
        help="Default time limit for async tests in milliseconds",
    )
    group.addoption(
        "--async-testcase-trace-watchers",
        action="store_true",
        default=False,
        dest="async_testcase_trace_watchers",
        help="Record where pending watchers were created to explain timeouts",
    )

    parser.addini(
        "async_testcase_driver",
        "Event loop driver used to run async tests",
        default="asyncio",
    )
    parser.addini(
        "async_testcase_timeout",
        "Default time limit for async tests in milliseconds",
        default="",
    )
    parser.addini(
        "async_testcase_trace_watchers",
        "Record where pending watchers were created",
        type="bool",
        default=False,
    )
    parser.addini(
        "async_testcase_loop_reset",
        "Replace the event loop with a fresh one after every test",
        type="bool",
        default=False,
    )


def load_config(config: pytest.Config) -> AsyncTestCaseConfig:
    """Build the session settings from ini options, environment and command line.

    Raises:
        pytest.UsageError: If a setting has an invalid value

    """
    values: dict[str, Any] = {
        "driver": config.getini("async_testcase_driver") or "asyncio",
        "trace_watchers": config.getini("async_testcase_trace_watchers"),
        "loop_reset": config.getini("async_testcase_loop_reset"),
    }
    if timeout := config.getini("async_testcase_timeout"):
        values["timeout"] = timeout

    if (trace_env := os.environ.get(TRACE_WATCHERS_ENV)) is not None:
        values["trace_watchers"] = trace_env

    if (timeout_option := config.getoption("async_testcase_timeout")) is not None:
        values["timeout"] = timeout_option
    if config.getoption("async_testcase_trace_watchers"):
        values["trace_watchers"] = True

    try:
        return AsyncTestCaseConfig(**values)
    except ValidationError as exc:
        raise pytest.UsageError(f"Invalid async-testcase configuration: {exc}") from exc


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{MARKER}(timeout=None, minimum_runtime=None, check_watchers=True, "
        "include_unreferenced=False): configure how the async test is run",
    )

    settings = load_config(config)
    try:
        manifest = load_driver_manifest(settings.driver)
    except DriverLoadError as exc:
        raise pytest.UsageError(str(exc)) from exc

    config.stash[config_key] = settings
    config.stash[manifest_key] = manifest

    if settings.loop_reset:
        config.pluginmanager.register(LoopReset(config), "async_testcase_loop_reset")


def pytest_unconfigure(config: pytest.Config) -> None:
    if (driver := config.stash.get(driver_key, None)) is not None:
        driver.close()
        del config.stash[driver_key]


def get_driver(config: pytest.Config) -> EventLoopDriver:
    """Return the session's event loop driver, creating it on first use."""
    if (driver := config.stash.get(driver_key, None)) is None:
        driver = config.stash[manifest_key].driver_factory(config.stash[config_key])
        config.stash[driver_key] = driver
        log.debug("Created event loop driver %r", driver)
    return driver


def is_async_test(item: pytest.Item) -> TypeGuard[pytest.Function]:
    """Check if the item is a coroutine test function."""
    return isinstance(item, pytest.Function) and inspect.iscoroutinefunction(
        item.obj
    )


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_setup(item: pytest.Item) -> None:
    if not is_async_test(item):
        return

    options = get_options(item)
    invocation = TestInvocation(name=item.nodeid, driver=get_driver(item.config))
    invocation.set_up()
    item.stash[invocation_key] = invocation
    invocation.configure(options)

    instance = getattr(item.obj, "__self__", None)
    if isinstance(instance, AsyncTestCase):
        instance.async_case = invocation
        invocation.add_cleanup(instance.cleanup)


def get_options(item: pytest.Function) -> InvocationOptions:
    """Merge the test's marker options with the session defaults."""
    options = InvocationOptions()
    if (marker := item.get_closest_marker(MARKER)) is not None:
        try:
            options = InvocationOptions.model_validate(marker.kwargs)
        except ValidationError as exc:
            pytest.fail(f"Invalid {MARKER} marker: {exc}", pytrace=False)

    default_timeout = item.config.stash[config_key].timeout
    if options.timeout is None and default_timeout is not None:
        options = options.model_copy(update={"timeout": default_timeout})
    return options


def pytest_runtest_teardown(item: pytest.Item) -> None:
    # Fixture errors and skips leave the invocation set up without running it
    if (invocation := item.stash.get(invocation_key, None)) is not None:
        invocation.abandon()


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    if (invocation := pyfuncitem.stash.get(invocation_key, None)) is None:
        return None

    funcargs = pyfuncitem.funcargs
    testargs = {arg: funcargs[arg] for arg in pyfuncitem._fixtureinfo.argnames}
    get_driver(pyfuncitem.config).run(invocation.run(pyfuncitem.obj, **testargs))
    return True


@pytest.fixture
def async_case(request: pytest.FixtureRequest) -> TestInvocation:
    """Invocation running the current async test."""
    invocation = request.node.stash.get(invocation_key, None)
    if invocation is None:
        pytest.fail(
            f"The {MARKER} fixture is only available to async def tests",
            pytrace=False,
        )
    return invocation


class LoopReset:
    """Replaces the session's event loop with a fresh one after every test."""

    def __init__(self, config: pytest.Config) -> None:
        self.config = config

    @pytest.hookimpl(trylast=True)
    def pytest_runtest_teardown(self, item: pytest.Item) -> None:
        if (driver := self.config.stash.get(driver_key, None)) is None:
            return

        driver.close()
        del self.config.stash[driver_key]
        # Extensions using an event loop may otherwise leak its file descriptors
        gc.collect()
        log.debug("Reset event loop after %s", item.nodeid)
