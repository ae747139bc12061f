"""Global pytest configuration for the test suite."""

pytest_plugins = ["pytester", "async_testcase.plugin"]
