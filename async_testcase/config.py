"""Configuration for the async test runner."""

from pydantic import BaseModel, Field

TRACE_WATCHERS_ENV = "ASYNC_TESTCASE_TRACE_WATCHERS"


class AsyncTestCaseConfig(BaseModel):
    """Session-wide settings for running async tests."""

    driver: str = "asyncio"
    # Default time limit applied to every async test, in milliseconds
    timeout: int | None = Field(default=None, ge=1)
    trace_watchers: bool = False
    loop_reset: bool = False
