"""Models for per-test runner settings."""

from pydantic import Field

from async_testcase.models.base import Model


class InvocationOptions(Model):
    """Settings applied to a test invocation from the ``async_case`` marker."""

    timeout: int | None = Field(
        default=None, ge=1, description="Fail the test after this many ms"
    )
    minimum_runtime: int | None = Field(
        default=None, ge=1, description="Fail the test if it finishes sooner (ms)"
    )
    check_watchers: bool = Field(
        default=True, description="Fail on referenced watchers left on the loop"
    )
    include_unreferenced: bool = Field(
        default=False, description="Also count unreferenced watchers"
    )
