"""Models for event loop introspection snapshots."""

from pydantic import Field

from async_testcase.models.base import Model


class WatcherCounts(Model):
    """Enabled watchers split by whether they keep the loop alive."""

    referenced: int = Field(default=0, ge=0, description="Keep-alive watchers")
    unreferenced: int = Field(default=0, ge=0, description="Advisory watchers")

    def total(self, *, include_unreferenced: bool = False) -> int:
        """Count referenced watchers, optionally adding unreferenced ones."""
        if include_unreferenced:
            return self.referenced + self.unreferenced
        return self.referenced


class LoopInfo(Model):
    """Snapshot of the pending work scheduled on an event loop."""

    delay: int = Field(default=0, ge=0, description="Pending timers")
    task: int = Field(default=0, ge=0, description="Pending tasks")
    on_readable: int = Field(default=0, ge=0, description="Reader callbacks")
    on_writable: int = Field(default=0, ge=0, description="Writer callbacks")
    enabled_watchers: WatcherCounts = Field(default_factory=WatcherCounts)
    running: bool = False
