"""Discovery of event loop drivers published by installed distributions."""

import logging
from importlib.metadata import EntryPoint, entry_points
from typing import Any

from async_testcase.drivers.manifest import DriverManifest

log = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "async_testcase.drivers"


class DriverLoadError(Exception):
    """Raised when the configured event loop driver cannot be used."""


class DriverNotFoundError(DriverLoadError):
    """Raised when no installed distribution publishes the driver."""

    def __init__(self, key: str, available: list[str]) -> None:
        super().__init__(f"Driver '{key}' not found. Available drivers: {available}")
        self.key = key
        self.available = available


def available_drivers() -> list[str]:
    """Return the keys of all installed drivers, sorted."""
    return sorted({entry.name for entry in entry_points(group=ENTRY_POINT_GROUP)})


def load_driver_manifest(key: str) -> DriverManifest[Any]:
    """Load the manifest of the driver published under ``key``.

    The same distribution may be visible more than once on the path, so
    entries are only ambiguous when they point at different objects.

    Raises:
        DriverNotFoundError: If no driver is published under the key
        DriverLoadError: If the key is ambiguous or does not reference a
            loadable driver manifest

    """
    matches = entry_points(group=ENTRY_POINT_GROUP).select(name=key)
    if not matches:
        raise DriverNotFoundError(key, available_drivers())

    targets = sorted({entry.value for entry in matches})
    if len(targets) > 1:
        raise DriverLoadError(
            f"Driver '{key}' is published by several entry points: {targets}"
        )

    return _load_manifest(next(iter(matches)))


def _load_manifest(entry: EntryPoint) -> DriverManifest[Any]:
    try:
        manifest = entry.load()
    except (ImportError, AttributeError) as exc:
        raise DriverLoadError(
            f"Driver '{entry.name}' could not be imported from {entry.value}: {exc}"
        ) from exc

    if not isinstance(manifest, DriverManifest):
        raise DriverLoadError(
            f"Driver '{entry.name}' must reference a DriverManifest, "
            f"got {type(manifest).__name__} from {entry.value}"
        )

    log.debug("Loaded driver '%s' from %s", entry.name, entry.value)
    return manifest
