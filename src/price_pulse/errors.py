from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from price_pulse.contracts.report import WorkerReport


class PulseError(Exception):
    """Base class for price_pulse errors."""


class ConfigError(PulseError):
    """Invalid or unreadable configuration. Startup failure."""


class NoDataError(PulseError):
    """An average was requested over zero samples."""


class NoSuccessfulWorkersError(PulseError):
    """Every worker of a run failed; there is no global average."""

    def __init__(self, failures: Sequence["WorkerReport"] = ()):
        self.failures = tuple(failures)
        super().__init__(f"no successful workers ({len(self.failures)} failed)")


class CollectionError(PulseError):
    """The report channel delivered a report the barrier cannot accept."""


class PersistenceError(PulseError):
    """A record could not be written, or an existing record could not be read."""
