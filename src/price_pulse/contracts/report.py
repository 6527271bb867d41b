from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class FailureReason(str, Enum):
    CONNECTION_ERROR = "connection_error"
    NO_DATA = "no_data"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class Average:
    """Successful outcome: local average over the worker's samples."""

    value: float
    samples: tuple[float, ...]


@dataclass(frozen=True)
class Failed:
    """Failed outcome; `detail` is free text for logs only."""

    reason: FailureReason
    detail: str = ""


Outcome = Union[Average, Failed]


@dataclass(frozen=True)
class WorkerReport:
    """
    Terminal outcome of one sampling worker.

    Produced exactly once per worker and owned by the Aggregator once sent.
    `identity` is in 1..N.
    """

    identity: int
    outcome: Outcome

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Average)

    @classmethod
    def average(cls, identity: int, value: float, samples) -> "WorkerReport":
        return cls(identity=identity, outcome=Average(value=float(value), samples=tuple(samples)))

    @classmethod
    def failed(cls, identity: int, reason: FailureReason, detail: str = "") -> "WorkerReport":
        return cls(identity=identity, outcome=Failed(reason=reason, detail=detail))


@dataclass(frozen=True)
class GlobalReport:
    """
    Combined result of one cache-mode run.

    Semantics:
        - `client_averages` : one local average per successful worker, in identity order
        - `identities`      : the identities those averages belong to (same order)
        - `global_average`  : unweighted mean of `client_averages` (mean-of-means)
        - `failures`        : failed reports, in identity order
    """

    client_averages: tuple[float, ...]
    global_average: float
    identities: tuple[int, ...] = ()
    failures: tuple[WorkerReport, ...] = ()
