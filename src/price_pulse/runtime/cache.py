from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ingestion.contracts.feed import PriceFeed
from price_pulse.aggregation.aggregator import Aggregator
from price_pulse.contracts.report import Average, Failed, FailureReason, GlobalReport, WorkerReport
from price_pulse.errors import NoSuccessfulWorkersError
from price_pulse.sampling.worker import SamplingWorker
from price_pulse.storage.records import RecordStore
from price_pulse.utils.logger import get_logger, log_info, log_warn


@dataclass(frozen=True)
class CacheRunResult:
    """
    Outcome of one cache-mode run.

    Exactly one of `global_report` / `error` is set.
    `reports` holds the reports of workers that finished, in identity order.
    """

    reports: tuple[WorkerReport, ...]
    global_report: GlobalReport | None = None
    error: NoSuccessfulWorkersError | None = None

    @property
    def ok(self) -> bool:
        return self.global_report is not None


class CacheModeDriver:
    """
    Fan-out / fan-in runtime for cache mode.

    Responsibilities:
      - dispatch `worker_count` SamplingWorkers at the same time
      - own the report channel (bounded, many producers, one consumer)
      - run one Aggregator over that channel and await everything

    Workers share nothing but the channel. The driver never cancels a
    worker, except the ones the aggregator has already given up on after
    its optional collection deadline.
    """

    def __init__(
        self,
        *,
        worker_count: int,
        window_s: float,
        feed_for: Callable[[int], PriceFeed],
        store: RecordStore | None = None,
        collect_timeout_s: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if int(worker_count) < 1:
            raise ValueError("worker_count must be >= 1")
        self._worker_count = int(worker_count)
        self._window_s = float(window_s)
        self._feed_for = feed_for
        self._store = store
        self._collect_timeout_s = collect_timeout_s
        self._logger = logger or get_logger(f"price_pulse.runtime.{self.__class__.__name__}")

    async def run(self) -> CacheRunResult:
        reports: asyncio.Queue = asyncio.Queue(maxsize=self._worker_count)
        aggregator = Aggregator(store=self._store, collect_timeout_s=self._collect_timeout_s)

        log_info(
            self._logger,
            "runtime.cache_start",
            worker_count=self._worker_count,
            window_s=self._window_s,
        )

        agg_task = asyncio.create_task(aggregator.collect(self._worker_count, reports))
        worker_tasks: dict[int, asyncio.Task] = {}
        for identity in range(1, self._worker_count + 1):
            worker = SamplingWorker(
                identity=identity,
                window_s=self._window_s,
                feed=self._feed_for(identity),
                store=self._store,
            )
            worker_tasks[identity] = asyncio.create_task(worker.run(reports, abandoned=aggregator.is_abandoned))

        global_report: GlobalReport | None = None
        error: NoSuccessfulWorkersError | None = None
        try:
            global_report = await agg_task
            timed_out = {r.identity for r in global_report.failures if _timed_out(r)}
        except NoSuccessfulWorkersError as exc:
            error = exc
            timed_out = {r.identity for r in exc.failures if _timed_out(r)}
        except BaseException:
            for task in worker_tasks.values():
                task.cancel()
            await asyncio.gather(*worker_tasks.values(), return_exceptions=True)
            raise

        for identity in sorted(timed_out):
            log_warn(self._logger, "runtime.worker_abandoned", worker=identity)
            worker_tasks[identity].cancel()

        outcomes = await asyncio.gather(*worker_tasks.values(), return_exceptions=True)
        finished = tuple(
            sorted((o for o in outcomes if isinstance(o, WorkerReport)), key=lambda r: r.identity)
        )

        log_info(
            self._logger,
            "runtime.cache_finish",
            ok=error is None,
            n_reports=len(finished),
        )
        return CacheRunResult(reports=finished, global_report=global_report, error=error)


def _timed_out(report: WorkerReport) -> bool:
    return isinstance(report.outcome, Failed) and report.outcome.reason is FailureReason.TIMEOUT


def format_summary(result: CacheRunResult) -> list[str]:
    """Human-readable lines for the end of a cache-mode run."""
    lines: list[str] = []
    for report in result.reports:
        outcome = report.outcome
        if isinstance(outcome, Average):
            lines.append(
                f"Client {report.identity}: Average BTC price: {outcome.value:.4f} "
                f"({len(outcome.samples)} samples)"
            )
        else:
            detail = f" ({outcome.detail})" if outcome.detail else ""
            lines.append(f"Client {report.identity}: FAILED {outcome.reason.value}{detail}")

    # workers abandoned at the collection deadline never finished
    reported = {r.identity for r in result.reports}
    failures = result.global_report.failures if result.global_report is not None else result.error.failures
    for failure in failures:
        if failure.identity not in reported:
            lines.append(f"Client {failure.identity}: FAILED {failure.outcome.reason.value}")

    if result.global_report is not None:
        g = result.global_report
        lines.append(
            f"Aggregator: Global average BTC price: {g.global_average:.4f} "
            f"over {len(g.client_averages)} client(s)"
        )
    else:
        lines.append("Aggregator: no successful workers, no global average produced")
    return lines
