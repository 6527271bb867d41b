from __future__ import annotations

import asyncio
import logging

from price_pulse.contracts.report import Average, Failed, FailureReason, GlobalReport, WorkerReport
from price_pulse.errors import CollectionError, NoSuccessfulWorkersError, PersistenceError
from price_pulse.stats import mean_of_means
from price_pulse.storage.records import RecordStore
from price_pulse.utils.asyncio import to_thread_limited
from price_pulse.utils.logger import get_logger, log_error, log_info, log_warn


class Aggregator:
    """
    Collection barrier + mean-of-means.

    Semantics:
      - waits for exactly `expected_count` reports, in any arrival order
      - a failed report is logged and counted, never fatal on its own
      - global average = unweighted mean of the successful local averages
      - client averages are ordered by worker identity, not arrival
      - zero successes -> NoSuccessfulWorkersError, nothing persisted

    `collect_timeout_s` bounds the whole collection. It is None by default,
    in which case a worker that never reports blocks the run forever.
    When set, workers still missing at the deadline count as
    Failed(TIMEOUT) and `is_abandoned` reports them from then on.
    """

    def __init__(
        self,
        *,
        store: RecordStore | None = None,
        collect_timeout_s: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if collect_timeout_s is not None and float(collect_timeout_s) <= 0:
            raise ValueError("collect_timeout_s must be > 0")
        self._store = store
        self._collect_timeout_s = collect_timeout_s
        self._logger = logger or get_logger(f"price_pulse.aggregation.{self.__class__.__name__}")
        self._abandoned: set[int] = set()

    def is_abandoned(self, identity: int) -> bool:
        """True once the collection deadline has passed without a report from `identity`."""
        return identity in self._abandoned

    async def collect(self, expected_count: int, reports: asyncio.Queue) -> GlobalReport:
        if int(expected_count) < 1:
            raise ValueError("expected_count must be >= 1")
        expected_count = int(expected_count)

        loop = asyncio.get_running_loop()
        deadline = None if self._collect_timeout_s is None else loop.time() + float(self._collect_timeout_s)
        received: dict[int, WorkerReport] = {}

        log_info(
            self._logger,
            "aggregation.collect_start",
            expected=expected_count,
            timeout_s=self._collect_timeout_s,
        )
        while len(received) < expected_count:
            try:
                report = await self._next(reports, deadline, loop)
            except asyncio.TimeoutError:
                # reports already queued at the deadline still count
                while not reports.empty() and len(received) < expected_count:
                    self._accept(reports.get_nowait(), received, expected_count)
                missing = [i for i in range(1, expected_count + 1) if i not in received]
                if not missing:
                    break
                log_warn(self._logger, "aggregation.collect_timeout", missing=missing)
                for identity in missing:
                    received[identity] = WorkerReport.failed(
                        identity, FailureReason.TIMEOUT, "no report before collection deadline"
                    )
                self._abandoned.update(missing)
                break
            self._accept(report, received, expected_count)

        return await self._combine(received)

    async def _next(self, reports: asyncio.Queue, deadline: float | None, loop) -> WorkerReport:
        if deadline is None:
            return await reports.get()
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError
        return await asyncio.wait_for(reports.get(), timeout=remaining)

    def _accept(self, report: WorkerReport, received: dict[int, WorkerReport], expected_count: int) -> None:
        if not isinstance(report, WorkerReport):
            raise CollectionError(f"unexpected object on report channel: {type(report).__name__}")
        if not 1 <= report.identity <= expected_count:
            raise CollectionError(f"report from unknown worker {report.identity} (expected 1..{expected_count})")
        if report.identity in received:
            raise CollectionError(f"duplicate report from worker {report.identity}")
        received[report.identity] = report

        outcome = report.outcome
        if isinstance(outcome, Failed):
            log_warn(
                self._logger,
                "aggregation.report_failed",
                worker=report.identity,
                reason=outcome.reason.value,
                detail=outcome.detail,
                received=len(received),
                expected=expected_count,
            )
        else:
            log_info(
                self._logger,
                "aggregation.report_received",
                worker=report.identity,
                average=round(outcome.value, 4),
                received=len(received),
                expected=expected_count,
            )

    async def _combine(self, received: dict[int, WorkerReport]) -> GlobalReport:
        ordered = [received[i] for i in sorted(received)]
        successes = [r for r in ordered if isinstance(r.outcome, Average)]
        failures = tuple(r for r in ordered if not isinstance(r.outcome, Average))

        if not successes:
            log_error(
                self._logger,
                "aggregation.no_successful_workers",
                failed=[r.identity for r in failures],
            )
            raise NoSuccessfulWorkersError(failures)

        averages = tuple(r.outcome.value for r in successes)
        result = GlobalReport(
            client_averages=averages,
            global_average=mean_of_means(averages),
            identities=tuple(r.identity for r in successes),
            failures=failures,
        )
        log_info(
            self._logger,
            "aggregation.global_average",
            global_average=round(result.global_average, 4),
            n_succeeded=len(successes),
            n_failed=len(failures),
        )
        await self._persist(result)
        return result

    async def _persist(self, result: GlobalReport) -> None:
        if self._store is None:
            return
        try:
            await to_thread_limited(
                self._store.write_global_record,
                result.client_averages,
                result.global_average,
                logger=self._logger,
                op="write_global_record",
            )
        except PersistenceError as exc:
            log_error(self._logger, "aggregation.persist_failed", err=str(exc))
