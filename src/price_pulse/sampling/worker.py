from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ingestion.contracts.feed import DecodeError, FeedConnectionError, PriceFeed, StreamClosedError
from price_pulse.contracts.report import Average, FailureReason, WorkerReport
from price_pulse.errors import NoDataError, PersistenceError
from price_pulse.stats import local_average
from price_pulse.storage.records import RecordStore
from price_pulse.utils.asyncio import to_thread_limited
from price_pulse.utils.logger import get_logger, log_debug, log_error, log_exception, log_info, log_warn

_LOG_SAMPLE_EVERY = 100


class SamplingWorker:
    """Sample one feed connection for a fixed window and report a local average.

    Responsibility:
        connect -> collect prices until the window closes -> report once -> persist

    Non-responsibilities:
        - retrying connections
        - coordinating with other workers (each owns its stream, buffer and timer)
        - deciding what a failed report means for the run

    Every call to `run` produces exactly one WorkerReport, also when the
    feed misbehaves in ways the feed contract does not describe.
    """

    def __init__(
        self,
        *,
        identity: int,
        window_s: float,
        feed: PriceFeed,
        store: RecordStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if int(identity) < 1:
            raise ValueError("identity must be >= 1")
        if float(window_s) <= 0:
            raise ValueError("window_s must be > 0")
        self._identity = int(identity)
        self._window_s = float(window_s)
        self._feed = feed
        self._store = store
        self._logger = logger or get_logger(f"price_pulse.sampling.{self.__class__.__name__}")
        self._n_dropped = 0

    @property
    def identity(self) -> int:
        return self._identity

    async def run(
        self,
        reports: asyncio.Queue | None = None,
        *,
        abandoned: Callable[[int], bool] | None = None,
    ) -> WorkerReport:
        """
        Sample, hand the report to `reports` (if given), then persist.

        The report is enqueued before the record is written so the
        aggregator never waits on this worker's disk I/O. When `abandoned`
        says the collector has already given up on this worker, no record
        is written: the global record does not include this average.
        """
        report = await self._sample()
        if reports is not None:
            await reports.put(report)
        if abandoned is not None and abandoned(self._identity):
            log_warn(self._logger, "sampling.persist_skipped", worker=self._identity, reason="abandoned")
            return report
        await self._persist(report)
        return report

    async def _sample(self) -> WorkerReport:
        loop = asyncio.get_running_loop()
        started = loop.time()
        # window starts at dispatch; connection time is part of it
        deadline = started + self._window_s
        prices: list[float] = []
        stop_reason = "window"
        self._n_dropped = 0

        log_info(
            self._logger,
            "sampling.worker_start",
            worker=self._identity,
            window_s=self._window_s,
            feed=type(self._feed).__name__,
        )
        try:
            try:
                stream = await self._feed.connect()
            except FeedConnectionError as exc:
                log_warn(
                    self._logger,
                    "sampling.connect_failed",
                    worker=self._identity,
                    err=str(exc),
                )
                stop_reason = "connection_error"
                return WorkerReport.failed(self._identity, FailureReason.CONNECTION_ERROR, str(exc))

            try:
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    try:
                        event = await asyncio.wait_for(stream.recv(), timeout=remaining)
                    except asyncio.TimeoutError:
                        break
                    except DecodeError as exc:
                        self._n_dropped += 1
                        log_warn(
                            self._logger,
                            "sampling.decode_drop",
                            worker=self._identity,
                            err=str(exc),
                            n_dropped=self._n_dropped,
                        )
                        continue
                    except StreamClosedError as exc:
                        stop_reason = "stream_closed"
                        log_warn(
                            self._logger,
                            "sampling.stream_closed",
                            worker=self._identity,
                            err=str(exc),
                            n_samples=len(prices),
                        )
                        break

                    prices.append(event.price)
                    if len(prices) % _LOG_SAMPLE_EVERY == 0:
                        log_debug(
                            self._logger,
                            "sampling.progress",
                            worker=self._identity,
                            n_samples=len(prices),
                            last_price=event.price,
                        )
            finally:
                await self._close(stream)

            try:
                avg = local_average(prices)
            except NoDataError:
                log_warn(self._logger, "sampling.no_data", worker=self._identity, reason=stop_reason)
                return WorkerReport.failed(self._identity, FailureReason.NO_DATA, stop_reason)

            log_info(
                self._logger,
                "sampling.average",
                worker=self._identity,
                average=round(avg, 4),
                n_samples=len(prices),
                n_dropped=self._n_dropped,
                partial=stop_reason == "stream_closed",
            )
            return WorkerReport.average(self._identity, avg, prices)
        except asyncio.CancelledError:
            stop_reason = "cancelled"
            raise
        except Exception as exc:
            stop_reason = "error"
            log_exception(self._logger, "sampling.worker_error", worker=self._identity, err_type=type(exc).__name__)
            return WorkerReport.failed(self._identity, FailureReason.ERROR, f"{type(exc).__name__}: {exc}")
        finally:
            log_info(
                self._logger,
                "sampling.worker_stop",
                worker=self._identity,
                reason=stop_reason,
                elapsed_s=round(loop.time() - started, 3),
            )

    async def _close(self, stream) -> None:
        try:
            await stream.aclose()
        except Exception as exc:
            log_warn(self._logger, "sampling.close_error", worker=self._identity, err=str(exc))

    async def _persist(self, report: WorkerReport) -> None:
        if self._store is None or not isinstance(report.outcome, Average):
            return
        outcome = report.outcome
        try:
            path = await to_thread_limited(
                self._store.write_worker_record,
                self._identity,
                outcome.samples,
                outcome.value,
                logger=self._logger,
                op="write_worker_record",
            )
        except PersistenceError as exc:
            log_error(self._logger, "sampling.persist_failed", worker=self._identity, err=str(exc))
            return
        log_debug(self._logger, "sampling.persisted", worker=self._identity, path=str(path))
