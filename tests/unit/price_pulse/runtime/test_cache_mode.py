from __future__ import annotations

import pytest

from ingestion.trades.source import ReplayTradeFeed
from price_pulse.contracts.report import Average, FailureReason, GlobalReport, WorkerReport
from price_pulse.errors import NoSuccessfulWorkersError
from price_pulse.runtime.cache import CacheModeDriver, CacheRunResult, format_summary
from price_pulse.storage.records import RecordStore
from tests.helpers.feeds import HangingFeed, replay


@pytest.mark.asyncio
async def test_cache_run_three_workers_one_without_data(tmp_path) -> None:
    feeds = {
        1: replay([10.0, 20.0]),
        2: replay([30.0]),
        3: ReplayTradeFeed([]),
    }
    store = RecordStore(tmp_path)
    driver = CacheModeDriver(worker_count=3, window_s=0.5, feed_for=feeds.__getitem__, store=store)

    result = await driver.run()

    assert result.ok
    assert result.global_report.client_averages == (15.0, 30.0)
    assert result.global_report.global_average == 22.5
    assert [r.identity for r in result.reports] == [1, 2, 3]
    assert result.reports[2].outcome.reason is FailureReason.NO_DATA

    assert store.read_worker_record(1).prices == (10.0, 20.0)
    assert store.read_worker_record(2).average == 30.0
    assert store.read_worker_record(3) is None
    assert store.read_global_record().global_average == 22.5


@pytest.mark.asyncio
async def test_cache_run_all_workers_fail(tmp_path) -> None:
    store = RecordStore(tmp_path)
    driver = CacheModeDriver(
        worker_count=5,
        window_s=0.2,
        feed_for=lambda _i: ReplayTradeFeed([], fail_connect=True),
        store=store,
    )

    result = await driver.run()

    assert not result.ok
    assert isinstance(result.error, NoSuccessfulWorkersError)
    assert len(result.reports) == 5
    assert store.read_global_record() is None
    assert not (tmp_path / "global_data.txt").exists()


@pytest.mark.asyncio
async def test_workers_share_one_feed_but_own_their_streams(tmp_path) -> None:
    feed = replay([1.0, 2.0, 3.0])
    driver = CacheModeDriver(worker_count=4, window_s=0.5, feed_for=lambda _i: feed)

    result = await driver.run()

    assert feed.connect_count == 4
    assert all(r.outcome == Average(value=2.0, samples=(1.0, 2.0, 3.0)) for r in result.reports)
    assert result.global_report.global_average == 2.0


@pytest.mark.asyncio
async def test_collect_timeout_abandons_hung_worker() -> None:
    feeds = {1: replay([5.0]), 2: HangingFeed(), 3: replay([7.0])}
    driver = CacheModeDriver(
        worker_count=3,
        window_s=0.1,
        feed_for=feeds.__getitem__,
        collect_timeout_s=0.3,
    )

    result = await driver.run()

    assert result.global_report.client_averages == (5.0, 7.0)
    assert [r.identity for r in result.reports] == [1, 3]
    assert [(f.identity, f.outcome.reason) for f in result.global_report.failures] == [(2, FailureReason.TIMEOUT)]
    assert any("Client 2: FAILED timeout" in line for line in format_summary(result))


def test_format_summary_success_and_failure_lines() -> None:
    ok = WorkerReport.average(1, 15.0, [10.0, 20.0])
    bad = WorkerReport.failed(2, FailureReason.CONNECTION_ERROR, "refused")
    result = CacheRunResult(
        reports=(ok, bad),
        global_report=GlobalReport(client_averages=(15.0,), global_average=15.0, identities=(1,), failures=(bad,)),
    )

    lines = format_summary(result)

    assert lines[0] == "Client 1: Average BTC price: 15.0000 (2 samples)"
    assert lines[1] == "Client 2: FAILED connection_error (refused)"
    assert lines[-1].startswith("Aggregator: Global average BTC price: 15.0000")


def test_format_summary_total_failure() -> None:
    bad = WorkerReport.failed(1, FailureReason.NO_DATA)
    result = CacheRunResult(reports=(bad,), error=NoSuccessfulWorkersError([bad]))

    assert format_summary(result)[-1] == "Aggregator: no successful workers, no global average produced"


def test_invalid_worker_count() -> None:
    with pytest.raises(ValueError):
        CacheModeDriver(worker_count=0, window_s=1.0, feed_for=lambda _i: replay([]))
