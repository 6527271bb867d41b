from __future__ import annotations

import asyncio

import pytest

from ingestion.contracts.feed import DecodeError, FeedConnectionError, StreamClosedError
from ingestion.trades.source import ReplayTradeFeed
from tests.helpers.feeds import trade_msg


@pytest.mark.asyncio
async def test_replay_stream_yields_events_then_closes() -> None:
    feed = ReplayTradeFeed([trade_msg(1.5), trade_msg(2.5)])
    stream = await feed.connect()

    assert (await stream.recv()).price == 1.5
    assert (await stream.recv()).price == 2.5
    with pytest.raises(StreamClosedError):
        await stream.recv()
    with pytest.raises(StreamClosedError):
        await stream.recv()


@pytest.mark.asyncio
async def test_malformed_message_does_not_end_the_stream() -> None:
    feed = ReplayTradeFeed(["{broken", trade_msg(3.0)])
    stream = await feed.connect()

    with pytest.raises(DecodeError):
        await stream.recv()
    assert (await stream.recv()).price == 3.0


@pytest.mark.asyncio
async def test_each_connect_replays_from_the_start() -> None:
    feed = ReplayTradeFeed([trade_msg(9.0)])

    first = await feed.connect()
    second = await feed.connect()

    assert (await first.recv()).price == 9.0
    assert (await second.recv()).price == 9.0
    assert feed.connect_count == 2


@pytest.mark.asyncio
async def test_refused_connection() -> None:
    feed = ReplayTradeFeed([trade_msg(1.0)], fail_connect=True)
    with pytest.raises(FeedConnectionError):
        await feed.connect()


@pytest.mark.asyncio
async def test_hold_open_idles_instead_of_closing() -> None:
    feed = ReplayTradeFeed([], hold_open=True)
    stream = await feed.connect()

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(stream.recv(), timeout=0.05)


def test_from_file_skips_blank_lines(tmp_path) -> None:
    path = tmp_path / "trades.jsonl"
    path.write_text(trade_msg(1.0) + "\n\n" + trade_msg(2.0) + "\n", encoding="utf-8")

    feed = ReplayTradeFeed.from_file(path)

    assert len(feed._messages) == 2


def test_negative_interval_rejected() -> None:
    with pytest.raises(ValueError):
        ReplayTradeFeed([], interval_s=-1.0)
