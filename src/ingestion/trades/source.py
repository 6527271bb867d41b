from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Iterable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ingestion.contracts.feed import FeedConnectionError, PriceFeed, PriceStream, StreamClosedError
from ingestion.contracts.tick import PriceEvent
from ingestion.trades.normalize import BinanceTradeNormalizer
from price_pulse.utils.logger import get_logger, log_debug, log_info, log_warn

_DOMAIN = "trades"
BINANCE_TRADE_URL = "wss://stream.binance.com:9443/ws/btcusdt@trade"


class WebSocketTradeStream(PriceStream):
    """One websocket connection, decoded message by message."""

    def __init__(self, ws, *, normalizer: BinanceTradeNormalizer, url: str, logger: logging.Logger):
        self._ws = ws
        self._normalizer = normalizer
        self._url = url
        self._logger = logger
        self._closed = False

    async def recv(self) -> PriceEvent:
        if self._closed:
            raise StreamClosedError("stream already closed")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            self._closed = True
            raise StreamClosedError(f"websocket closed: {exc}") from exc
        return self._normalizer.normalize(raw=raw, data_ts=time.time())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()
        log_debug(self._logger, "feed.stream_closed", url=self._url, domain=_DOMAIN)


class BinanceTradeFeed(PriceFeed):
    """Live Binance trade stream over a websocket.

    Each `connect()` opens an independent connection; workers never share one.
    Connection attempts are not retried.
    """

    def __init__(
        self,
        *,
        url: str = BINANCE_TRADE_URL,
        normalizer: BinanceTradeNormalizer | None = None,
        open_timeout_s: float | None = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._normalizer = normalizer or BinanceTradeNormalizer()
        self._open_timeout_s = open_timeout_s
        self._logger = logger or get_logger(f"ingestion.{_DOMAIN}.{self.__class__.__name__}")

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> WebSocketTradeStream:
        try:
            ws = await websockets.connect(self._url, open_timeout=self._open_timeout_s)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            log_warn(
                self._logger,
                "feed.connect_failed",
                url=self._url,
                domain=_DOMAIN,
                err_type=type(exc).__name__,
                err=str(exc),
            )
            raise FeedConnectionError(f"cannot connect to {self._url}: {exc}") from exc

        log_info(self._logger, "feed.connected", url=self._url, domain=_DOMAIN)
        return WebSocketTradeStream(ws, normalizer=self._normalizer, url=self._url, logger=self._logger)


class ReplayTradeStream(PriceStream):
    def __init__(
        self,
        messages: tuple[str | bytes, ...],
        *,
        normalizer: BinanceTradeNormalizer,
        interval_s: float,
        hold_open: bool,
    ):
        self._messages = iter(messages)
        self._normalizer = normalizer
        self._interval_s = interval_s
        self._hold_open = hold_open
        self._closed = False

    async def recv(self) -> PriceEvent:
        if self._closed:
            raise StreamClosedError("stream already closed")
        raw = next(self._messages, None)
        if raw is None:
            if self._hold_open:
                # idle live feed: nothing arrives until the caller gives up
                await asyncio.Event().wait()
            self._closed = True
            raise StreamClosedError("replay exhausted")
        if self._interval_s > 0:
            await asyncio.sleep(self._interval_s)
        else:
            # cooperative yield: avoid starving other workers
            await asyncio.sleep(0)
        return self._normalizer.normalize(raw=raw, data_ts=time.time())

    async def aclose(self) -> None:
        self._closed = True


class ReplayTradeFeed(PriceFeed):
    """
    Replay recorded raw trade messages.

    Used for offline runs (`--replay`) and tests. Every `connect()` starts
    a fresh pass over the same messages.

    Parameters
    ----------
    messages:
        Raw websocket payloads, exactly as received (malformed ones included).
    interval_s:
        Delay before each message is delivered.
    hold_open:
        When True the stream idles after the last message instead of ending,
        like a quiet live feed.
    fail_connect:
        Simulate an unreachable feed.
    """

    def __init__(
        self,
        messages: Iterable[str | bytes],
        *,
        normalizer: BinanceTradeNormalizer | None = None,
        interval_s: float = 0.0,
        hold_open: bool = False,
        fail_connect: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        if interval_s < 0:
            raise ValueError("interval_s must be >= 0")
        self._messages = tuple(messages)
        self._normalizer = normalizer or BinanceTradeNormalizer()
        self._interval_s = float(interval_s)
        self._hold_open = hold_open
        self._fail_connect = fail_connect
        self._logger = logger or get_logger(f"ingestion.{_DOMAIN}.{self.__class__.__name__}")
        self.connect_count = 0

    @classmethod
    def from_file(cls, path: str | Path, **kwargs) -> "ReplayTradeFeed":
        """One raw message per line; blank lines are ignored."""
        with Path(path).open("r", encoding="utf-8") as f:
            lines = [line.rstrip("\n") for line in f if line.strip()]
        return cls(lines, **kwargs)

    async def connect(self) -> ReplayTradeStream:
        self.connect_count += 1
        if self._fail_connect:
            log_warn(self._logger, "feed.connect_failed", domain=_DOMAIN, source="replay")
            raise FeedConnectionError("replay feed configured to refuse connections")
        log_info(
            self._logger,
            "feed.connected",
            domain=_DOMAIN,
            source="replay",
            n_messages=len(self._messages),
        )
        return ReplayTradeStream(
            self._messages,
            normalizer=self._normalizer,
            interval_s=self._interval_s,
            hold_open=self._hold_open,
        )
