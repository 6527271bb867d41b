from __future__ import annotations

import argparse
import asyncio
import sys
import time
from typing import Sequence

from ingestion.contracts.feed import PriceFeed
from ingestion.trades.normalize import BinanceTradeNormalizer
from ingestion.trades.source import BinanceTradeFeed, ReplayTradeFeed
from price_pulse.config import PulseConfig, load_config
from price_pulse.errors import ConfigError
from price_pulse.runtime.cache import CacheModeDriver, format_summary
from price_pulse.runtime.modes import RunMode
from price_pulse.runtime.read import ReadModeDriver, format_read_result
from price_pulse.storage.records import RecordStore
from price_pulse.utils.asyncio import set_thread_limit
from price_pulse.utils.logger import get_logger, init_logging, log_error, log_info


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="price-pulse",
        description="Listens to the trade stream for BTC/USDT prices and averages them across workers.",
    )
    parser.add_argument("-m", "--mode", default="cache", metavar="MODE", help="cache (listen + aggregate) or read")
    parser.add_argument("-t", "--times", type=int, default=None, metavar="NUMBER",
                        help="the number of seconds to listen (default 1, cache mode only)")
    parser.add_argument("-c", "--config", default=None, help="path to pulse.json")
    parser.add_argument("--records-dir", default=None, help="directory for worker/global records")
    parser.add_argument("--replay", default=None, metavar="PATH",
                        help="replay recorded trade messages (JSON lines) instead of the live feed")
    parser.add_argument("--replay-interval", type=float, default=0.0, metavar="SECONDS",
                        help="delay between replayed messages")
    parser.add_argument("--log-config", default=None, help="path to logging.json")
    parser.add_argument("--run-id", default=None, help="run id for log context")
    return parser


def _make_feed(cfg: PulseConfig, replay: str | None, replay_interval: float) -> PriceFeed:
    normalizer = BinanceTradeNormalizer(symbol=cfg.symbol)
    if replay is not None:
        return ReplayTradeFeed.from_file(replay, normalizer=normalizer, interval_s=replay_interval)
    return BinanceTradeFeed(url=cfg.feed_url, normalizer=normalizer, open_timeout_s=cfg.open_timeout_s)


def run_cache(cfg: PulseConfig, *, replay: str | None = None, replay_interval: float = 0.0) -> int:
    logger = get_logger("apps.run_pulse")
    set_thread_limit(cfg.io_concurrency)
    feed = _make_feed(cfg, replay, replay_interval)
    driver = CacheModeDriver(
        worker_count=cfg.worker_count,
        window_s=cfg.window_s,
        feed_for=lambda _identity: feed,
        store=RecordStore(cfg.records_dir),
        collect_timeout_s=cfg.collect_timeout_s,
    )

    print(f"Will listen for {cfg.window_s:g} seconds.")
    result = asyncio.run(driver.run())

    for line in format_summary(result):
        print(line)

    if not result.ok:
        log_error(logger, "apps.cache_no_result", failed=[r.identity for r in result.error.failures])
        print("ERROR: cache mode produced no usable result: every worker failed.", file=sys.stderr)
        return 1
    return 0


def run_read(cfg: PulseConfig) -> int:
    driver = ReadModeDriver(store=RecordStore(cfg.records_dir), worker_count=cfg.worker_count)
    for line in format_read_result(driver.run()):
        print(line)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        mode = RunMode.parse(args.mode)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 2

    try:
        if args.times is not None and args.times < 1:
            raise ConfigError(f"--times must be a positive number of seconds, got {args.times}")
        if args.replay_interval < 0:
            raise ConfigError(f"--replay-interval must be >= 0 seconds, got {args.replay_interval}")
        cfg = load_config(args.config).with_overrides(
            window_s=float(args.times) if args.times is not None else None,
            records_dir=args.records_dir,
        )
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    run_id = args.run_id or f"{mode.value}_{int(time.time())}"
    init_logging(args.log_config, run_id=run_id, mode=mode.value)
    logger = get_logger("apps.run_pulse")
    log_info(logger, "apps.start", records_dir=cfg.records_dir, worker_count=cfg.worker_count)

    print(f"Mode: {mode.value}")
    if mode is RunMode.CACHE:
        try:
            return run_cache(cfg, replay=args.replay, replay_interval=args.replay_interval)
        except OSError as exc:
            print(f"startup failure: {exc}", file=sys.stderr)
            return 2
    return run_read(cfg)


if __name__ == "__main__":
    sys.exit(main())
