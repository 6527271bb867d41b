from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from ingestion.trades.source import BINANCE_TRADE_URL
from price_pulse.errors import ConfigError


def default_config_path() -> Path:
    return Path(__file__).resolve().parents[2] / "configs" / "pulse.json"


@dataclass(frozen=True)
class PulseConfig:
    """
    Run configuration.

    `worker_count` is fixed per run and never discovered at runtime.
    `records_dir` is handed to the RecordStore explicitly.
    `collect_timeout_s=None` keeps the unbounded collection barrier;
    when set it must exceed `window_s`.
    """

    worker_count: int = 5
    window_s: float = 1.0
    feed_url: str = BINANCE_TRADE_URL
    symbol: str = "BTCUSDT"
    records_dir: str = "data/records"
    open_timeout_s: float | None = 10.0
    collect_timeout_s: float | None = None
    io_concurrency: int = 4

    def __post_init__(self) -> None:
        if not isinstance(self.worker_count, int) or isinstance(self.worker_count, bool) or self.worker_count < 1:
            raise ConfigError(f"worker_count must be a positive integer, got {self.worker_count!r}")
        if not _is_number(self.window_s) or self.window_s <= 0:
            raise ConfigError(f"window_s must be > 0, got {self.window_s!r}")
        if not isinstance(self.feed_url, str) or not self.feed_url.startswith(("ws://", "wss://")):
            raise ConfigError(f"feed_url must be a ws:// or wss:// URL, got {self.feed_url!r}")
        if not isinstance(self.symbol, str) or not self.symbol:
            raise ConfigError("symbol must be a non-empty string")
        if not isinstance(self.records_dir, str) or not self.records_dir:
            raise ConfigError("records_dir must be a non-empty path")
        for name in ("open_timeout_s", "collect_timeout_s"):
            value = getattr(self, name)
            if value is not None and (not _is_number(value) or value <= 0):
                raise ConfigError(f"{name} must be > 0 or null, got {value!r}")
        # the collection deadline must outlast the sampling window
        if self.collect_timeout_s is not None and self.collect_timeout_s <= self.window_s:
            raise ConfigError(
                f"collect_timeout_s ({self.collect_timeout_s!r}) must be greater than window_s ({self.window_s!r})"
            )
        if not isinstance(self.io_concurrency, int) or isinstance(self.io_concurrency, bool) or self.io_concurrency < 1:
            raise ConfigError(f"io_concurrency must be a positive integer, got {self.io_concurrency!r}")

    def with_overrides(self, **overrides: Any) -> "PulseConfig":
        """Return a copy with non-None overrides applied (CLI flags)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def load_config(path: str | Path | None = None) -> PulseConfig:
    """
    Load PulseConfig from JSON.

    A missing default file yields defaults; an explicitly given path must exist.
    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    explicit = path is not None
    config_path = Path(path) if explicit else default_config_path()

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"config file not found: {config_path}")
        return PulseConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"cannot read config {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"config {config_path} must be a JSON object")

    known = {f.name for f in fields(PulseConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"unknown config keys in {config_path}: {unknown}")

    return PulseConfig(**raw)
