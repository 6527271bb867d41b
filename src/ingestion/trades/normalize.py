from __future__ import annotations

import json
import math
import time
from typing import Any, Mapping

from ingestion.contracts.feed import DecodeError
from ingestion.contracts.normalize import Normalizer
from ingestion.contracts.tick import PriceEvent, normalize_event


class BinanceTradeNormalizer(Normalizer):
    """
    Normalize Binance trade stream messages into PriceEvent.
    """

    symbol: str

    def __init__(self, symbol: str = "BTCUSDT"):
        self.symbol = symbol

    def normalize(
        self,
        *,
        raw: str | bytes,
        data_ts: float | None = None,
    ) -> PriceEvent:
        """
        Normalize a single trade message into a PriceEvent.

        Raises DecodeError for anything that does not carry a usable price.
        """
        arrival_ts = time.time() if data_ts is None else float(data_ts)

        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"invalid JSON: {exc}") from exc
        if not isinstance(msg, Mapping):
            raise DecodeError(f"expected a JSON object, got {type(msg).__name__}")

        # combined streams wrap the payload: {"stream": "...", "data": {...}}
        if "data" in msg and isinstance(msg["data"], Mapping):
            msg = msg["data"]

        # WS trade: { "e": "trade", "E": ..., "s": "BTCUSDT", "t": ..., "p": "0.001", "q": "100", "T": ... }
        if "p" not in msg:
            raise DecodeError("no price field found")

        price = _to_price(msg["p"])
        event_ms = _first_present(msg, ("T", "E"))
        event_ts = float(event_ms) / 1000.0 if event_ms is not None else arrival_ts
        sym = msg.get("s") or self.symbol

        return normalize_event(
            timestamp=event_ts,
            data_ts=arrival_ts,
            symbol=sym,
            price=price,
        )


def _to_price(value: Any) -> float:
    # bool is an int subclass; never a price
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise DecodeError(f"price has unsupported type {type(value).__name__}")
    try:
        price = float(value)
    except ValueError as exc:
        raise DecodeError(f"price is not numeric: {value!r}") from exc
    if not math.isfinite(price):
        raise DecodeError(f"price is not finite: {value!r}")
    return price


def _first_present(msg: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = msg.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None
