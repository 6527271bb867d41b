from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PriceEvent:
    """
    Canonical price event.

    This is the ONLY object allowed to cross the boundary:
        Feed -> SamplingWorker

    Semantics:
        - `timestamp` : event timestamp from source / trade time (float, seconds)
        - `data_ts`   : ingestion arrival timestamp (float, seconds)
        - `symbol`    : instrument symbol (e.g. 'BTCUSDT')
        - `price`     : traded price (float64, finite)

    Transient: consumed immediately by a worker, never stored individually.
    """

    timestamp: float
    data_ts: float
    symbol: str
    price: float


def normalize_event(
    *,
    timestamp: float,
    symbol: str,
    price: float,
    data_ts: float | None = None,
) -> PriceEvent:
    """
    Normalize decoded feed output into a canonical PriceEvent.

    Rules:
        - timestamp is ALWAYS provided by the decoder
        - data_ts defaults to timestamp if arrival time is missing
        - no mutation, no enrichment, no inference
    """
    ts = float(timestamp)
    arrival_ts = float(data_ts) if data_ts is not None else ts

    return PriceEvent(
        timestamp=ts,
        data_ts=arrival_ts,
        symbol=str(symbol),
        price=float(price),
    )
