from __future__ import annotations

from typing import Protocol

from ingestion.contracts.tick import PriceEvent


class Normalizer(Protocol):
    """Decode one raw stream message into a PriceEvent or raise DecodeError."""

    symbol: str

    def normalize(self, *, raw: str | bytes, data_ts: float | None = None) -> PriceEvent:
        ...
