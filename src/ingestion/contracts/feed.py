from __future__ import annotations

from typing import Protocol

from ingestion.contracts.tick import PriceEvent


class FeedError(Exception):
    """Base class for price feed failures."""


class FeedConnectionError(FeedError):
    """The feed could not be reached when opening a stream."""


class DecodeError(FeedError):
    """A single stream message could not be decoded into a PriceEvent."""


class StreamClosedError(FeedError):
    """The stream terminated (socket closed, replay exhausted, ...)."""


class PriceStream(Protocol):
    """
    One open stream of price events.

    `recv` semantics:
        - returns the next decoded PriceEvent
        - raises DecodeError for a malformed message; the stream stays usable
        - raises StreamClosedError once the stream has ended; terminal
    """

    async def recv(self) -> PriceEvent:
        ...

    async def aclose(self) -> None:
        ...


class PriceFeed(Protocol):
    """
    Price feed client contract.

    A PriceFeed is responsible ONLY for:
        - opening a connection to an external price source
        - decoding raw payloads into PriceEvent objects

    It MUST NOT:
        - know about sampling windows / averages
        - retry connections
        - persist anything

    Lifecycle:
        stream = await feed.connect()   # may raise FeedConnectionError
        event  = await stream.recv()    # repeat
        await stream.aclose()
    """

    async def connect(self) -> PriceStream:
        ...
