from __future__ import annotations

from enum import Enum


class RunMode(str, Enum):
    CACHE = "cache"
    READ = "read"

    @classmethod
    def parse(cls, value: str) -> "RunMode":
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Invalid mode: {value}. Use --mode=cache or --mode=read."
            ) from None
