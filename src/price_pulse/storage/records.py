"""
Flat-file records for worker and global results.

Layout under `root`:
    client_{identity}_data.txt
    global_data.txt

Worker record:
    Prices: [p1, p2, ...]
    Average: avg

Global record:
    Client Averages: [a1, a2, ...]
    Global Average: g

Floats are written with repr(), so reading a record back yields the
exact values that were written.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from price_pulse.errors import PersistenceError
from price_pulse.utils.logger import get_logger, log_debug

GLOBAL_FILENAME = "global_data.txt"

_PRICES_RE = re.compile(r"^Prices:\s*\[(?P<items>.*)\]\s*$")
_AVERAGE_RE = re.compile(r"^Average:\s*(?P<value>\S+)\s*$")
_CLIENT_AVERAGES_RE = re.compile(r"^Client Averages:\s*\[(?P<items>.*)\]\s*$")
_GLOBAL_AVERAGE_RE = re.compile(r"^Global Average:\s*(?P<value>\S+)\s*$")


@dataclass(frozen=True)
class WorkerRecord:
    identity: int
    prices: tuple[float, ...]
    average: float
    path: Path
    text: str


@dataclass(frozen=True)
class GlobalRecord:
    client_averages: tuple[float, ...]
    global_average: float
    path: Path
    text: str


def worker_filename(identity: int) -> str:
    return f"client_{int(identity)}_data.txt"


def format_float_list(values: Sequence[float]) -> str:
    return "[" + ", ".join(repr(float(v)) for v in values) + "]"


def render_worker_record(prices: Sequence[float], average: float) -> str:
    return f"Prices: {format_float_list(prices)}\nAverage: {float(average)!r}\n"


def render_global_record(client_averages: Sequence[float], global_average: float) -> str:
    return (
        f"Client Averages: {format_float_list(client_averages)}\n"
        f"Global Average: {float(global_average)!r}\n"
    )


def _parse_float_list(items: str, *, path: Path) -> tuple[float, ...]:
    items = items.strip()
    if not items:
        return ()
    try:
        return tuple(float(x) for x in items.split(","))
    except ValueError as exc:
        raise PersistenceError(f"malformed value list in {path}: {exc}") from exc


def _parse_float(value: str, *, path: Path) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise PersistenceError(f"malformed value in {path}: {value!r}") from exc


def _match_lines(text: str, list_re: re.Pattern, value_re: re.Pattern, *, path: Path):
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) != 2:
        raise PersistenceError(f"expected 2 lines in {path}, found {len(lines)}")
    list_m = list_re.match(lines[0])
    value_m = value_re.match(lines[1])
    if list_m is None or value_m is None:
        raise PersistenceError(f"unrecognized record layout in {path}")
    return (
        _parse_float_list(list_m.group("items"), path=path),
        _parse_float(value_m.group("value"), path=path),
    )


class RecordStore:
    """
    Persistence adapter for worker and global records.

    The directory is explicit configuration; nothing is inferred from the
    working directory. Each worker writes its own file, so no two writers
    ever share a handle.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._logger = get_logger(__name__)

    def worker_path(self, identity: int) -> Path:
        return self.root / worker_filename(identity)

    @property
    def global_path(self) -> Path:
        return self.root / GLOBAL_FILENAME

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------

    def _write(self, path: Path, text: str) -> Path:
        tmp = path.with_name(path.name + ".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceError(f"cannot write {path}: {exc}") from exc
        log_debug(self._logger, "storage.record_written", path=str(path), n_bytes=len(text))
        return path

    def write_worker_record(self, identity: int, prices: Sequence[float], average: float) -> Path:
        if int(identity) < 1:
            raise ValueError("identity must be >= 1")
        return self._write(self.worker_path(identity), render_worker_record(prices, average))

    def write_global_record(self, client_averages: Sequence[float], global_average: float) -> Path:
        return self._write(self.global_path, render_global_record(client_averages, global_average))

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    def _read(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"cannot read {path}: {exc}") from exc

    def read_worker_record(self, identity: int) -> WorkerRecord | None:
        """Return the record, None if it does not exist; PersistenceError if unreadable."""
        path = self.worker_path(identity)
        text = self._read(path)
        if text is None:
            return None
        prices, average = _match_lines(text, _PRICES_RE, _AVERAGE_RE, path=path)
        return WorkerRecord(identity=int(identity), prices=prices, average=average, path=path, text=text)

    def read_global_record(self) -> GlobalRecord | None:
        path = self.global_path
        text = self._read(path)
        if text is None:
            return None
        averages, global_average = _match_lines(text, _CLIENT_AVERAGES_RE, _GLOBAL_AVERAGE_RE, path=path)
        return GlobalRecord(client_averages=averages, global_average=global_average, path=path, text=text)
