from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import pandas as pd

from price_pulse.errors import PersistenceError
from price_pulse.stats import summarize_records
from price_pulse.storage.records import GlobalRecord, RecordStore, WorkerRecord
from price_pulse.utils.logger import get_logger, log_info, log_warn


@dataclass(frozen=True)
class ReadEntry:
    """One record slot in read mode: found, missing, or unreadable."""

    label: str
    path: str
    record: WorkerRecord | GlobalRecord | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        if self.record is not None:
            return "ok"
        return "unreadable" if self.error else "missing"


@dataclass(frozen=True)
class ReadResult:
    workers: tuple[ReadEntry, ...]
    global_entry: ReadEntry

    def summary(self) -> pd.DataFrame:
        rows = []
        for idx, entry in enumerate(self.workers, start=1):
            rec = entry.record
            rows.append(
                {
                    "identity": idx,
                    "samples": len(rec.prices) if isinstance(rec, WorkerRecord) else None,
                    "average": rec.average if isinstance(rec, WorkerRecord) else None,
                    "status": entry.status,
                }
            )
        return summarize_records(rows)


class ReadModeDriver:
    """
    Read-only replay of persisted records.

    A missing or unreadable record is reported as absent; it never stops
    the remaining records from being shown.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        worker_count: int,
        logger: logging.Logger | None = None,
    ) -> None:
        if int(worker_count) < 1:
            raise ValueError("worker_count must be >= 1")
        self._store = store
        self._worker_count = int(worker_count)
        self._logger = logger or get_logger(f"price_pulse.runtime.{self.__class__.__name__}")

    def _load(self, label: str, path, loader: Callable[[], WorkerRecord | GlobalRecord | None]) -> ReadEntry:
        try:
            record = loader()
        except PersistenceError as exc:
            log_warn(self._logger, "runtime.record_unreadable", record=label, path=str(path), err=str(exc))
            return ReadEntry(label=label, path=str(path), error=str(exc))
        if record is None:
            log_warn(self._logger, "runtime.record_missing", record=label, path=str(path))
        return ReadEntry(label=label, path=str(path), record=record)

    def run(self) -> ReadResult:
        workers = tuple(
            self._load(
                f"client {identity}",
                self._store.worker_path(identity),
                lambda identity=identity: self._store.read_worker_record(identity),
            )
            for identity in range(1, self._worker_count + 1)
        )
        global_entry = self._load("global", self._store.global_path, self._store.read_global_record)

        log_info(
            self._logger,
            "runtime.read_finish",
            found=sum(1 for e in workers if e.record is not None),
            expected=self._worker_count,
            global_found=global_entry.record is not None,
        )
        return ReadResult(workers=workers, global_entry=global_entry)


def format_read_result(result: ReadResult) -> list[str]:
    lines = ["Reading prices data ...", ""]
    for entry in (*result.workers, result.global_entry):
        if entry.record is not None:
            lines.append(f"Reading file: {entry.path}")
            lines.append("")
            lines.extend(entry.record.text.rstrip("\n").splitlines())
        elif entry.error:
            lines.append(f"{entry.label}: record unreadable ({entry.error})")
        else:
            lines.append(f"{entry.label}: record missing ({entry.path})")
        lines.append("")

    summary = result.summary()
    if not summary.empty:
        lines.append(summary.to_string(index=False))
    return lines
