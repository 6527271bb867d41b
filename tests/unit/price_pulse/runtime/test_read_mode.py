from __future__ import annotations

import pytest

from price_pulse.runtime.read import ReadModeDriver, format_read_result
from price_pulse.storage.records import RecordStore, WorkerRecord


@pytest.fixture
def populated(tmp_path) -> RecordStore:
    store = RecordStore(tmp_path)
    store.write_worker_record(1, [10.0, 20.0], 15.0)
    # worker 2 never wrote a record
    (tmp_path / "client_3_data.txt").write_text("garbage\n", encoding="utf-8")
    store.write_global_record([15.0], 15.0)
    return store


def test_read_mode_reports_missing_and_unreadable_records(populated: RecordStore) -> None:
    result = ReadModeDriver(store=populated, worker_count=3).run()

    assert [e.status for e in result.workers] == ["ok", "missing", "unreadable"]
    assert isinstance(result.workers[0].record, WorkerRecord)
    assert result.global_entry.status == "ok"
    assert result.global_entry.record.client_averages == (15.0,)


def test_read_mode_summary_table(populated: RecordStore) -> None:
    summary = ReadModeDriver(store=populated, worker_count=3).run().summary()

    assert list(summary["identity"]) == [1, 2, 3]
    assert list(summary["status"]) == ["ok", "missing", "unreadable"]
    assert summary.loc[0, "samples"] == 2
    assert summary.loc[0, "average"] == 15.0


def test_format_read_result_prints_every_slot(populated: RecordStore) -> None:
    lines = format_read_result(ReadModeDriver(store=populated, worker_count=3).run())
    text = "\n".join(lines)

    assert lines[0] == "Reading prices data ..."
    assert "Prices: [10.0, 20.0]" in text
    assert "client 2: record missing" in text
    assert "client 3: record unreadable" in text
    assert "Client Averages: [15.0]" in text
    assert "Global Average: 15.0" in text


def test_read_mode_with_no_records(tmp_path) -> None:
    result = ReadModeDriver(store=RecordStore(tmp_path), worker_count=2).run()

    assert [e.status for e in result.workers] == ["missing", "missing"]
    assert result.global_entry.status == "missing"
    assert "global: record missing" in "\n".join(format_read_result(result))
