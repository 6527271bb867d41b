from __future__ import annotations

import json
import logging

import pytest

from apps.run_pulse import build_parser, main
from price_pulse.storage.records import RecordStore
from tests.helpers.feeds import trade_msg


@pytest.fixture
def quiet_logging(tmp_path):
    path = tmp_path / "logging.json"
    path.write_text(
        json.dumps(
            {
                "active_profile": "default",
                "profiles": {
                    "default": {
                        "level": "WARNING",
                        "handlers": {"console": {"enabled": False}},
                        "format": {"json": True},
                    }
                },
            }
        ),
        encoding="utf-8",
    )
    yield str(path)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture
def pulse_config(tmp_path):
    path = tmp_path / "pulse.json"
    path.write_text(json.dumps({"worker_count": 2, "records_dir": str(tmp_path / "records")}), encoding="utf-8")
    return str(path)


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.mode == "cache"
    assert args.times is None


def test_invalid_mode_exits_with_usage_error(capsys) -> None:
    assert main(["-m", "stream"]) == 2
    assert "Invalid mode: stream" in capsys.readouterr().err


def test_non_positive_times_rejected(capsys, pulse_config) -> None:
    assert main(["-t", "0", "-c", pulse_config]) == 2
    assert "--times" in capsys.readouterr().err


def test_negative_replay_interval_rejected(tmp_path, capsys, pulse_config) -> None:
    replay_path = tmp_path / "trades.jsonl"
    replay_path.write_text(trade_msg(100.0) + "\n", encoding="utf-8")

    code = main(["-c", pulse_config, "--replay", str(replay_path), "--replay-interval", "-1"])

    assert code == 2
    assert "--replay-interval" in capsys.readouterr().err


def test_times_beyond_collect_timeout_rejected(tmp_path, capsys) -> None:
    path = tmp_path / "pulse.json"
    path.write_text(json.dumps({"window_s": 1.0, "collect_timeout_s": 5.0}), encoding="utf-8")

    assert main(["-t", "10", "-c", str(path)]) == 2
    assert "collect_timeout_s" in capsys.readouterr().err


def test_cache_mode_from_replay_file(tmp_path, capsys, quiet_logging, pulse_config) -> None:
    replay_path = tmp_path / "trades.jsonl"
    replay_path.write_text("\n".join([trade_msg(100.0), "oops", trade_msg(300.0)]) + "\n", encoding="utf-8")

    code = main(["-m", "cache", "-t", "1", "-c", pulse_config, "--replay", str(replay_path), "--log-config", quiet_logging])

    out = capsys.readouterr().out
    assert code == 0
    assert "Mode: cache" in out
    assert "Will listen for 1 seconds." in out
    assert "Aggregator: Global average BTC price: 200.0000" in out
    record = RecordStore(tmp_path / "records").read_global_record()
    assert record.client_averages == (200.0, 200.0)
    assert record.global_average == 200.0


def test_cache_mode_without_data_exits_nonzero(tmp_path, capsys, quiet_logging, pulse_config) -> None:
    replay_path = tmp_path / "empty.jsonl"
    replay_path.write_text("not a trade\n", encoding="utf-8")

    code = main(["-c", pulse_config, "--replay", str(replay_path), "--log-config", quiet_logging])

    captured = capsys.readouterr()
    assert code == 1
    assert "no usable result" in captured.err
    assert not (tmp_path / "records" / "global_data.txt").exists()


def test_missing_replay_file_is_startup_failure(tmp_path, capsys, quiet_logging, pulse_config) -> None:
    code = main(["-c", pulse_config, "--replay", str(tmp_path / "missing.jsonl"), "--log-config", quiet_logging])

    assert code == 2
    assert "startup failure" in capsys.readouterr().err


def test_read_mode_prints_records(tmp_path, capsys, quiet_logging, pulse_config) -> None:
    store = RecordStore(tmp_path / "records")
    store.write_worker_record(1, [10.0, 20.0], 15.0)
    store.write_global_record([15.0], 15.0)

    code = main(["-m", "read", "-c", pulse_config, "--log-config", quiet_logging])

    out = capsys.readouterr().out
    assert code == 0
    assert "Mode: read" in out
    assert "Prices: [10.0, 20.0]" in out
    assert "client 2: record missing" in out
    assert "Global Average: 15.0" in out
