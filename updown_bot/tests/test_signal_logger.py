"""Tests for the per-tick signal CSV."""

from __future__ import annotations

import csv
from dataclasses import fields

from updown_bot.signal_logger import SignalLogger, SignalRow


def _make_row(**overrides) -> SignalRow:
    defaults = dict(
        timestamp="2023-11-14T22:20:50+00:00",
        slug="btc-updown-15m-1700000100",
        entry_minute=5.8,
        time_left_min=9.2,
        signal="BUY UP",
        model_up=0.6123456789,
        model_down=0.3876543211,
        mkt_up=0.55,
        mkt_down=0.46,
        edge_up=0.0623456789,
        edge_down=-0.0723456789,
        recommendation="UP:MID:HIGH",
    )
    defaults.update(overrides)
    return SignalRow(**defaults)


class TestSignalLogger:
    def test_header_and_row(self, tmp_path) -> None:
        path = tmp_path / "signals.csv"
        logger = SignalLogger(str(path))
        logger.log(_make_row(actions="OPEN_SCALP_UP:EDGE_UP_0.015"))
        logger.close()

        with open(path) as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["recommendation"] == "UP:MID:HIGH"
        assert rows[0]["model_up"] == "0.612346"
        assert rows[0]["strike"] == ""
        assert rows[0]["actions"] == "OPEN_SCALP_UP:EDGE_UP_0.015"

    def test_header_written_once(self, tmp_path) -> None:
        path = tmp_path / "signals.csv"
        for _ in range(2):
            logger = SignalLogger(str(path))
            logger.log(_make_row())
            logger.close()

        with open(path) as f:
            lines = f.read().splitlines()
        assert lines[0].startswith("timestamp,slug,")
        assert len(lines) == 3

    def test_header_for_empty_file(self, tmp_path) -> None:
        path = tmp_path / "signals.csv"
        path.write_text("")
        logger = SignalLogger(str(path))
        logger.log(_make_row())
        logger.close()
        header = path.read_text().splitlines()[0].split(",")
        assert header == [f.name for f in fields(SignalRow)]

    def test_creates_directory(self, tmp_path) -> None:
        path = tmp_path / "logs" / "nested" / "signals.csv"
        logger = SignalLogger(str(path))
        logger.log(_make_row())
        logger.close()
        assert path.exists()

    def test_close_is_idempotent(self, tmp_path) -> None:
        logger = SignalLogger(str(tmp_path / "signals.csv"))
        logger.close()
        logger.log(_make_row())
        logger.close()
        logger.close()
