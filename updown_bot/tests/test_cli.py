"""Tests for CLI argument handling."""

from __future__ import annotations

import logging

import pytest

from updown_bot.__main__ import _apply_overrides, _build_parser
from updown_bot.config import UpDownSettings
from updown_bot.logging_setup import configure_logging


class TestOverrides:
    def test_no_flags_keeps_settings(self) -> None:
        settings = UpDownSettings()
        args = _build_parser().parse_args([])
        assert _apply_overrides(settings, args) is settings

    def test_flags(self) -> None:
        args = _build_parser().parse_args([
            "--coin", "sol",
            "--slug", "sol-updown-15m-1700000000",
            "--poll-interval", "1.5",
            "--weight", "0.4",
            "--live-trading",
            "--no-dry-run",
            "--signals-csv", "",
            "-v",
        ])
        s = _apply_overrides(UpDownSettings(), args)
        assert s.coin == "SOL"
        assert s.market_slug == "sol-updown-15m-1700000000"
        assert s.poll_interval_seconds == 1.5
        assert s.model_weight == 0.4
        assert s.trading_enabled is True
        assert s.dry_run is False
        assert s.signals_csv == ""
        assert s.log_level == "DEBUG"

    def test_unknown_coin_rejected(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["--coin", "doge"])


class TestConfigureLogging:
    def test_quiets_transport_loggers(self) -> None:
        configure_logging("debug")
        for name in ("httpx", "httpcore", "websockets"):
            assert logging.getLogger(name).level == logging.WARNING
