"""Per-tick CSV signal log.

One row per tick with the model and market probabilities, edges, the
coarse recommendation and whatever the strategy engine did.
"""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass, fields
from typing import Optional, TextIO


@dataclass
class SignalRow:
    """Everything the tick runner decided, flattened for CSV."""

    timestamp: str                       # ISO-8601 UTC
    slug: str
    entry_minute: Optional[float]        # minutes since the market opened
    time_left_min: Optional[float]
    signal: str                          # "BUY UP" / "BUY DOWN" / "NO TRADE"
    model_up: Optional[float]
    model_down: Optional[float]
    mkt_up: Optional[float]
    mkt_down: Optional[float]
    edge_up: Optional[float]
    edge_down: Optional[float]
    recommendation: str                  # SIDE:PHASE:STRENGTH or NO_TRADE
    reference_price: Optional[float] = None
    secondary_price: Optional[float] = None
    strike: Optional[float] = None
    sigma: Optional[float] = None
    quant_mode: str = ""
    future_up_cents: Optional[float] = None
    future_edge_cents: Optional[float] = None
    future_strategy: str = ""
    strategy_phase: str = ""
    strategy_note: str = ""
    actions: str = ""                    # "|"-joined action summaries


_FIELDS = [f.name for f in fields(SignalRow)]


class SignalLogger:
    """Append-only CSV logger for SignalRow records."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._file: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None

    def _ensure_open(self) -> None:
        if self._file is not None:
            return
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        write_header = not os.path.exists(self._path) or os.path.getsize(self._path) == 0
        self._file = open(self._path, "a", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=_FIELDS)
        if write_header:
            self._writer.writeheader()

    def log(self, row: SignalRow) -> None:
        self._ensure_open()
        assert self._writer is not None
        self._writer.writerow({f: _cell(getattr(row, f)) for f in _FIELDS})
        self.flush()

    def flush(self) -> None:
        if self._file:
            self._file.flush()

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None
            self._writer = None


def _cell(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, float):
        return round(value, 6)
    return value
