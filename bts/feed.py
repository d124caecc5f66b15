"""Candle loading from CSV/JSON files and deterministic sample data."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from .errors import CandleDataEmpty
from .models import Candle

logger = logging.getLogger(__name__)

# Exchange kline exports name the same fields differently.
_COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "open": ("open", "open_price"),
    "high": ("high", "high_price"),
    "low": ("low", "low_price"),
    "close": ("close", "close_price"),
    "volume": ("quote_asset_volume", "volume"),
    "open_time": ("open_time", "time"),
    "close_time": ("close_time",),
}
_PRICE_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close", "volume")
_REQUIRED_COLUMNS: tuple[str, ...] = (*_PRICE_COLUMNS, "open_time")


def _resolve_columns(frame: pd.DataFrame) -> dict[str, str]:
    resolved: dict[str, str] = {}
    for canonical, candidates in _COLUMN_ALIASES.items():
        for candidate in candidates:
            if candidate in frame.columns:
                resolved[canonical] = candidate
                break
    missing = [column for column in _REQUIRED_COLUMNS if column not in resolved]
    if missing:
        raise ValueError(f"Missing required candle columns: {missing}")
    return resolved


def _parse_times(values: pd.Series) -> pd.Series:
    """Parse epoch numbers (s, ms, or us, by magnitude) or ISO strings to UTC."""
    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.notna().all():
        magnitude = float(numeric.abs().max()) if len(numeric) else 0.0
        if magnitude >= 1e14:
            unit = "us"
        elif magnitude >= 1e11:
            unit = "ms"
        else:
            unit = "s"
        return pd.to_datetime(numeric.astype("int64"), unit=unit, utc=True)
    return pd.to_datetime(values, utc=True, errors="coerce", format="ISO8601")


def candles_from_frame(frame: pd.DataFrame) -> list[Candle]:
    """Validate a kline frame and convert it to candles sorted by open time."""
    if frame.empty:
        raise CandleDataEmpty("Candle frame has no rows")
    columns = _resolve_columns(frame)

    data = pd.DataFrame(index=frame.index)
    for name in _PRICE_COLUMNS:
        data[name] = pd.to_numeric(frame[columns[name]], errors="coerce")
    invalid = data[list(_PRICE_COLUMNS)].isna().any(axis=1)
    if invalid.any():
        raise ValueError(f"Invalid numeric candle values at rows {list(frame.index[invalid][:5])}")

    if "bid" in frame.columns:
        data["bid"] = pd.to_numeric(frame["bid"], errors="coerce").fillna(0.0)
    elif "taker_buy_quote_volume" in frame.columns:
        ask = pd.to_numeric(frame["taker_buy_quote_volume"], errors="coerce").fillna(0.0)
        data["bid"] = data["volume"] - ask
    else:
        data["bid"] = 0.0

    data["open_time"] = _parse_times(frame[columns["open_time"]])
    if "close_time" in columns:
        data["close_time"] = _parse_times(frame[columns["close_time"]])
    else:
        data["close_time"] = data["open_time"]

    bad_times = data["open_time"].isna() | data["close_time"].isna()
    if bad_times.any():
        logger.warning("Dropping %s candle row(s) with unparseable timestamps", int(bad_times.sum()))
        data = data.loc[~bad_times]
    if data.empty:
        raise CandleDataEmpty("Candle frame has no rows with valid timestamps")

    data = data.sort_values("open_time", kind="mergesort")
    return [
        Candle(
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            bid=float(row.bid),
            open_time=row.open_time.to_pydatetime(),
            close_time=row.close_time.to_pydatetime(),
        )
        for row in data.itertuples(index=False)
    ]


def load_candles(path: str | Path) -> list[Candle]:
    """Read candles from a ``.csv`` file or a ``.json`` array of kline objects."""
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Candle file not found: {source}")
    suffix = source.suffix.lower()
    if suffix == ".csv":
        frame = pd.read_csv(source)
    elif suffix == ".json":
        frame = pd.read_json(source, orient="records", convert_dates=False)
    else:
        raise ValueError(f"Unsupported candle file type: {source.suffix or '<none>'}")
    candles = candles_from_frame(frame)
    logger.debug("Loaded %s candles from %s", len(candles), source)
    return candles


def generate_sample_candles(
    count: int,
    *,
    seed: int = 7,
    base_price: float = 100.0,
    volatility: float = 0.01,
    start: datetime | None = None,
    interval: timedelta = timedelta(hours=1),
) -> list[Candle]:
    """Deterministic geometric random walk, handy for demos and tests."""
    if count <= 0:
        raise ValueError("count must be positive")
    if base_price <= 0:
        raise ValueError("base_price must be positive")

    rng = np.random.default_rng(seed)
    closes = base_price * np.exp(np.cumsum(rng.normal(0.0, volatility, size=count)))
    opens = np.concatenate(([base_price], closes[:-1]))
    wicks = np.abs(rng.normal(0.0, volatility / 2.0, size=(2, count)))
    highs = np.maximum(opens, closes) * (1.0 + wicks[0])
    lows = np.minimum(opens, closes) * (1.0 - wicks[1])
    volumes = rng.uniform(100.0, 1_000.0, size=count)
    bids = volumes * rng.uniform(0.3, 0.7, size=count)

    origin = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    candles: list[Candle] = []
    for index in range(count):
        open_time = origin + interval * index
        candles.append(
            Candle(
                open=float(opens[index]),
                high=float(highs[index]),
                low=float(lows[index]),
                close=float(closes[index]),
                volume=float(volumes[index]),
                bid=float(bids[index]),
                open_time=open_time,
                close_time=open_time + interval - timedelta(microseconds=1),
            )
        )
    return candles


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    records: list[dict[str, Any]] = [candle.to_dict() for candle in candles]
    return pd.DataFrame(records, columns=["open_time", "close_time", "open", "high", "low", "close", "volume", "bid"])
