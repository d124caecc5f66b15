import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Make the top-level packages importable without an install.
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from bts import Candle  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def build_candle(open_, high, low, close, index=0, volume=1.0, bid=0.0):
    open_time = T0 + timedelta(hours=index)
    return Candle(
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
        bid=bid,
        open_time=open_time,
        close_time=open_time + timedelta(minutes=59),
    )


def build_candles(rows):
    return [build_candle(*row, index=index) for index, row in enumerate(rows)]


@pytest.fixture
def make_candle():
    return build_candle


@pytest.fixture
def make_candles():
    return build_candles


@pytest.fixture
def long_candles():
    return build_candles([(90, 110, 80, 100), (100, 119, 90, 110), (110, 129, 100, 120)])


@pytest.fixture
def falling_candles():
    return build_candles([(150, 160, 131, 140), (140, 150, 121, 130), (130, 140, 111, 120)])
