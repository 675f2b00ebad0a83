import random

import pandas as pd
import pytest

from trade_pipeline.data import Candle, MarketConditions


START = pd.Timestamp("2024-01-02 12:00", tz="UTC")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: pd.Timestamp = START):
        self.current = start

    def __call__(self) -> pd.Timestamp:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + pd.Timedelta(**kwargs)


def make_candles(closes, volume=1000.0, wick=0.5, start=START):
    """One candle per close, opening at the previous close, one minute apart."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_ = prev
        candles.append(Candle(
            open=open_,
            high=max(open_, close) + wick,
            low=min(open_, close) - wick,
            close=close,
            volume=volume,
            timestamp=start + pd.Timedelta(minutes=i)
        ))
        prev = close
    return candles


def make_conditions(price=100.0, spread_pct=0.0002, volume_24h=10_000_000.0, volatility=1.0):
    half = price * spread_pct / 2
    return MarketConditions(
        current_price=price,
        bid_price=price - half,
        ask_price=price + half,
        volume_24h=volume_24h,
        avg_volume=1000.0,
        volatility=volatility,
        spread_pct=spread_pct
    )


def make_ohlcv_frame(n=200, base=100.0):
    """Synthetic trending, oscillating 1m OHLCV table."""
    closes = [base + i * 0.05 + 2.0 * ((i % 40) - 20) / 20 for i in range(n)]
    rows = []
    prev = closes[0]
    for i, close in enumerate(closes):
        rows.append({
            "timestamp": START + pd.Timedelta(minutes=i),
            "open": prev,
            "high": max(prev, close) + 0.2,
            "low": min(prev, close) - 0.2,
            "close": close,
            "volume": 1000.0 + (i % 7) * 150.0,
        })
        prev = close
    return pd.DataFrame(rows)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def flat_candles():
    return make_candles([100.0] * 30)


@pytest.fixture
def conditions():
    return make_conditions()
