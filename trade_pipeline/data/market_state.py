"""
Market Data Model
=================
Candles, per-cycle market snapshots and the helpers that build them
from raw OHLCV data.

A ``MarketState`` is produced once per decision cycle and never mutated
afterwards; strategies only read it.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple
import logging

from ..features import TechnicalIndicators

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class Direction(Enum):
    """Trade direction."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> 'Direction':
        return Direction.SELL if self is Direction.BUY else Direction.BUY


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: pd.Timestamp = field(default_factory=lambda: pd.Timestamp.now(tz='UTC'))

    def __post_init__(self):
        body_low = min(self.open, self.close)
        body_high = max(self.open, self.close)
        if not (self.low <= body_low <= body_high <= self.high):
            raise ValueError(
                f"Inconsistent candle: low={self.low} open={self.open} "
                f"close={self.close} high={self.high}"
            )
        if self.volume < 0:
            raise ValueError(f"Negative candle volume: {self.volume}")

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume
        }


@dataclass(frozen=True)
class MarketState:
    """Point-in-time snapshot consumed by the strategy set."""
    price: float
    rsi: float
    volume: float
    avg_volume: float
    support: float
    resistance: float
    candles: Tuple[Candle, ...] = ()
    trend_5m_prices: Tuple[float, ...] = ()
    trend_15m_prices: Tuple[float, ...] = ()
    direction: Optional[Direction] = None  # directional bias for filter strategies


@dataclass(frozen=True)
class MarketConditions:
    """Quote and liquidity snapshot used by the risk gate and the simulator."""
    current_price: float
    bid_price: float
    ask_price: float
    volume_24h: float
    avg_volume: float
    volatility: float  # ATR in price units
    spread_pct: float

    def to_dict(self) -> dict:
        return {
            'current_price': self.current_price,
            'bid_price': self.bid_price,
            'ask_price': self.ask_price,
            'volume_24h': self.volume_24h,
            'avg_volume': self.avg_volume,
            'volatility': self.volatility,
            'spread_pct': self.spread_pct
        }


def build_market_state(candles: Sequence[Candle],
                       direction: Optional[Direction] = None,
                       rsi_period: int = 14,
                       level_lookback: int = 20) -> MarketState:
    """
    Build a MarketState from a candle history.

    Support and resistance are the extreme lows/highs of the last
    ``level_lookback`` candles; the 5m and 15m series are every 5th and
    15th close of the 1m history.
    """
    candles = tuple(candles)
    if not candles:
        raise ValueError("Cannot build market state without candles")

    recent = candles[-level_lookback:]
    closes = [c.close for c in candles]
    last = candles[-1]

    # Average over a fixed window, as if missing bars had zero volume
    avg_volume = sum(c.volume for c in recent) / level_lookback

    return MarketState(
        price=last.close,
        rsi=TechnicalIndicators.rsi(closes, rsi_period),
        volume=last.volume,
        avg_volume=avg_volume,
        support=min(c.low for c in recent),
        resistance=max(c.high for c in recent),
        candles=candles,
        trend_5m_prices=tuple(closes[::5]),
        trend_15m_prices=tuple(closes[::15]),
        direction=direction
    )


def build_market_conditions(candles: Sequence[Candle],
                            spread_pct: float = 0.0002,
                            volume_window: int = 1440,
                            atr_period: int = 14) -> MarketConditions:
    """Derive quotes, 24h quote volume and ATR volatility from candles."""
    if not candles:
        raise ValueError("Cannot build market conditions without candles")

    last = candles[-1]
    price = last.close
    half_spread = price * spread_pct / 2

    window = candles[-volume_window:]
    volume_24h = float(sum(c.close * c.volume for c in window))
    avg_volume = float(np.mean([c.volume for c in candles[-20:]]))

    volatility = TechnicalIndicators.atr(
        [c.high for c in candles],
        [c.low for c in candles],
        [c.close for c in candles],
        atr_period
    )

    return MarketConditions(
        current_price=price,
        bid_price=price - half_spread,
        ask_price=price + half_spread,
        volume_24h=volume_24h,
        avg_volume=avg_volume,
        volatility=volatility,
        spread_pct=spread_pct
    )


def trend_bias(state: MarketState, fast: int = 9, slow: int = 21) -> Optional[Direction]:
    """Directional bias from the 5m EMA crossover, used when no bias is supplied."""
    fast_ema = TechnicalIndicators.ema(state.trend_5m_prices, fast)
    slow_ema = TechnicalIndicators.ema(state.trend_5m_prices, slow)
    if fast_ema is None or slow_ema is None or fast_ema == slow_ema:
        return None
    return Direction.BUY if fast_ema > slow_ema else Direction.SELL


def candles_from_dataframe(df: pd.DataFrame) -> List[Candle]:
    """
    Convert an OHLCV DataFrame to candles.

    Column names are matched case-insensitively. The timestamp comes from a
    ``timestamp`` column when present, otherwise from the index.
    """
    frame = df.rename(columns={c: c.lower() for c in df.columns})
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"Missing OHLCV columns: {missing}")

    if 'timestamp' in frame.columns:
        timestamps = pd.to_datetime(frame['timestamp'], utc=True)
    else:
        timestamps = pd.to_datetime(frame.index, utc=True)

    candles = []
    for ts, row in zip(timestamps, frame[REQUIRED_COLUMNS].itertuples(index=False)):
        candles.append(Candle(
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            timestamp=pd.Timestamp(ts)
        ))
    return candles


def load_candles_csv(filepath: str) -> List[Candle]:
    """Load candles from a CSV file with OHLCV columns."""
    df = pd.read_csv(filepath)
    candles = candles_from_dataframe(df)
    logger.info(f"Loaded {len(candles)} candles from {filepath}")
    return candles


def candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    """Inverse of :func:`candles_from_dataframe`."""
    return pd.DataFrame([c.to_dict() for c in candles], columns=['timestamp'] + REQUIRED_COLUMNS)
