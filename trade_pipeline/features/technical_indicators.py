"""
Technical Indicators
====================
Scalar indicator kernels over plain price sequences.

Each function returns the latest indicator value rather than a full series,
which is what the strategies consume every cycle.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MACDResult:
    macd_line: float
    signal_line: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


class TechnicalIndicators:
    """Technical analysis indicators."""

    @staticmethod
    def sma(prices: Sequence[float], period: int) -> Optional[float]:
        """Simple Moving Average of the last ``period`` prices."""
        values = _as_array(prices)
        if period <= 0 or len(values) < period:
            return None
        return float(values[-period:].mean())

    @staticmethod
    def ema(prices: Sequence[float], period: int) -> Optional[float]:
        """
        Exponential Moving Average.

        Seeded with the SMA of the first ``period`` values, then smoothed with
        ``k = 2 / (period + 1)``.
        """
        values = _as_array(prices)
        if period <= 0 or len(values) < period:
            return None

        ema = float(values[:period].mean())
        k = 2.0 / (period + 1)
        for price in values[period:]:
            ema = float(price) * k + ema * (1 - k)
        return ema

    @staticmethod
    def rsi(prices: Sequence[float], period: int = 14) -> float:
        """Relative Strength Index with Wilder smoothing."""
        values = _as_array(prices)
        if len(values) < period + 1:
            return 50.0

        deltas = np.diff(values)
        gains = np.where(deltas > 0, deltas, 0.0)
        losses = np.where(deltas < 0, -deltas, 0.0)

        avg_gain = float(gains[:period].mean())
        avg_loss = float(losses[:period].mean())
        rsi = _rsi_from_averages(avg_gain, avg_loss)

        for i in range(period, len(deltas)):
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period
            rsi = _rsi_from_averages(avg_gain, avg_loss)

        return rsi

    @staticmethod
    def true_range(highs: Sequence[float], lows: Sequence[float],
                   closes: Sequence[float]) -> np.ndarray:
        """True range for every bar after the first."""
        high = _as_array(highs)
        low = _as_array(lows)
        close = _as_array(closes)
        if len(high) < 2:
            return np.array([], dtype=float)

        prev_close = close[:-1]
        tr1 = high[1:] - low[1:]
        tr2 = np.abs(high[1:] - prev_close)
        tr3 = np.abs(low[1:] - prev_close)
        return np.maximum(np.maximum(tr1, tr2), tr3)

    @staticmethod
    def atr(highs: Sequence[float], lows: Sequence[float],
            closes: Sequence[float], period: int = 14) -> float:
        """Average True Range with Wilder smoothing."""
        if len(highs) < period + 1:
            return 0.0

        tr_values = TechnicalIndicators.true_range(highs, lows, closes)
        atr = float(tr_values[:period].mean())
        for tr in tr_values[period:]:
            atr = (atr * (period - 1) + float(tr)) / period
        return atr

    @staticmethod
    def macd(prices: Sequence[float], fast: int = 12, slow: int = 26,
             signal: int = 9) -> MACDResult:
        """Moving Average Convergence Divergence (latest values)."""
        values = _as_array(prices)
        if len(values) < slow + signal:
            return MACDResult(0.0, 0.0, 0.0)

        macd_series = []
        for i in range(slow, len(values) + 1):
            ema_fast = TechnicalIndicators.ema(values[:i], fast)
            ema_slow = TechnicalIndicators.ema(values[:i], slow)
            if ema_fast is not None and ema_slow is not None:
                macd_series.append(ema_fast - ema_slow)

        signal_line = TechnicalIndicators.ema(macd_series, signal)
        if signal_line is None:
            signal_line = 0.0
        macd_line = macd_series[-1] if macd_series else 0.0
        return MACDResult(macd_line, signal_line, macd_line - signal_line)

    @staticmethod
    def bollinger_bands(prices: Sequence[float], period: int = 20,
                        num_std: float = 2.0) -> BollingerBands:
        """Bollinger Bands using the population standard deviation."""
        values = _as_array(prices)
        if len(values) < period:
            last = float(values[-1]) if len(values) else 0.0
            return BollingerBands(last, last, last)

        window = values[-period:]
        middle = float(window.mean())
        std = float(window.std())  # ddof=0
        return BollingerBands(middle + num_std * std, middle, middle - num_std * std)

    @staticmethod
    def bandwidth(prices: Sequence[float], period: int = 20, num_std: float = 2.0) -> float:
        """Bollinger bandwidth: band width relative to the middle band."""
        bands = TechnicalIndicators.bollinger_bands(prices, period, num_std)
        if bands.middle == 0:
            return 0.0
        return (bands.upper - bands.lower) / bands.middle

    @staticmethod
    def average_range(candles, lookback: int = 14) -> float:
        """Mean high-low range of the trailing candles (0 when empty)."""
        recent = list(candles)[-lookback:]
        if not recent:
            return 0.0
        return float(np.mean([c.high - c.low for c in recent]))


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))
