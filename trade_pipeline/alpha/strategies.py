"""
Strategy Set
============
Independent scoring units. Each strategy is a pure function of a
``MarketState`` returning a ``StrategySignal``; the registry maps a
strategy id to its function and display name.

A strategy never raises for short histories or flat candles: it returns a
no-vote (``signal=None, score=0``) instead.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import logging

from ..data import Candle, Direction, MarketState
from ..features import TechnicalIndicators

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategySignal:
    """One strategy's vote for a cycle."""
    name: str
    signal: Optional[Direction] = None
    score: float = 0
    meta: Dict[str, str] = field(default_factory=dict)

    @property
    def has_vote(self) -> bool:
        return self.signal is not None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'signal': self.signal.value if self.signal else None,
            'score': self.score,
            **self.meta
        }


@dataclass(frozen=True)
class Strategy:
    """A named evaluation function."""
    name: str
    evaluate: Callable[[MarketState], StrategySignal]
    default_weight: float = 1.0


def _no_vote(name: str, **meta) -> StrategySignal:
    return StrategySignal(name=name, signal=None, score=0, meta=meta)


# ---------------------------------------------------------------------------
# Multi-timeframe trend
# ---------------------------------------------------------------------------

EMA_FAST = 9
EMA_SLOW = 21


def _detect_trend(fast: float, slow: float, threshold: float = 0.001) -> int:
    if fast > slow * (1 + threshold):
        return 1
    if fast < slow * (1 - threshold):
        return -1
    return 0


def trend_tf(state: MarketState) -> StrategySignal:
    """EMA 9/21 alignment across the 5m and 15m series."""
    name = 'TrendTF'
    prices_5m = state.trend_5m_prices
    prices_15m = state.trend_15m_prices
    if len(prices_5m) < EMA_SLOW or len(prices_15m) < EMA_SLOW:
        return _no_vote(name)

    emas = [
        TechnicalIndicators.ema(prices_5m, EMA_FAST),
        TechnicalIndicators.ema(prices_5m, EMA_SLOW),
        TechnicalIndicators.ema(prices_15m, EMA_FAST),
        TechnicalIndicators.ema(prices_15m, EMA_SLOW),
    ]
    if any(value is None for value in emas):
        return _no_vote(name)

    trend_5m = _detect_trend(emas[0], emas[1])
    trend_15m = _detect_trend(emas[2], emas[3])

    # Strong alignment
    if trend_5m == 1 and trend_15m == 1:
        return StrategySignal(name, Direction.BUY, 3)
    if trend_5m == -1 and trend_15m == -1:
        return StrategySignal(name, Direction.SELL, 3)

    # Weak trend
    if trend_5m == 1 or trend_15m == 1:
        return StrategySignal(name, Direction.BUY, 1)
    if trend_5m == -1 or trend_15m == -1:
        return StrategySignal(name, Direction.SELL, 1)

    return _no_vote(name)


# ---------------------------------------------------------------------------
# Market structure
# ---------------------------------------------------------------------------

def find_swings(candles: Tuple[Candle, ...], lookback: int = 10) -> Tuple[List[float], List[float]]:
    """Swing highs and lows: bars strictly beyond both neighbours."""
    swing_highs = []
    swing_lows = []
    for i in range(2, len(candles) - 2):
        high = candles[i].high
        low = candles[i].low
        if high > candles[i - 1].high and high > candles[i + 1].high:
            swing_highs.append(high)
        if low < candles[i - 1].low and low < candles[i + 1].low:
            swing_lows.append(low)
    return swing_highs[-lookback:], swing_lows[-lookback:]


def _strong_body(candle: Candle, ratio: float = 0.6) -> bool:
    return candle.range > 0 and candle.body / candle.range > ratio


def market_structure(state: MarketState) -> StrategySignal:
    """Break of the last swing level in the direction of the swing structure."""
    name = 'MarketStructure'
    candles = state.candles
    if len(candles) < 30:
        return _no_vote(name)

    swing_highs, swing_lows = find_swings(candles)
    if len(swing_highs) < 2 or len(swing_lows) < 2:
        return _no_vote(name)

    last_high, prev_high = swing_highs[-1], swing_highs[-2]
    last_low, prev_low = swing_lows[-1], swing_lows[-2]
    last = candles[-1]
    prev = candles[-2]

    # Bullish: higher low, then close through the last swing high
    if last_low > prev_low and last.close > last_high and prev.close <= last_high:
        score = 2
        if 50 < state.rsi < 70:
            score += 1
        if _strong_body(last):
            score += 1
        return StrategySignal(name, Direction.BUY, min(score, 4))

    # Bearish: lower high, then close through the last swing low
    if last_high < prev_high and last.close < last_low and prev.close >= last_low:
        score = 2
        if 30 < state.rsi < 50:
            score += 1
        if _strong_body(last):
            score += 1
        return StrategySignal(name, Direction.SELL, min(score, 4))

    return _no_vote(name)


# ---------------------------------------------------------------------------
# Candle force
# ---------------------------------------------------------------------------

def candle_force(state: MarketState) -> StrategySignal:
    """Body dominance, volume and continuation of the last candle."""
    name = 'CandleForce'
    candles = state.candles
    if len(candles) < 2:
        return _no_vote(name)

    last = candles[-1]
    prev = candles[-2]
    body_ratio = last.body / (last.range or 1)
    direction = Direction.BUY if last.close > last.open else Direction.SELL

    score = 0
    if body_ratio > 0.6:
        score += 1
    if body_ratio > 0.75:
        score += 1
    if state.avg_volume > 0 and last.volume > state.avg_volume * 1.2:
        score += 1
    if direction is Direction.BUY and last.close > prev.high:
        score += 1
    if direction is Direction.SELL and last.close < prev.low:
        score += 1

    if score >= 2:
        return StrategySignal(name, direction, score)
    return _no_vote(name)


# ---------------------------------------------------------------------------
# Support / resistance
# ---------------------------------------------------------------------------

SR_PROXIMITY = 0.0025


def sr_levels(state: MarketState) -> StrategySignal:
    """Rejection candle at support (BUY bias) or resistance (SELL bias)."""
    name = 'SR'
    candles = state.candles
    if len(candles) < 2:
        return _no_vote(name)

    last = candles[-1]
    if last.range == 0 or state.price == 0:
        return _no_vote(name)

    rejection_ratio = last.body / last.range
    near_support = abs(state.price - state.support) / state.price < SR_PROXIMITY
    near_resistance = abs(state.price - state.resistance) / state.price < SR_PROXIMITY
    volume_confirm = state.volume > state.avg_volume * 1.1

    if (near_support and state.direction is Direction.BUY
            and rejection_ratio < 0.6 and volume_confirm):
        return StrategySignal(name, Direction.BUY, 2)

    if (near_resistance and state.direction is Direction.SELL
            and rejection_ratio < 0.6 and volume_confirm):
        return StrategySignal(name, Direction.SELL, 2)

    return _no_vote(name)


# ---------------------------------------------------------------------------
# RSI filter
# ---------------------------------------------------------------------------

def rsi_filter(state: MarketState) -> StrategySignal:
    """Pullback and continuation zones for the current bias; vetoes extremes."""
    name = 'RSI'
    rsi = state.rsi

    if state.direction is Direction.BUY:
        if 42 <= rsi <= 50:
            return StrategySignal(name, Direction.BUY, 2)
        if 50 < rsi <= 65:
            return StrategySignal(name, Direction.BUY, 1)
        if rsi > 70:
            return StrategySignal(name, None, -2)

    if state.direction is Direction.SELL:
        if 50 <= rsi <= 58:
            return StrategySignal(name, Direction.SELL, 2)
        if 35 <= rsi < 50:
            return StrategySignal(name, Direction.SELL, 1)
        if rsi < 30:
            return StrategySignal(name, None, -2)

    return _no_vote(name)


# ---------------------------------------------------------------------------
# Confirmations
# ---------------------------------------------------------------------------

def confirmations(state: MarketState) -> StrategySignal:
    """Layered RSI, volume and structure confirmation of the current bias."""
    name = 'Confirmations'
    candles = state.candles
    direction = state.direction
    if not candles or direction is None:
        return _no_vote(name)

    confirmed = 0
    penalty = 0

    # RSI alignment
    if direction is Direction.BUY:
        if 45 <= state.rsi <= 65:
            confirmed += 1
        if state.rsi > 70:
            penalty += 1
    else:
        if 35 <= state.rsi <= 55:
            confirmed += 1
        if state.rsi < 30:
            penalty += 1

    # Volume
    if state.avg_volume > 0:
        if state.volume > state.avg_volume * 1.3:
            confirmed += 1
        elif state.volume < state.avg_volume * 0.8:
            penalty += 1

    # Structure
    last = candles[-1]
    prev = candles[-2] if len(candles) > 1 else last
    if direction is Direction.BUY and last.close > prev.close:
        confirmed += 1
    if direction is Direction.SELL and last.close < prev.close:
        confirmed += 1

    # Overextension
    recent = candles[-20:]
    if direction is Direction.BUY and state.price >= max(c.high for c in recent):
        penalty += 1
    if direction is Direction.SELL and state.price <= min(c.low for c in recent):
        penalty += 1

    score = confirmed - penalty
    if score <= 0:
        return _no_vote(name)
    return StrategySignal(name, direction, min(score, 3))


# ---------------------------------------------------------------------------
# Volume confirmation
# ---------------------------------------------------------------------------

def volume_confirm(state: MarketState) -> StrategySignal:
    name = 'Volume'
    candles = state.candles
    if len(candles) < 20:
        return _no_vote(name)

    last = candles[-1]
    avg_volume = sum(c.volume for c in candles[-20:]) / 20
    price_change = last.close - last.open

    if last.volume > avg_volume * 1.5 and price_change > 0:
        return StrategySignal(name, Direction.BUY, 2)
    if last.volume > avg_volume * 1.5 and price_change < 0:
        return StrategySignal(name, Direction.SELL, 2)
    if last.volume < avg_volume * 0.6:
        return StrategySignal(name, None, -1, {'warning': 'LOW_VOL'})

    return _no_vote(name)


# ---------------------------------------------------------------------------
# Volatility regime
# ---------------------------------------------------------------------------

def volatility_regime(state: MarketState) -> StrategySignal:
    """Scores the ATR regime; never emits a direction."""
    name = 'Volatility'
    candles = state.candles
    if len(candles) < 30:
        return _no_vote(name)

    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    closes = [c.close for c in candles]

    atr = TechnicalIndicators.atr(highs, lows, closes, 14)
    history = [
        TechnicalIndicators.atr(highs[:i], lows[:i], closes[:i], 14)
        for i in range(20, len(candles))
    ]
    if not history:
        return _no_vote(name)

    recent = history[-20:]
    avg_atr = sum(recent) / len(recent)

    if atr < avg_atr * 0.75:
        return StrategySignal(name, None, 1, {'regime': 'LOW_VOL'})
    if atr > avg_atr * 1.8:
        return StrategySignal(name, None, -1, {'regime': 'HIGH_VOL'})
    return StrategySignal(name, None, 0, {'regime': 'NORMAL'})


STRATEGY_REGISTRY: Dict[str, Strategy] = {
    'trendTF': Strategy('TrendTF', trend_tf, 3.0),
    'marketStructure': Strategy('MarketStructure', market_structure, 2.5),
    'candleForce': Strategy('CandleForce', candle_force, 2.0),
    'sr': Strategy('SR', sr_levels, 2.0),
    'rsi': Strategy('RSI', rsi_filter, 1.5),
    'confirmations': Strategy('Confirmations', confirmations, 1.5),
    'volume': Strategy('Volume', volume_confirm, 1.0),
    'volatility': Strategy('Volatility', volatility_regime, 1.0),
}

DEFAULT_WEIGHTS: Dict[str, float] = {
    strategy.name: strategy.default_weight for strategy in STRATEGY_REGISTRY.values()
}
