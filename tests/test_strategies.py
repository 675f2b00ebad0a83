from dataclasses import replace

import pytest

from trade_pipeline.alpha import STRATEGY_REGISTRY, DEFAULT_WEIGHTS
from trade_pipeline.alpha.strategies import (
    trend_tf,
    market_structure,
    candle_force,
    sr_levels,
    rsi_filter,
    confirmations,
    volume_confirm,
    volatility_regime,
)
from trade_pipeline.data import Candle, Direction, MarketState, build_market_state
from tests.conftest import make_candles


def _state(candles, **overrides):
    values = dict(
        price=candles[-1].close,
        rsi=50.0,
        volume=candles[-1].volume,
        avg_volume=1000.0,
        support=min(c.low for c in candles),
        resistance=max(c.high for c in candles),
        candles=tuple(candles),
    )
    values.update(overrides)
    return MarketState(**values)


def _breakout_candles():
    prev = Candle(100.0, 100.5, 99.5, 100.0, 1000.0)
    last = Candle(100.0, 102.1, 99.9, 102.0, 3000.0)
    return [prev, last]


def test_registry_covers_all_strategies():
    assert set(STRATEGY_REGISTRY) == {
        'trendTF', 'marketStructure', 'candleForce', 'sr',
        'rsi', 'confirmations', 'volume', 'volatility'
    }
    assert DEFAULT_WEIGHTS['TrendTF'] == 3.0
    assert DEFAULT_WEIGHTS['Volume'] == 1.0


def test_trend_tf_strong_alignment():
    rising = build_market_state(make_candles([100.0 + i for i in range(400)]))
    falling = build_market_state(make_candles([500.0 - i for i in range(400)]))

    up = trend_tf(rising)
    down = trend_tf(falling)
    assert (up.signal, up.score) == (Direction.BUY, 3)
    assert (down.signal, down.score) == (Direction.SELL, 3)


def test_trend_tf_short_history_is_no_vote():
    signal = trend_tf(build_market_state(make_candles([100.0] * 50)))
    assert not signal.has_vote
    assert signal.score == 0


def test_market_structure_short_history_is_no_vote():
    assert not market_structure(build_market_state(make_candles([100.0] * 20))).has_vote


def test_candle_force_scores_strong_breakout():
    signal = candle_force(_state(_breakout_candles()))
    assert signal.signal is Direction.BUY
    assert signal.score == 4


def test_candle_force_weak_candle_is_no_vote():
    candles = make_candles([100.0] * 5)
    assert not candle_force(_state(candles)).has_vote


def test_sr_rejection_at_support_with_buy_bias():
    prev = Candle(100.0, 100.5, 99.5, 100.0, 1000.0)
    last = Candle(100.2, 100.5, 99.9, 100.0, 2000.0)
    state = _state([prev, last], support=99.9, resistance=105.0, direction=Direction.BUY)

    signal = sr_levels(state)
    assert (signal.signal, signal.score) == (Direction.BUY, 2)
    assert not sr_levels(replace(state, direction=Direction.SELL)).has_vote


def test_rsi_filter_zones():
    candles = make_candles([100.0] * 3)
    buy = _state(candles, direction=Direction.BUY)
    sell = _state(candles, direction=Direction.SELL)

    assert rsi_filter(replace(buy, rsi=45)).score == 2
    assert rsi_filter(replace(buy, rsi=60)).score == 1
    overbought = rsi_filter(replace(buy, rsi=75))
    assert overbought.signal is None and overbought.score == -2

    assert rsi_filter(replace(sell, rsi=55)).signal is Direction.SELL
    oversold = rsi_filter(replace(sell, rsi=25))
    assert oversold.signal is None and oversold.score == -2

    assert not rsi_filter(replace(buy, direction=None)).has_vote


def test_confirmations_requires_bias():
    candles = _breakout_candles()
    assert not confirmations(_state(candles)).has_vote

    signal = confirmations(_state(candles, rsi=55, volume=1500.0, direction=Direction.BUY))
    assert (signal.signal, signal.score) == (Direction.BUY, 3)


def test_volume_spike_votes_with_candle():
    candles = make_candles([100.0] * 19) + [Candle(100.0, 101.5, 99.5, 101.0, 2000.0)]
    signal = volume_confirm(_state(candles))
    assert (signal.signal, signal.score) == (Direction.BUY, 2)


def test_low_volume_warns_without_direction():
    candles = make_candles([100.0] * 19) + [Candle(100.0, 100.5, 99.5, 100.0, 100.0)]
    signal = volume_confirm(_state(candles))
    assert signal.signal is None
    assert signal.score == -1
    assert signal.meta['warning'] == 'LOW_VOL'


def test_volatility_regime_never_votes_direction():
    assert not volatility_regime(build_market_state(make_candles([100.0] * 20))).has_vote

    normal = volatility_regime(build_market_state(make_candles([100.0] * 60)))
    assert normal.signal is None
    assert normal.score == 0
    assert normal.meta['regime'] == 'NORMAL'


def _bare_state(candles, direction=None):
    return MarketState(price=100.0, rsi=50.0, volume=0.0, avg_volume=0.0,
                       support=0.0, resistance=0.0, candles=tuple(candles),
                       direction=direction)


@pytest.mark.parametrize("strategy_id", sorted(STRATEGY_REGISTRY))
def test_empty_history_is_no_vote_for_every_strategy(strategy_id):
    signal = STRATEGY_REGISTRY[strategy_id].evaluate(_bare_state([]))
    assert signal.signal is None
    assert signal.score == 0


# RSI needs no candles and Confirmations needs one
@pytest.mark.parametrize("strategy_id", sorted(set(STRATEGY_REGISTRY) - {'rsi', 'confirmations'}))
@pytest.mark.parametrize("direction", [Direction.BUY, Direction.SELL])
def test_single_candle_is_no_vote_with_a_bias(strategy_id, direction):
    candle = Candle(100.0, 102.0, 99.0, 101.8, 5000.0)
    signal = STRATEGY_REGISTRY[strategy_id].evaluate(_bare_state([candle], direction))
    assert signal.signal is None
    assert signal.score == 0


def test_confirmations_empty_history_with_bias_is_no_vote():
    assert confirmations(_bare_state([], Direction.BUY)).signal is None


@pytest.mark.parametrize("strategy_id", sorted(STRATEGY_REGISTRY))
def test_flat_zero_range_series_never_votes(strategy_id):
    candles = make_candles([100.0] * 40, wick=0.0)
    state = build_market_state(candles)
    signal = STRATEGY_REGISTRY[strategy_id].evaluate(state)
    assert signal.signal is None
    assert signal.score == 0


def test_sr_zero_range_last_candle_is_no_vote():
    candles = [Candle(100.0, 100.5, 99.5, 100.0, 1000.0), Candle(100.0, 100.0, 100.0, 100.0, 5000.0)]
    state = _state(candles, direction=Direction.BUY, support=100.0)
    assert sr_levels(state).signal is None


@pytest.mark.parametrize("open_, high, low, close, volume", [
    (100.0, 99.0, 98.0, 98.5, 1.0),
    (100.0, 101.0, 100.5, 100.8, 1.0),
    (100.0, 101.0, 99.0, 100.5, -1.0),
])
def test_inconsistent_candle_is_rejected(open_, high, low, close, volume):
    with pytest.raises(ValueError):
        Candle(open_, high, low, close, volume)
