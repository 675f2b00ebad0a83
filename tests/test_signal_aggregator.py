import pytest

from trade_pipeline.alpha import (
    SignalAggregator,
    AggregatedSignal,
    StrategySignal,
    STRATEGY_REGISTRY,
    aggregate_signals,
    evaluate_strategies,
)
from trade_pipeline.alpha.strategies import Strategy
from trade_pipeline.config import StrategyConfig
from trade_pipeline.data import Direction, build_market_state
from tests.conftest import make_candles


CONFIGS = [
    StrategyConfig('a', 'Alpha', True, 3.0),
    StrategyConfig('b', 'Beta', True, 1.0),
]


def test_weighted_majority_wins():
    signals = [
        StrategySignal('Alpha', Direction.BUY, 3),
        StrategySignal('Beta', Direction.SELL, 2),
    ]
    result = aggregate_signals(signals, CONFIGS, min_total_score=4)

    assert result.direction is Direction.BUY
    assert result.approved
    assert result.total_score == pytest.approx(9.0)
    assert result.confidence == pytest.approx(1.0)
    assert [v.weighted_score for v in result.votes] == [9.0, 2.0]


def test_tie_has_no_direction():
    signals = [
        StrategySignal('Alpha', Direction.BUY, 2),
        StrategySignal('Beta', Direction.SELL, 6),
    ]
    result = aggregate_signals(signals, CONFIGS)

    assert result.direction is None
    assert not result.approved
    assert result.total_score == 0
    assert result.reason.startswith("Signal rejected")


def test_score_below_floor_is_rejected():
    result = aggregate_signals([StrategySignal('Alpha', Direction.BUY, 1)], CONFIGS)
    assert result.direction is None
    assert not result.approved


def test_low_confidence_keeps_direction_but_rejects():
    configs = CONFIGS + [StrategyConfig('c', 'Gamma', True, 36.0)]
    result = aggregate_signals([StrategySignal('Alpha', Direction.BUY, 3)], configs)

    assert result.direction is Direction.BUY
    assert result.confidence < 0.4
    assert not result.approved


def test_confidence_grows_with_score():
    low = aggregate_signals([StrategySignal('Alpha', Direction.BUY, 2)], CONFIGS)
    high = aggregate_signals([StrategySignal('Alpha', Direction.BUY, 3)], CONFIGS)
    assert high.confidence >= low.confidence


def test_disabled_strategies_do_not_count_towards_confidence():
    configs = [StrategyConfig('a', 'Alpha', True, 1.0), StrategyConfig('b', 'Beta', False, 10.0)]
    result = aggregate_signals([StrategySignal('Alpha', Direction.SELL, 4)], configs)
    # max possible is 1.0 * 4, so half of it is already exceeded
    assert result.confidence == pytest.approx(1.0)
    assert result.direction is Direction.SELL


def test_approved_signal_requires_direction():
    with pytest.raises(ValueError):
        AggregatedSignal(direction=None, confidence=0.5, total_score=5, votes=(),
                         approved=True, reason="bad")


def test_failing_strategy_is_isolated(monkeypatch):
    def explode(state):
        raise RuntimeError("boom")

    monkeypatch.setitem(STRATEGY_REGISTRY, 'boom', Strategy('Boom', explode))
    configs = [StrategyConfig('boom', 'Boom'), StrategyConfig('rsi', 'RSI Filter')]
    state = build_market_state(make_candles([100.0] * 30))

    signals = evaluate_strategies(state, configs)
    assert [s.name for s in signals] == ['Boom', 'RSI']
    assert not signals[0].has_vote


def test_aggregator_generates_vote_per_enabled_strategy():
    aggregator = SignalAggregator()
    state = build_market_state(make_candles([100.0 + i for i in range(400)]))

    result = aggregator.generate(state)
    assert len(result.votes) == 8
    assert 0 <= result.confidence <= 1

    ok, _ = aggregator.set_enabled('volume', False)
    assert ok
    assert len(aggregator.generate(state).votes) == 7


def test_aggregator_setters_report_unknown_ids():
    aggregator = SignalAggregator()
    assert aggregator.set_weight('trendTF', 5.0)[0]
    assert aggregator.strategies[0].weight == 5.0
    assert aggregator.set_weight('trendTF', -1)[0] is False
    assert aggregator.set_enabled('nope', True)[0] is False
