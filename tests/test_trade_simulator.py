import random

import pytest

from trade_pipeline.config import SimulationConfig
from trade_pipeline.data import Direction
from trade_pipeline.execution import TradeSimulator, MarketSnapshot, SimulatedOrderStatus


MARKET = MarketSnapshot(bid=99.99, ask=100.01, last_price=100.0,
                        volume_24h=10_000_000.0, volatility=0.01)


def test_fills_respect_quantity_and_slippage_bounds(rng):
    simulator = TradeSimulator(rng=rng)
    config = simulator.get_config()

    for _ in range(200):
        order = simulator.simulate_order("BTCUSDT", Direction.BUY, 5.0, 100.0, MARKET)
        assert order.executed_quantity <= order.requested_quantity
        assert 0 <= order.slippage_pct <= config.max_slippage_pct
        assert config.min_fill_rate <= order.fill_rate <= 1.0
        assert config.avg_latency_ms - config.latency_variance_ms <= order.latency_ms
        assert order.latency_ms <= config.max_latency_ms

    assert simulator.get_simulation_stats()['total_orders'] == 200


def test_same_seed_reproduces_fills():
    first = TradeSimulator(rng=random.Random(7)).simulate_order(
        "BTCUSDT", Direction.SELL, 2.0, 100.0, MARKET)
    second = TradeSimulator(rng=random.Random(7)).simulate_order(
        "BTCUSDT", Direction.SELL, 2.0, 100.0, MARKET)

    assert first.executed_price == second.executed_price
    assert first.executed_quantity == second.executed_quantity
    assert first.commission == second.commission


def test_execution_price_is_on_the_far_side_of_the_quote(rng):
    simulator = TradeSimulator(rng=rng)
    buy = simulator.simulate_order("BTCUSDT", Direction.BUY, 1.0, 100.0, MARKET)
    sell = simulator.simulate_order("BTCUSDT", Direction.SELL, 1.0, 100.0, MARKET)

    assert buy.executed_price >= MARKET.ask
    assert sell.executed_price <= MARKET.bid


def test_frictionless_config_fills_at_quote(rng):
    config = SimulationConfig(slippage_enabled=False, partial_fills_enabled=False,
                              latency_enabled=False, market_impact_enabled=False,
                              maker_fee=0.0, taker_fee=0.0)
    order = TradeSimulator(config, rng=rng).simulate_order(
        "BTCUSDT", Direction.BUY, 3.0, 100.0, MARKET)

    assert order.status is SimulatedOrderStatus.FILLED
    assert order.executed_price == pytest.approx(MARKET.ask)
    assert order.executed_quantity == 3.0
    assert order.commission == 0
    assert order.effective_price == pytest.approx(MARKET.ask)


def test_market_impact_above_threshold(rng):
    config = SimulationConfig(slippage_enabled=False, partial_fills_enabled=False)
    simulator = TradeSimulator(config, rng=rng)

    small = simulator.simulate_order("BTCUSDT", Direction.BUY, 50.0, 100.0, MARKET)
    large = simulator.simulate_order("BTCUSDT", Direction.BUY, 1100.0, 100.0, MARKET)

    assert small.market_impact == 0
    # 100k of notional above the 10k threshold
    assert large.market_impact == pytest.approx(0.0001)
    assert large.executed_price > small.executed_price


def test_real_delay_is_capped():
    sleeps = []
    config = SimulationConfig(simulate_delay=True, avg_latency_ms=400,
                              latency_variance_ms=0, max_latency_ms=500)
    TradeSimulator(config, rng=random.Random(1), sleep=sleeps.append).simulate_order(
        "BTCUSDT", Direction.BUY, 1.0, 100.0, MARKET)

    assert sleeps == [pytest.approx(0.1)]


def test_stats_and_history(rng):
    simulator = TradeSimulator(rng=rng)
    for _ in range(5):
        simulator.simulate_order("BTCUSDT", Direction.BUY, 1.0, 100.0, MARKET)

    stats = simulator.get_simulation_stats()
    assert stats['total_orders'] == 5
    assert stats['filled_orders'] + stats['partial_fills'] + stats['rejected_orders'] == 5
    assert stats['total_commissions'] > 0
    assert 0 < simulator.get_average_fill_rate() <= 1

    simulator.clear_history()
    assert simulator.get_order_history() == []
    assert simulator.get_average_slippage() == 0


def test_update_config(rng):
    simulator = TradeSimulator(rng=rng)
    assert simulator.update_config(taker_fee=0.002) == (True, "Updated")
    assert simulator.get_config().taker_fee == 0.002
    assert simulator.update_config(min_fill_rate=0)[0] is False
    assert simulator.update_config(nope=True)[0] is False


def test_slippage_above_ceiling_rejects(rng):
    stormy = MarketSnapshot(bid=99.99, ask=100.01, last_price=100.0,
                            volume_24h=10_000_000.0, volatility=1.0)
    order = TradeSimulator(rng=rng).simulate_order("BTCUSDT", Direction.BUY, 1.0, 100.0, stormy)

    assert order.status is SimulatedOrderStatus.REJECTED
    assert order.rejection_reason.startswith("Slippage too high")
    assert order.executed_quantity == 0


def test_fill_rate_below_floor_rejects(rng):
    config = SimulationConfig(slippage_enabled=False, avg_fill_rate=0.6)
    thin = MarketSnapshot(bid=99.99, ask=100.01, last_price=100.0,
                          volume_24h=100_000.0, volatility=0.01)
    # 10% of the day's volume halves the fill rate
    order = TradeSimulator(config, rng=rng).simulate_order("BTCUSDT", Direction.SELL, 100.0, 100.0, thin)

    assert order.status is SimulatedOrderStatus.REJECTED
    assert order.rejection_reason.startswith("Fill rate too low")
