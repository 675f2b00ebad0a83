import math

import pandas as pd
import pytest

from trade_pipeline.alpha import StrategyVote
from trade_pipeline.data import Direction
from trade_pipeline.monitoring import TradeAnalytics, TradeLog, TradeStatus


def _trade(trade_id, pnl=0.0, status=TradeStatus.CLOSED, direction=Direction.BUY, votes=(),
           timestamp=None):
    return TradeLog(
        id=trade_id,
        symbol="BTCUSDT",
        direction=direction,
        entry_price=100.0,
        entry_quantity=1.0,
        strategy_scores=votes,
        confidence=0.75,
        pnl=pnl,
        pnl_percent=pnl / 100.0,
        status=status,
        timestamp=timestamp if timestamp is not None else pd.Timestamp.now(tz="UTC")
    )


def _ledger(pnls, clock=None):
    analytics = TradeAnalytics(10000, clock=clock)
    for i, pnl in enumerate(pnls):
        analytics.log_trade(_trade(f"T{i}", pnl))
    return analytics


def test_basic_trade_statistics():
    metrics = _ledger([50, 30, -20, 40, -10]).calculate_metrics()

    assert metrics.total_trades == 5
    assert metrics.winning_trades == 3
    assert metrics.losing_trades == 2
    assert metrics.win_rate == pytest.approx(0.6)
    assert metrics.total_pnl == pytest.approx(90)
    assert metrics.total_pnl_percent == pytest.approx(0.009)
    assert metrics.avg_win == pytest.approx(40)
    assert metrics.avg_loss == pytest.approx(15)
    assert metrics.largest_win == 50
    assert metrics.largest_loss == -20
    assert metrics.profit_factor == pytest.approx(120 / 30)
    assert metrics.expectancy == pytest.approx(0.6 * 40 - 0.4 * 15)
    assert metrics.max_consecutive_wins == 2
    assert metrics.current_streak == 1
    assert metrics.current_streak_type == "loss"


def test_empty_ledger_gives_zero_metrics():
    metrics = TradeAnalytics(10000).calculate_metrics()
    assert metrics.total_trades == 0
    assert metrics.win_rate == 0
    assert metrics.sharpe_ratio == 0


def test_open_trades_are_excluded():
    analytics = _ledger([25])
    analytics.log_trade(_trade("open", status=TradeStatus.OPEN))
    assert analytics.calculate_metrics().total_trades == 1


def test_no_losses_gives_infinite_ratios_and_zero_recovery():
    metrics = _ledger([50, 30]).calculate_metrics()

    assert math.isinf(metrics.profit_factor)
    assert math.isinf(metrics.payoff_ratio)
    assert math.isinf(metrics.sortino_ratio)
    assert metrics.max_drawdown == 0
    assert metrics.recovery_factor == 0


def test_only_losses_gives_zero_profit_factor():
    metrics = _ledger([-10, -5]).calculate_metrics()
    assert metrics.profit_factor == 0
    assert metrics.win_rate == 0
    assert metrics.current_streak_type == "loss"
    assert metrics.max_consecutive_losses == 2


def test_sharpe_needs_dispersion():
    assert _ledger([10]).calculate_metrics().sharpe_ratio == 0
    assert _ledger([10, -5, 20, -3]).calculate_metrics().sharpe_ratio != 0


def test_drawdown_period_opens_deepens_and_recovers(clock):
    analytics = _ledger([100, -200], clock)
    period = analytics.current_drawdown_period
    assert period is not None
    assert period.trough_equity == pytest.approx(9900)

    clock.advance(days=2)
    analytics.log_trade(_trade("T2", -100))
    assert analytics.current_drawdown_period.trough_equity == pytest.approx(9800)
    assert analytics.current_drawdown_period.drawdown_percent == pytest.approx(300 / 10100)

    clock.advance(days=1)
    analytics.log_trade(_trade("T3", 400))
    assert analytics.current_drawdown_period is None
    periods = analytics.get_drawdown_periods()
    assert len(periods) == 1
    assert periods[0].recovered
    assert periods[0].duration_days == 3

    metrics = analytics.calculate_metrics()
    assert metrics.max_drawdown == pytest.approx(300 / 10100)
    assert metrics.max_drawdown_duration == 3
    assert metrics.current_drawdown == 0
    assert metrics.recovery_factor == pytest.approx(0.02 / (300 / 10100))


def test_open_drawdown_counts_towards_duration(clock):
    analytics = _ledger([-100], clock)
    clock.advance(days=4)
    assert analytics.calculate_metrics().max_drawdown_duration == 4


def test_close_trade_fills_exit_once(clock):
    analytics = TradeAnalytics(10000, clock=clock)
    analytics.log_trade(_trade("T1", status=TradeStatus.OPEN, timestamp=clock()))

    clock.advance(minutes=45)
    assert analytics.close_trade("T1", 105.0, 1.0, 5.0, 0.05) == (True, "Closed")
    trade = analytics.get_trade("T1")
    assert trade.exit_price == 105.0
    assert trade.holding_time_minutes == pytest.approx(45)
    assert analytics.get_current_capital() == pytest.approx(10005)

    ok, message = analytics.close_trade("T1", 106.0, 1.0, 6.0, 0.06)
    assert not ok
    assert "already closed" in message
    assert analytics.close_trade("missing", 1, 1, 1, 1)[0] is False
    assert analytics.calculate_metrics().avg_holding_time == pytest.approx(45)


def test_trade_log_close_is_single_shot():
    trade = _trade("T1", status=TradeStatus.OPEN)
    trade.close(101.0, 1.0, 1.0, 0.01, trade.timestamp)
    with pytest.raises(ValueError):
        trade.close(102.0, 1.0, 2.0, 0.02, trade.timestamp)


def test_strategy_attribution():
    votes = (
        StrategyVote('TrendTF', Direction.BUY, 3, 3.0, 9.0),
        StrategyVote('Volatility', None, 1, 1.0, 1.0),
    )
    analytics = TradeAnalytics(10000)
    analytics.log_trade(_trade("W", 50, votes=votes))
    analytics.log_trade(_trade("L", -20, votes=votes))

    performance = analytics.calculate_metrics().strategy_performance
    trend = performance['TrendTF']
    assert trend.signal_count == 2
    assert trend.win_rate == pytest.approx(0.5)
    assert trend.avg_contribution == pytest.approx(9.0)
    assert trend.profit_contribution == pytest.approx(9.0 * 50 - 9.0 * 20)
    assert performance['Volatility'].signal_count == 0


def test_sell_vote_counts_as_correct_only_when_trade_made_money():
    votes = (StrategyVote('TrendTF', Direction.SELL, 3, 3.0, 9.0),)
    analytics = TradeAnalytics(10000)
    analytics.log_trade(_trade("S", -30, direction=Direction.SELL, votes=votes))

    assert analytics.calculate_metrics().strategy_performance['TrendTF'].win_rate == 0


def test_equity_curve_tracks_capital():
    analytics = _ledger([100, -50])
    curve = analytics.get_equity_curve()
    assert [p.equity for p in curve] == [10000, 10100, 10050]
    assert curve[-1].drawdown == pytest.approx(50 / 10100)


def test_export_csv(tmp_path):
    analytics = _ledger([12.5])
    path = tmp_path / "trades.csv"

    text = analytics.export_csv(str(path))
    lines = text.strip().split("\n")
    assert lines[0] == "ID,Timestamp,Symbol,Direction,Entry Price,Exit Price,Quantity,PnL,PnL %,Confidence,Status"
    assert lines[1].startswith("T0,")
    assert ",12.50,12.50,75.0,closed" in lines[1]
    assert path.read_text() == text

    frame = pd.read_csv(path)
    assert len(frame) == 1


def test_dataframe_and_report():
    analytics = _ledger([50, -20])
    df = analytics.to_dataframe()
    assert list(df['id']) == ['T0', 'T1']
    assert "TRADE PIPELINE PERFORMANCE" in analytics.generate_report()

    analytics.reset()
    assert analytics.get_trades() == []
    assert analytics.get_current_capital() == 10000
    assert len(analytics.get_equity_curve()) == 1
