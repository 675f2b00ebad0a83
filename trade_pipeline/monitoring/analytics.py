"""
Trade Analytics
===============
Append-only trade ledger, equity curve and performance statistics.

The ledger records every trade at entry; exit fields are filled exactly
once when the trade closes. Metrics are derived from closed trades only.
"""

import math
import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from enum import Enum
import logging

from ..data import Direction
from ..alpha import StrategyVote

logger = logging.getLogger(__name__)

RISK_FREE_RATE = 0.05
TRADING_DAYS_PER_YEAR = 252
TRADES_PER_DAY = 10
ANNUALIZATION = TRADING_DAYS_PER_YEAR * TRADES_PER_DAY

CSV_COLUMNS = ['ID', 'Timestamp', 'Symbol', 'Direction', 'Entry Price', 'Exit Price',
               'Quantity', 'PnL', 'PnL %', 'Confidence', 'Status']


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz='UTC')


class TradeStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RiskSnapshot:
    """Risk state at the moment a trade was taken."""
    daily_pnl_percent: float = 0.0
    consecutive_losses: int = 0
    current_exposure: float = 0.0
    current_drawdown: float = 0.0
    risk_level: str = "low"


@dataclass(frozen=True)
class MarketConditionsLog:
    price: float = 0.0
    volume: float = 0.0
    volatility: float = 0.0
    spread: float = 0.0
    trend: str = "sideways"  # up, down, sideways


@dataclass
class TradeLog:
    """Ledger entry: entry conditions plus exit fields filled on close."""
    id: str
    symbol: str
    direction: Direction
    entry_price: float
    entry_quantity: float
    timestamp: pd.Timestamp = field(default_factory=_utc_now)

    strategy_scores: Tuple[StrategyVote, ...] = ()
    aggregated_score: float = 0.0
    confidence: float = 0.0
    risk_state: RiskSnapshot = field(default_factory=RiskSnapshot)
    market_conditions: MarketConditionsLog = field(default_factory=MarketConditionsLog)

    # Exit details
    exit_price: Optional[float] = None
    exit_quantity: Optional[float] = None
    closed_at: Optional[pd.Timestamp] = None

    # Results
    pnl: float = 0.0
    pnl_percent: float = 0.0
    holding_time_minutes: float = 0.0

    # Execution details
    slippage: float = 0.0
    commission: float = 0.0
    effective_price: float = 0.0
    exchange_order_id: Optional[str] = None

    status: TradeStatus = TradeStatus.OPEN

    def close(self, exit_price: float, exit_quantity: float, pnl: float,
              pnl_percent: float, closed_at: pd.Timestamp):
        """Fill the exit fields. A trade can only be closed once."""
        if self.status is not TradeStatus.OPEN:
            raise ValueError(f"Trade {self.id} is already {self.status.value}")
        self.exit_price = exit_price
        self.exit_quantity = exit_quantity
        self.pnl = pnl
        self.pnl_percent = pnl_percent
        self.closed_at = closed_at
        self.holding_time_minutes = max(0.0, (closed_at - self.timestamp).total_seconds() / 60)
        self.status = TradeStatus.CLOSED

    def cancel(self):
        if self.status is not TradeStatus.OPEN:
            raise ValueError(f"Trade {self.id} is already {self.status.value}")
        self.status = TradeStatus.CANCELLED

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'symbol': self.symbol,
            'direction': self.direction.value,
            'entry_price': self.entry_price,
            'entry_quantity': self.entry_quantity,
            'exit_price': self.exit_price,
            'exit_quantity': self.exit_quantity,
            'closed_at': self.closed_at,
            'aggregated_score': self.aggregated_score,
            'confidence': self.confidence,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'holding_time_minutes': self.holding_time_minutes,
            'slippage': self.slippage,
            'commission': self.commission,
            'effective_price': self.effective_price,
            'exchange_order_id': self.exchange_order_id,
            'risk_level': self.risk_state.risk_level,
            'status': self.status.value
        }


@dataclass
class EquityDataPoint:
    timestamp: pd.Timestamp
    equity: float
    drawdown: float
    pnl: float


@dataclass
class DrawdownPeriod:
    """Stretch of equity below the running peak."""
    start_date: pd.Timestamp
    peak_equity: float
    trough_equity: float
    drawdown_percent: float
    end_date: Optional[pd.Timestamp] = None
    duration_days: int = 0
    recovered: bool = False


@dataclass
class StrategyMetrics:
    name: str
    signal_count: int = 0
    win_rate: float = 0.0
    avg_contribution: float = 0.0
    profit_contribution: float = 0.0


@dataclass
class PerformanceMetrics:
    """Performance statistics over closed trades."""
    # Basic
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    # Profit
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0

    # Risk-adjusted
    expectancy: float = 0.0
    profit_factor: float = 0.0
    payoff_ratio: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0

    # Drawdown
    max_drawdown: float = 0.0
    max_drawdown_duration: int = 0  # days
    current_drawdown: float = 0.0
    avg_drawdown: float = 0.0

    # Streaks
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    current_streak: int = 0
    current_streak_type: str = "none"  # win, loss, none

    # Time
    avg_holding_time: float = 0.0  # minutes
    trades_per_day: float = 0.0

    recovery_factor: float = 0.0

    strategy_performance: Dict[str, StrategyMetrics] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {k: v for k, v in self.__dict__.items() if k != 'strategy_performance'}
        data['strategy_performance'] = {
            name: m.__dict__.copy() for name, m in self.strategy_performance.items()
        }
        return data


def _ratio_with_infinity(numerator: float, denominator: float) -> float:
    """numerator/denominator; inf when only the denominator is zero, 0 when both are."""
    if denominator > 0:
        return numerator / denominator
    return math.inf if numerator > 0 else 0.0


def _days_between(start: pd.Timestamp, end: pd.Timestamp) -> int:
    return int(math.ceil((end - start).total_seconds() / 86400))


class TradeAnalytics:
    """
    Trade ledger and performance engine.

    Tracks running capital, the equity curve and drawdown periods as trades
    close, and derives the full metric set on demand.
    """

    def __init__(self, initial_capital: float = 10000,
                 clock: Optional[Callable[[], pd.Timestamp]] = None):
        self.initial_capital = initial_capital
        self._clock = clock or _utc_now
        self.reset()

    def _now(self) -> pd.Timestamp:
        return self._clock()

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def log_trade(self, trade: TradeLog):
        """Append a trade to the ledger; closed trades update equity immediately."""
        self.trades.append(trade)
        if trade.status is TradeStatus.CLOSED:
            self._apply_closed_trade(trade)

    def close_trade(self, trade_id: str, exit_price: float, exit_quantity: float,
                    pnl: float, pnl_percent: float,
                    closed_at: Optional[pd.Timestamp] = None) -> Tuple[bool, str]:
        """Close an open ledger entry and update equity."""
        trade = self.get_trade(trade_id)
        if trade is None:
            return False, f"Trade {trade_id} not found"
        if trade.status is not TradeStatus.OPEN:
            return False, f"Trade {trade_id} is already {trade.status.value}"

        trade.close(exit_price, exit_quantity, pnl, pnl_percent, closed_at or self._now())
        self._apply_closed_trade(trade)
        return True, "Closed"

    def _apply_closed_trade(self, trade: TradeLog):
        now = self._now()
        self.current_capital += trade.pnl
        drawdown = ((self.peak_equity - self.current_capital) / self.peak_equity
                    if self.peak_equity > 0 else 0.0)

        self.equity_curve.append(EquityDataPoint(now, self.current_capital, drawdown, trade.pnl))

        if self.current_capital > self.peak_equity:
            self.peak_equity = self.current_capital
            period = self.current_drawdown_period
            if period is not None:
                period.end_date = now
                period.recovered = True
                period.duration_days = _days_between(period.start_date, now)
                self.drawdown_periods.append(period)
                self.current_drawdown_period = None
                logger.info(f"Drawdown recovered after {period.duration_days} day(s)")
        elif drawdown > 0:
            period = self.current_drawdown_period
            if period is None:
                self.current_drawdown_period = DrawdownPeriod(
                    start_date=now,
                    peak_equity=self.peak_equity,
                    trough_equity=self.current_capital,
                    drawdown_percent=drawdown
                )
            elif self.current_capital < period.trough_equity:
                period.trough_equity = self.current_capital
                period.drawdown_percent = drawdown

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def calculate_metrics(self) -> PerformanceMetrics:
        closed = [t for t in self.trades if t.status is TradeStatus.CLOSED]
        if not closed:
            return PerformanceMetrics()

        pnls = np.array([t.pnl for t in closed], dtype=float)
        wins = pnls[pnls > 0]
        losses = pnls[pnls < 0]

        total_trades = len(closed)
        win_rate = len(wins) / total_trades
        total_pnl = float(pnls.sum())
        total_pnl_percent = total_pnl / self.initial_capital if self.initial_capital > 0 else 0.0

        avg_win = float(wins.mean()) if len(wins) else 0.0
        avg_loss = float(abs(losses.mean())) if len(losses) else 0.0
        gross_profit = float(wins.sum())
        gross_loss = float(abs(losses.sum()))

        returns = self._calculate_returns(closed)
        max_drawdown = self._calculate_max_drawdown()
        streaks = self._calculate_streaks(closed)

        holding = [t.holding_time_minutes for t in closed if t.holding_time_minutes > 0]
        trading_days = self._calculate_trading_days()

        return PerformanceMetrics(
            total_trades=total_trades,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=win_rate,
            total_pnl=total_pnl,
            total_pnl_percent=total_pnl_percent,
            avg_win=avg_win,
            avg_loss=avg_loss,
            largest_win=float(wins.max()) if len(wins) else 0.0,
            largest_loss=float(losses.min()) if len(losses) else 0.0,
            expectancy=win_rate * avg_win - (1 - win_rate) * avg_loss,
            profit_factor=_ratio_with_infinity(gross_profit, gross_loss),
            payoff_ratio=_ratio_with_infinity(avg_win, avg_loss),
            sharpe_ratio=self._calculate_sharpe_ratio(returns),
            sortino_ratio=self._calculate_sortino_ratio(returns),
            max_drawdown=max_drawdown,
            max_drawdown_duration=self._calculate_max_drawdown_duration(),
            current_drawdown=((self.peak_equity - self.current_capital) / self.peak_equity
                              if self.peak_equity > 0 else 0.0),
            avg_drawdown=float(np.mean([p.drawdown for p in self.equity_curve])),
            max_consecutive_wins=streaks[0],
            max_consecutive_losses=streaks[1],
            current_streak=streaks[2],
            current_streak_type=streaks[3],
            avg_holding_time=float(np.mean(holding)) if holding else 0.0,
            trades_per_day=total_trades / trading_days if trading_days > 0 else 0.0,
            recovery_factor=total_pnl_percent / max_drawdown if max_drawdown > 0 else 0.0,
            strategy_performance=self._calculate_strategy_performance(closed)
        )

    def _calculate_returns(self, trades: List[TradeLog]) -> np.ndarray:
        """Per-trade returns over running capital, skipping flat trades."""
        capital = self.initial_capital
        returns = []
        for trade in trades:
            if trade.pnl != 0:
                returns.append(trade.pnl / capital)
                capital += trade.pnl
        return np.array(returns, dtype=float)

    @staticmethod
    def _calculate_sharpe_ratio(returns: np.ndarray) -> float:
        if len(returns) < 2:
            return 0.0
        std = float(returns.std())  # population
        if std == 0:
            return 0.0
        annual_return = float(returns.mean()) * ANNUALIZATION
        annual_std = std * math.sqrt(ANNUALIZATION)
        return (annual_return - RISK_FREE_RATE) / annual_std

    @staticmethod
    def _calculate_sortino_ratio(returns: np.ndarray) -> float:
        if len(returns) < 2:
            return 0.0
        avg_return = float(returns.mean())
        negative = returns[returns < 0]
        if len(negative) == 0:
            return math.inf if avg_return > 0 else 0.0

        downside = math.sqrt(float((negative ** 2).mean()))
        if downside == 0:
            return 0.0
        annual_return = avg_return * ANNUALIZATION
        return (annual_return - RISK_FREE_RATE) / (downside * math.sqrt(ANNUALIZATION))

    def _calculate_max_drawdown(self) -> float:
        if len(self.equity_curve) < 2:
            return 0.0
        equity = pd.Series([p.equity for p in self.equity_curve], dtype=float)
        peaks = equity.cummax()
        drawdowns = (peaks - equity) / peaks
        return max(0.0, float(drawdowns.max()))

    def _calculate_max_drawdown_duration(self) -> int:
        durations = [p.duration_days for p in self.drawdown_periods]
        if self.current_drawdown_period is not None:
            durations.append(_days_between(self.current_drawdown_period.start_date, self._now()))
        return max(durations) if durations else 0

    @staticmethod
    def _calculate_streaks(trades: List[TradeLog]) -> Tuple[int, int, int, str]:
        max_wins = max_losses = 0
        current_wins = current_losses = 0

        for trade in trades:
            if trade.pnl > 0:
                current_wins += 1
                current_losses = 0
                max_wins = max(max_wins, current_wins)
            elif trade.pnl < 0:
                current_losses += 1
                current_wins = 0
                max_losses = max(max_losses, current_losses)

        if current_wins > 0:
            streak_type = "win"
        elif current_losses > 0:
            streak_type = "loss"
        else:
            streak_type = "none"
        return max_wins, max_losses, max(current_wins, current_losses), streak_type

    @staticmethod
    def _calculate_strategy_performance(trades: List[TradeLog]) -> Dict[str, StrategyMetrics]:
        performance: Dict[str, StrategyMetrics] = {}

        for trade in trades:
            for vote in trade.strategy_scores:
                metrics = performance.setdefault(vote.strategy, StrategyMetrics(name=vote.strategy))
                if vote.signal is None:
                    continue

                metrics.signal_count += 1
                n = metrics.signal_count
                # A vote counts as correct when the trade made money, whatever its side
                is_correct = trade.pnl > 0

                metrics.win_rate = (metrics.win_rate * (n - 1) + (1 if is_correct else 0)) / n
                metrics.avg_contribution = (metrics.avg_contribution * (n - 1) + vote.weighted_score) / n
                metrics.profit_contribution += (
                    vote.weighted_score * (1 if trade.pnl > 0 else -1) * abs(trade.pnl)
                )

        return performance

    def _calculate_trading_days(self) -> int:
        if len(self.trades) < 2:
            return 1
        return max(1, _days_between(self.trades[0].timestamp, self.trades[-1].timestamp))

    # ------------------------------------------------------------------
    # Getters / export
    # ------------------------------------------------------------------

    def get_trade(self, trade_id: str) -> Optional[TradeLog]:
        for trade in self.trades:
            if trade.id == trade_id:
                return trade
        return None

    def get_trades(self) -> List[TradeLog]:
        return list(self.trades)

    def get_equity_curve(self) -> List[EquityDataPoint]:
        return list(self.equity_curve)

    def get_drawdown_periods(self) -> List[DrawdownPeriod]:
        return list(self.drawdown_periods)

    def get_current_capital(self) -> float:
        return self.current_capital

    def to_dataframe(self) -> pd.DataFrame:
        """Ledger as a DataFrame, one row per trade."""
        return pd.DataFrame([t.to_dict() for t in self.trades])

    def equity_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([p.__dict__ for p in self.equity_curve])

    def export_csv(self, filepath: Optional[str] = None) -> str:
        """Export the ledger as CSV text, optionally writing it to ``filepath``."""
        rows = [[
            t.id,
            t.timestamp.isoformat(),
            t.symbol,
            t.direction.value,
            t.entry_price,
            '' if t.exit_price is None else t.exit_price,
            t.entry_quantity,
            f"{t.pnl:.2f}",
            f"{t.pnl_percent * 100:.2f}",
            f"{t.confidence * 100:.1f}",
            t.status.value
        ] for t in self.trades]

        df = pd.DataFrame(rows, columns=CSV_COLUMNS)
        csv_text = df.to_csv(index=False, lineterminator='\n')
        if filepath:
            with open(filepath, 'w') as f:
                f.write(csv_text)
            logger.info(f"Exported {len(rows)} trades to {filepath}")
        return csv_text

    def generate_report(self) -> str:
        """Generate a text performance report."""
        m = self.calculate_metrics()

        def fmt_ratio(value: float) -> str:
            return "inf" if math.isinf(value) else f"{value:.2f}"

        return f"""
╔══════════════════════════════════════════════════════════════╗
║                  TRADE PIPELINE PERFORMANCE                  ║
╠══════════════════════════════════════════════════════════════╣
║ Capital:            {self.current_capital:>22,.2f}                   ║
║ Total PnL:          {m.total_pnl:>15,.2f} ({m.total_pnl_percent:>6.2%})         ║
║ Current Drawdown:   {m.current_drawdown:>22.2%}                   ║
║ Max Drawdown:       {m.max_drawdown:>22.2%}                   ║
╠══════════════════════════════════════════════════════════════╣
║ Sharpe Ratio:       {fmt_ratio(m.sharpe_ratio):>22s}                   ║
║ Sortino Ratio:      {fmt_ratio(m.sortino_ratio):>22s}                   ║
║ Profit Factor:      {fmt_ratio(m.profit_factor):>22s}                   ║
║ Recovery Factor:    {m.recovery_factor:>22.2f}                   ║
╠══════════════════════════════════════════════════════════════╣
║ Total Trades:       {m.total_trades:>22d}                   ║
║ Win Rate:           {m.win_rate:>22.2%}                   ║
║ Avg Win:            {m.avg_win:>22,.2f}                   ║
║ Avg Loss:           {m.avg_loss:>22,.2f}                   ║
║ Expectancy:         {m.expectancy:>22,.2f}                   ║
╚══════════════════════════════════════════════════════════════╝
"""

    def reset(self):
        """Clear the ledger and restart the equity curve at initial capital."""
        self.trades: List[TradeLog] = []
        self.current_capital = self.initial_capital
        self.peak_equity = self.initial_capital
        self.equity_curve: List[EquityDataPoint] = [
            EquityDataPoint(self._now(), self.initial_capital, 0.0, 0.0)
        ]
        self.drawdown_periods: List[DrawdownPeriod] = []
        self.current_drawdown_period: Optional[DrawdownPeriod] = None
