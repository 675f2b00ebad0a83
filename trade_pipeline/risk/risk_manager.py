"""
Risk Manager Module
===================
Stateful risk gate that operates independently of strategy logic.

Every candidate trade passes a fixed sequence of checks; the first failing
check rejects the trade. Only then is the position sized.

    kill switch → pause → daily drawdown → daily trades → consecutive losses
        → trade interval → spread → liquidity → total exposure → sizing
"""

import copy
import pandas as pd
import numpy as np
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from enum import Enum
import logging

from ..data import Candle, Direction, MarketConditions
from ..features import TechnicalIndicators

logger = logging.getLogger(__name__)

MAX_RECENT_TRADES = 100
EXPOSURE_EPSILON = 1e-9


class RiskLevel(Enum):
    """Severity attached to every risk decision."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TradingStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    KILL_SWITCH = "kill_switch"


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz='UTC')


def _as_utc(ts: pd.Timestamp) -> pd.Timestamp:
    ts = pd.Timestamp(ts)
    return ts.tz_localize('UTC') if ts.tzinfo is None else ts.tz_convert('UTC')


@dataclass
class TradeResult:
    """Open or closed trade as seen by the risk gate."""
    id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    exit_price: Optional[float] = None
    pnl: float = 0.0
    pnl_percent: float = 0.0
    timestamp: pd.Timestamp = field(default_factory=_utc_now)
    closed_at: Optional[pd.Timestamp] = None
    is_open: bool = True

    @property
    def notional(self) -> float:
        return self.quantity * self.entry_price

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'direction': self.direction.value,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'quantity': self.quantity,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'timestamp': self.timestamp,
            'closed_at': self.closed_at,
            'is_open': self.is_open
        }


@dataclass
class EquityPoint:
    timestamp: pd.Timestamp
    equity: float
    drawdown: float


@dataclass
class RiskState:
    """Long-lived safety state; mutated only by RiskManager."""
    # Daily tracking
    daily_pnl: float
    daily_pnl_percent: float
    daily_trades_count: int
    daily_start_balance: float
    last_daily_reset: pd.Timestamp

    # Streaks
    consecutive_losses: int
    consecutive_wins: int

    # Timing
    last_trade_time: Optional[pd.Timestamp]
    paused_until: Optional[pd.Timestamp]

    # Exposure
    current_exposure: float
    open_positions: Dict[str, float]  # symbol -> notional

    # Capital
    total_capital: float
    available_capital: float
    peak_equity: float
    current_drawdown: float

    # Status
    is_kill_switch_active: bool
    is_paused: bool
    pause_reason: Optional[str]

    # History
    recent_trades: List[TradeResult]
    equity_curve: List[EquityPoint]

    @classmethod
    def initial(cls, capital: float, now: pd.Timestamp) -> 'RiskState':
        return cls(
            daily_pnl=0.0,
            daily_pnl_percent=0.0,
            daily_trades_count=0,
            daily_start_balance=capital,
            last_daily_reset=now,
            consecutive_losses=0,
            consecutive_wins=0,
            last_trade_time=None,
            paused_until=None,
            current_exposure=0.0,
            open_positions={},
            total_capital=capital,
            available_capital=capital,
            peak_equity=capital,
            current_drawdown=0.0,
            is_kill_switch_active=False,
            is_paused=False,
            pause_reason=None,
            recent_trades=[],
            equity_curve=[EquityPoint(now, capital, 0.0)]
        )


@dataclass
class RiskCheckResult:
    """Outcome of the risk gate for one candidate trade."""
    approved: bool
    reason: str
    adjusted_risk_percent: float = 0.0
    adjusted_position_size: float = 0.0
    warnings: List[str] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW

    @classmethod
    def reject(cls, reason: str, level: RiskLevel, warnings: List[str]) -> 'RiskCheckResult':
        return cls(approved=False, reason=reason, warnings=list(warnings), risk_level=level)

    def to_dict(self) -> dict:
        return {
            'approved': self.approved,
            'reason': self.reason,
            'adjusted_risk_percent': self.adjusted_risk_percent,
            'adjusted_position_size': self.adjusted_position_size,
            'warnings': list(self.warnings),
            'risk_level': self.risk_level.value
        }


@dataclass(frozen=True)
class StopLevels:
    stop_loss: float
    take_profit: float


class PositionSizer:
    """Position sizing and stop placement helpers."""

    @staticmethod
    def fixed_fractional(capital: float, risk_pct: float, entry_price: float,
                         stop_loss_price: float) -> float:
        """Quantity that loses ``capital * risk_pct`` if the stop is hit."""
        risk_per_unit = abs(entry_price - stop_loss_price)
        if risk_per_unit == 0:
            return 0.0
        return capital * risk_pct / risk_per_unit

    @staticmethod
    def adaptive_stops(candles: Sequence[Candle], entry_price: float, direction: Direction,
                       sl_multiplier: float = 1.5, tp_multiplier: float = 2.5) -> StopLevels:
        """ATR(14) based stop-loss and take-profit, 1% of entry when ATR is unavailable."""
        atr = TechnicalIndicators.atr(
            [c.high for c in candles],
            [c.low for c in candles],
            [c.close for c in candles],
            14
        ) or entry_price * 0.01

        if direction is Direction.BUY:
            return StopLevels(entry_price - atr * sl_multiplier, entry_price + atr * tp_multiplier)
        return StopLevels(entry_price + atr * sl_multiplier, entry_price - atr * tp_multiplier)


class RiskManager:
    """
    Layered risk gate with a persistent safety state machine.

    Responsibilities:
    - Kill switch and timed pauses
    - Daily drawdown and trade-count limits (reset on UTC day rollover)
    - Consecutive-loss cooldown
    - Spread, liquidity and exposure limits
    - Volatility and equity-curve adjusted position sizing

    Not thread-safe: one owner drives it from a single decision cycle.
    """

    def __init__(self, config=None, initial_capital: float = 10000,
                 clock: Optional[Callable[[], pd.Timestamp]] = None):
        from ..config import RiskManagerConfig
        self.config = config or RiskManagerConfig()
        self.initial_capital = initial_capital
        self._clock = clock or _utc_now
        self.state = RiskState.initial(initial_capital, self._now())

    def _now(self) -> pd.Timestamp:
        return _as_utc(self._clock())

    # ------------------------------------------------------------------
    # Main risk check
    # ------------------------------------------------------------------

    def check_trade_risk(self, symbol: str, direction: Direction, entry_price: float,
                         stop_loss_price: float, conditions: MarketConditions,
                         candles: Sequence[Candle]) -> RiskCheckResult:
        """Run every gate in priority order, then size the position."""
        warnings: List[str] = []
        risk_level = RiskLevel.LOW
        now = self._now()
        state = self.state
        config = self.config

        # 1. Kill switch
        if config.kill_switch_enabled or state.is_kill_switch_active:
            return RiskCheckResult.reject(
                "KILL SWITCH ACTIVE - All trading halted",
                RiskLevel.CRITICAL, ["Emergency kill switch is active"]
            )

        # 2. Pause
        if state.is_paused:
            if state.paused_until is not None:
                if now < state.paused_until:
                    remaining = int(np.ceil((state.paused_until - now).total_seconds() / 60))
                    return RiskCheckResult.reject(
                        f"Trading paused: {state.pause_reason}. Resumes in {remaining} min",
                        RiskLevel.HIGH, [f"Pause reason: {state.pause_reason}"]
                    )
                logger.info("Pause expired, resuming trading")
                self.resume_trading()
            elif not self._is_daily_pause():
                return RiskCheckResult.reject(
                    f"Trading paused: {state.pause_reason}",
                    RiskLevel.HIGH, [f"Pause reason: {state.pause_reason}"]
                )

        # 3. Daily drawdown
        self._check_daily_reset(now)
        if state.daily_pnl_percent <= -config.max_daily_drawdown_pct:
            pct = state.daily_pnl_percent * 100
            self.pause_trading(f"Daily drawdown limit reached ({pct:.2f}%)")
            return RiskCheckResult.reject(
                f"Daily drawdown limit reached: {pct:.2f}%",
                RiskLevel.CRITICAL, ["Maximum daily loss exceeded"]
            )

        # 4. Daily trade count
        if state.daily_trades_count >= config.max_daily_trades:
            return RiskCheckResult.reject(
                f"Daily trade limit reached: {state.daily_trades_count}/{config.max_daily_trades}",
                RiskLevel.HIGH, ["Maximum daily trades exceeded"]
            )

        # 5. Consecutive losses
        if state.consecutive_losses >= config.max_consecutive_losses:
            losses = state.consecutive_losses
            self.pause_trading(
                f"{config.max_consecutive_losses} consecutive losses",
                config.consecutive_loss_cooldown_minutes
            )
            return RiskCheckResult.reject(
                f"Consecutive loss limit: {losses} losses in a row",
                RiskLevel.CRITICAL, ["Consecutive loss protection triggered"]
            )

        # 6. Trade interval
        if state.last_trade_time is not None:
            min_interval = config.trade_interval_minutes * 60
            elapsed = (now - state.last_trade_time).total_seconds()
            if elapsed < min_interval:
                remaining = int(np.ceil(min_interval - elapsed))
                return RiskCheckResult.reject(
                    f"Trade cooldown: Wait {remaining}s",
                    RiskLevel.MEDIUM, ["Minimum trade interval not met"]
                )

        # 7. Spread
        if conditions.spread_pct > config.max_spread_pct:
            spread = conditions.spread_pct * 100
            return RiskCheckResult.reject(
                f"Spread too high: {spread:.3f}% > {config.max_spread_pct * 100:.3f}%",
                RiskLevel.HIGH, [f"High spread: {spread:.3f}%"]
            )

        # 8. Liquidity
        if conditions.volume_24h < config.min_liquidity_threshold:
            return RiskCheckResult.reject(
                f"Insufficient liquidity: {conditions.volume_24h:,.0f} < "
                f"{config.min_liquidity_threshold:,.0f}",
                RiskLevel.HIGH, [f"Low liquidity: {conditions.volume_24h:,.0f}"]
            )

        # 9. Total exposure
        existing_exposure = (state.open_positions.get(symbol, 0.0) / state.total_capital
                             if state.total_capital > 0 else 0.0)
        if state.current_exposure >= config.max_total_exposure:
            return RiskCheckResult.reject(
                f"Max exposure reached: {state.current_exposure * 100:.1f}%",
                RiskLevel.HIGH, ["Total exposure limit reached"]
            )

        if state.total_capital <= 0 or entry_price <= 0:
            return RiskCheckResult.reject(
                "No capital or invalid entry price", RiskLevel.CRITICAL, []
            )

        # ===== Sizing =====
        adjusted_risk = config.base_risk_per_trade

        if config.volatility_adjustment_enabled:
            avg_atr = self._average_atr(candles)
            if avg_atr > 0 and conditions.volatility / avg_atr > config.high_volatility_threshold:
                adjusted_risk *= config.volatility_risk_reduction
                warnings.append(
                    f"High volatility detected - risk reduced by "
                    f"{(1 - config.volatility_risk_reduction) * 100:.0f}%"
                )
                risk_level = RiskLevel.MEDIUM

        if config.equity_curve_filter and self._equity_trend(now) < 0:
            adjusted_risk *= config.equity_decline_reduction
            warnings.append("Equity curve declining - position size reduced")
            risk_level = RiskLevel.MEDIUM

        adjusted_risk = max(config.min_risk_per_trade, min(config.max_risk_per_trade, adjusted_risk))

        position_size = PositionSizer.fixed_fractional(
            state.available_capital, adjusted_risk, entry_price, stop_loss_price
        )

        # Per-symbol exposure ceiling shrinks the order instead of rejecting it
        new_exposure = position_size * entry_price / state.total_capital
        if existing_exposure + new_exposure > config.max_single_pair_exposure:
            max_allowed = ((config.max_single_pair_exposure - existing_exposure)
                           * state.total_capital / entry_price)
            return RiskCheckResult(
                approved=True,
                reason="Position size reduced due to pair exposure limit",
                adjusted_risk_percent=adjusted_risk,
                adjusted_position_size=max(0.0, max_allowed),
                warnings=warnings + ["Position reduced to respect pair exposure limit"],
                risk_level=RiskLevel.MEDIUM
            )

        return RiskCheckResult(
            approved=True,
            reason="Risk check passed",
            adjusted_risk_percent=adjusted_risk,
            adjusted_position_size=position_size,
            warnings=warnings,
            risk_level=risk_level
        )

    # ------------------------------------------------------------------
    # State mutation
    # ------------------------------------------------------------------

    def record_trade_result(self, trade: TradeResult):
        """Apply an opened or closed trade to the safety state."""
        state = self.state
        state.recent_trades.insert(0, trade)
        del state.recent_trades[MAX_RECENT_TRADES:]

        if not trade.is_open and trade.pnl != 0:
            now = self._now()

            state.daily_pnl += trade.pnl
            state.daily_pnl_percent = (state.daily_pnl / state.daily_start_balance
                                       if state.daily_start_balance else 0.0)
            state.daily_trades_count += 1

            if trade.pnl > 0:
                state.consecutive_wins += 1
                state.consecutive_losses = 0
            else:
                state.consecutive_losses += 1
                state.consecutive_wins = 0

            state.total_capital += trade.pnl
            state.available_capital = state.total_capital - sum(state.open_positions.values())

            if state.total_capital > state.peak_equity:
                state.peak_equity = state.total_capital
            state.current_drawdown = ((state.peak_equity - state.total_capital) / state.peak_equity
                                      if state.peak_equity > 0 else 0.0)

            state.equity_curve.append(EquityPoint(now, state.total_capital, state.current_drawdown))
            state.last_trade_time = now

            logger.info(f"Trade {trade.id} closed: pnl={trade.pnl:.2f}, "
                        f"daily={state.daily_pnl_percent:.2%}, "
                        f"losses_in_row={state.consecutive_losses}")

        if trade.is_open:
            state.open_positions[trade.symbol] = state.open_positions.get(trade.symbol, 0.0) + trade.notional
            self._update_exposure()

    def close_position(self, symbol: str, pnl: float = 0.0, notional: Optional[float] = None):
        """Release a closed position's notional, or all of the symbol's exposure without one."""
        open_positions = self.state.open_positions
        remaining = open_positions.get(symbol, 0.0) - notional if notional is not None else 0.0
        if remaining > EXPOSURE_EPSILON:
            open_positions[symbol] = remaining
        else:
            open_positions.pop(symbol, None)
        self._update_exposure()

    def calculate_adaptive_stops(self, candles: Sequence[Candle], entry_price: float,
                                 direction: Direction, sl_multiplier: float = 1.5,
                                 tp_multiplier: float = 2.5) -> StopLevels:
        return PositionSizer.adaptive_stops(candles, entry_price, direction,
                                            sl_multiplier, tp_multiplier)

    def calculate_position_size(self, capital: float, risk_pct: float, entry_price: float,
                                stop_loss_price: float) -> float:
        return PositionSizer.fixed_fractional(capital, risk_pct, entry_price, stop_loss_price)

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    def activate_kill_switch(self):
        self.state.is_kill_switch_active = True
        self.state.is_paused = True
        self.state.pause_reason = "Emergency kill switch activated"
        logger.critical("KILL SWITCH ACTIVATED")

    def deactivate_kill_switch(self):
        self.state.is_kill_switch_active = False
        self.resume_trading()
        logger.warning("Kill switch deactivated")

    def pause_trading(self, reason: str, duration_minutes: Optional[float] = None):
        """Pause trading; timed pauses auto-expire when auto-recovery is on."""
        self.state.is_paused = True
        self.state.pause_reason = reason
        if duration_minutes and self.config.auto_recovery_enabled:
            self.state.paused_until = self._now() + pd.Timedelta(minutes=duration_minutes)
        logger.warning(f"Trading paused: {reason}")

    def resume_trading(self):
        """Clear the pause; also clears the consecutive-loss counter."""
        self.state.is_paused = False
        self.state.pause_reason = None
        self.state.paused_until = None
        self.state.consecutive_losses = 0
        logger.info("Trading resumed")

    def reset(self, initial_capital: Optional[float] = None):
        """Explicit operator reset of the whole safety state."""
        if initial_capital is not None:
            self.initial_capital = initial_capital
        self.state = RiskState.initial(self.initial_capital, self._now())
        logger.info(f"Risk state reset with capital {self.initial_capital:,.2f}")

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_state(self) -> RiskState:
        return copy.deepcopy(self.state)

    def get_config(self):
        return replace(self.config)

    def update_config(self, **updates) -> Tuple[bool, str]:
        known = {f.name for f in fields(self.config)}
        unknown = set(updates) - known
        if unknown:
            return False, f"Unknown risk settings: {sorted(unknown)}"

        candidate = replace(self.config, **updates)
        ok, message = candidate.validate()
        if not ok:
            return False, message

        self.config = candidate
        logger.info(f"Risk config updated: {updates}")
        return True, "Updated"

    def get_status_summary(self) -> dict:
        state = self.state
        if state.is_kill_switch_active:
            status = TradingStatus.KILL_SWITCH
        elif state.is_paused:
            status = TradingStatus.PAUSED
        else:
            status = TradingStatus.ACTIVE

        if state.current_drawdown > 0.10:
            level = RiskLevel.CRITICAL
        elif state.current_drawdown > 0.05:
            level = RiskLevel.HIGH
        elif state.consecutive_losses >= 2:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        return {
            'status': status.value,
            'risk_level': level.value,
            'daily_pnl_percent': state.daily_pnl_percent,
            'consecutive_losses': state.consecutive_losses,
            'current_exposure': state.current_exposure,
            'current_drawdown': state.current_drawdown
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_daily_pause(self) -> bool:
        return bool(self.state.pause_reason) and 'Daily' in self.state.pause_reason

    def _check_daily_reset(self, now: pd.Timestamp):
        state = self.state
        if now.date() == _as_utc(state.last_daily_reset).date():
            return

        state.daily_pnl = 0.0
        state.daily_pnl_percent = 0.0
        state.daily_trades_count = 0
        state.daily_start_balance = state.total_capital
        state.last_daily_reset = now
        logger.info("New trading day: daily counters reset")

        if self._is_daily_pause():
            self.resume_trading()

    def _update_exposure(self):
        state = self.state
        total_open = sum(state.open_positions.values())
        state.current_exposure = total_open / state.total_capital if state.total_capital > 0 else 0.0

    @staticmethod
    def _average_atr(candles: Sequence[Candle]) -> float:
        if len(candles) < 14:
            return 0.0
        return TechnicalIndicators.atr(
            [c.high for c in candles],
            [c.low for c in candles],
            [c.close for c in candles],
            14
        )

    def _equity_trend(self, now: pd.Timestamp) -> float:
        cutoff = now - pd.Timedelta(days=self.config.equity_lookback_days)
        recent = [p for p in self.state.equity_curve if p.timestamp >= cutoff]
        if len(recent) < 2 or recent[0].equity == 0:
            return 0.0
        return (recent[-1].equity - recent[0].equity) / recent[0].equity
