"""
Trade Simulator
===============
Realistic fill simulation for non-live modes: latency, market impact,
slippage, partial fills and commission.

All randomness comes from an injectable ``random.Random`` so runs can be
reproduced with a seed.
"""

import random
import time as time_module
import pandas as pd
import numpy as np
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Dict, List, Optional, Tuple
from enum import Enum
import logging

from ..data import Direction

logger = logging.getLogger(__name__)

BASELINE_VOLATILITY = 0.02
MAX_MARKET_IMPACT = 0.01
MAX_REAL_DELAY_MS = 100


class SimulatedOrderStatus(Enum):
    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MarketSnapshot:
    """Quotes seen by the simulator. ``volatility`` is fractional (ATR / price)."""
    bid: float
    ask: float
    last_price: float
    volume_24h: float
    volatility: float


@dataclass
class SimulatedOrder:
    """Terminal result of one simulated order."""
    id: str
    symbol: str
    side: Direction
    requested_quantity: float
    requested_price: float

    executed_quantity: float = 0.0
    executed_price: float = 0.0
    fill_rate: float = 0.0
    slippage_pct: float = 0.0
    commission: float = 0.0
    latency_ms: float = 0.0
    market_impact: float = 0.0

    total_cost: float = 0.0
    effective_price: float = 0.0

    status: SimulatedOrderStatus = SimulatedOrderStatus.PENDING
    rejection_reason: Optional[str] = None

    created_at: pd.Timestamp = field(default_factory=lambda: pd.Timestamp.now(tz='UTC'))
    executed_at: Optional[pd.Timestamp] = None

    @property
    def is_filled(self) -> bool:
        return self.status in (SimulatedOrderStatus.FILLED, SimulatedOrderStatus.PARTIAL)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side.value,
            'requested_qty': self.requested_quantity,
            'requested_price': self.requested_price,
            'executed_qty': self.executed_quantity,
            'executed_price': self.executed_price,
            'fill_rate': self.fill_rate,
            'slippage_pct': self.slippage_pct,
            'commission': self.commission,
            'latency_ms': self.latency_ms,
            'market_impact': self.market_impact,
            'effective_price': self.effective_price,
            'status': self.status.value,
            'rejection_reason': self.rejection_reason
        }


class TradeSimulator:
    """
    Fill simulator used by demo mode.

    Steps per order:
    1. Latency draw
    2. Market impact above a notional threshold
    3. Slippage draw (rejects above the configured ceiling)
    4. Execution price against the opposing quote
    5. Fill-rate draw (rejects below the configured floor)
    6. Maker/taker commission
    """

    def __init__(self, config=None, rng: Optional[random.Random] = None,
                 sleep: Callable[[float], None] = time_module.sleep):
        from ..config import SimulationConfig
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.order_history: List[SimulatedOrder] = []
        self._next_order_id = 1

    def simulate_order(self, symbol: str, side: Direction, quantity: float,
                       requested_price: float, market: MarketSnapshot) -> SimulatedOrder:
        """Simulate one market order and record it in the history."""
        order = SimulatedOrder(
            id=f"SIM-{int(time_module.time() * 1000)}-{self._next_order_id}",
            symbol=symbol,
            side=side,
            requested_quantity=quantity,
            requested_price=requested_price
        )
        self._next_order_id += 1
        config = self.config

        # 1. Latency
        if config.latency_enabled:
            order.latency_ms = self._simulate_latency()
            if config.simulate_delay:
                self._sleep(min(order.latency_ms, MAX_REAL_DELAY_MS) / 1000)

        # 2. Market impact
        order_value = quantity * requested_price
        if config.market_impact_enabled and order_value > config.impact_threshold_usd:
            order.market_impact = self._calculate_market_impact(order_value)

        # 3. Slippage
        if config.slippage_enabled:
            order.slippage_pct = self._calculate_slippage(market)
            if order.slippage_pct > config.max_slippage_pct:
                return self._reject(order, f"Slippage too high: {order.slippage_pct * 100:.3f}%")

        # 4. Execution price
        base_price = market.ask if side is Direction.BUY else market.bid
        adjustment = base_price * (order.slippage_pct + order.market_impact)
        order.executed_price = base_price + adjustment if side is Direction.BUY else base_price - adjustment

        # 5. Fill rate
        if config.partial_fills_enabled:
            order.fill_rate = self._calculate_fill_rate(quantity, market)
            order.executed_quantity = quantity * order.fill_rate
            if order.fill_rate < config.min_fill_rate:
                return self._reject(order, f"Fill rate too low: {order.fill_rate * 100:.1f}%")
            order.status = (SimulatedOrderStatus.PARTIAL if order.fill_rate < 1.0
                            else SimulatedOrderStatus.FILLED)
        else:
            order.fill_rate = 1.0
            order.executed_quantity = quantity
            order.status = SimulatedOrderStatus.FILLED

        # 6. Commission (30% chance of a maker fill)
        is_maker = self.rng.random() > 0.7
        fee_rate = config.maker_fee if is_maker else config.taker_fee
        order.commission = order.executed_quantity * order.executed_price * fee_rate

        order.total_cost = order.executed_quantity * order.executed_price + order.commission
        order.effective_price = (order.total_cost / order.executed_quantity
                                 if order.executed_quantity > 0 else 0.0)
        order.executed_at = pd.Timestamp.now(tz='UTC')

        self.order_history.append(order)
        logger.debug(f"Simulated {side.value} {order.executed_quantity:.6f} {symbol} "
                     f"@ {order.executed_price:.4f} ({order.status.value})")
        return order

    def _reject(self, order: SimulatedOrder, reason: str) -> SimulatedOrder:
        order.status = SimulatedOrderStatus.REJECTED
        order.rejection_reason = reason
        order.executed_quantity = 0.0
        self.order_history.append(order)
        logger.info(f"Simulated order {order.id} rejected: {reason}")
        return order

    # ------------------------------------------------------------------
    # Simulation helpers
    # ------------------------------------------------------------------

    def _simulate_latency(self) -> float:
        jitter = (self.rng.random() - 0.5) * 2 * self.config.latency_variance_ms
        return min(max(0.0, self.config.avg_latency_ms + jitter), self.config.max_latency_ms)

    def _calculate_slippage(self, market: MarketSnapshot) -> float:
        slippage = self.config.avg_slippage_pct

        if market.volatility > BASELINE_VOLATILITY:
            slippage *= 1 + (market.volatility / BASELINE_VOLATILITY - 1) * \
                self.config.volatility_slippage_multiplier

        # Half the quoted spread
        if market.last_price > 0:
            slippage += (market.ask - market.bid) / market.last_price * 0.5

        # Random variance (±50%)
        slippage *= 0.5 + self.rng.random()

        return slippage

    def _calculate_market_impact(self, order_value: float) -> float:
        excess = order_value - self.config.impact_threshold_usd
        impact = excess / 100000 * self.config.impact_multiplier
        return min(impact, MAX_MARKET_IMPACT)

    def _calculate_fill_rate(self, quantity: float, market: MarketSnapshot) -> float:
        fill_rate = self.config.avg_fill_rate

        if market.volume_24h > 0:
            ratio = quantity * market.last_price / market.volume_24h
            if ratio > 0.001:
                fill_rate *= max(0.5, 1 - ratio * 10)

        fill_rate *= 0.9 + self.rng.random() * 0.2
        return min(1.0, fill_rate)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _non_rejected(self) -> List[SimulatedOrder]:
        return [o for o in self.order_history if o.status is not SimulatedOrderStatus.REJECTED]

    def get_average_slippage(self) -> float:
        orders = self._non_rejected()
        if not orders:
            return 0.0
        return float(np.mean([o.slippage_pct for o in orders]))

    def get_average_fill_rate(self) -> float:
        orders = self._non_rejected()
        if not orders:
            return 1.0
        return float(np.mean([o.fill_rate for o in orders]))

    def get_total_commissions(self) -> float:
        return float(sum(o.commission for o in self.order_history))

    def get_total_market_impact(self) -> float:
        return float(sum(o.market_impact * o.executed_quantity * o.executed_price
                         for o in self._non_rejected()))

    def get_order_history(self) -> List[SimulatedOrder]:
        return list(self.order_history)

    def get_simulation_stats(self) -> Dict[str, float]:
        history = self.order_history
        return {
            'total_orders': len(history),
            'filled_orders': sum(1 for o in history if o.status is SimulatedOrderStatus.FILLED),
            'partial_fills': sum(1 for o in history if o.status is SimulatedOrderStatus.PARTIAL),
            'rejected_orders': sum(1 for o in history if o.status is SimulatedOrderStatus.REJECTED),
            'avg_slippage': self.get_average_slippage(),
            'avg_fill_rate': self.get_average_fill_rate(),
            'total_commissions': self.get_total_commissions(),
            'avg_latency': float(np.mean([o.latency_ms for o in history])) if history else 0.0
        }

    def update_config(self, **updates) -> Tuple[bool, str]:
        known = {f.name for f in fields(self.config)}
        unknown = set(updates) - known
        if unknown:
            return False, f"Unknown simulation settings: {sorted(unknown)}"
        candidate = replace(self.config, **updates)
        ok, message = candidate.validate()
        if not ok:
            return False, message
        self.config = candidate
        return True, "Updated"

    def get_config(self):
        return replace(self.config)

    def clear_history(self):
        self.order_history = []
