"""
Configuration Management
========================
Central configuration for the decision pipeline.

Every component receives its own dataclass; ``SystemConfig`` bundles them
and round-trips through JSON.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import List, Dict, Optional, Tuple
from enum import Enum
import json
import os


class ExecutionMode(Enum):
    """How approved signals are handled."""
    SIGNAL = "signal"
    DEMO = "demo"
    LIVE = "live"


@dataclass
class StrategyConfig:
    """Per-strategy switch and weight."""
    id: str
    name: str
    enabled: bool = True
    weight: float = 1.0

    def validate(self) -> Tuple[bool, str]:
        if not self.id:
            return False, "Strategy id is required"
        if self.weight < 0:
            return False, f"Strategy {self.id} weight must be non-negative"
        return True, "Valid"


def default_strategies() -> List[StrategyConfig]:
    return [
        StrategyConfig('trendTF', 'Multi-TF Trend', True, 3.0),
        StrategyConfig('marketStructure', 'Market Structure', True, 2.5),
        StrategyConfig('candleForce', 'Candle Force', True, 2.0),
        StrategyConfig('sr', 'Support/Resistance', True, 2.0),
        StrategyConfig('rsi', 'RSI Filter', True, 1.5),
        StrategyConfig('confirmations', 'Confirmations', True, 1.5),
        StrategyConfig('volume', 'Volume Confirm', True, 1.0),
        StrategyConfig('volatility', 'Volatility', True, 1.0),
    ]


DEFAULT_STRATEGIES: List[StrategyConfig] = default_strategies()


@dataclass
class RiskManagerConfig:
    """Risk gate configuration."""
    # Daily limits
    max_daily_drawdown_pct: float = 0.05
    max_daily_trades: int = 20

    # Consecutive loss protection
    max_consecutive_losses: int = 3
    consecutive_loss_cooldown_minutes: float = 30

    # Position sizing
    base_risk_per_trade: float = 0.02
    max_risk_per_trade: float = 0.03
    min_risk_per_trade: float = 0.005

    # Volatility adjustments
    volatility_adjustment_enabled: bool = True
    high_volatility_threshold: float = 2.0  # current ATR / average ATR
    volatility_risk_reduction: float = 0.5

    # Spread / liquidity
    max_spread_pct: float = 0.001
    min_liquidity_threshold: float = 100000

    # Exposure limits (fraction of capital)
    max_total_exposure: float = 0.30
    max_single_pair_exposure: float = 0.10

    # Emergency controls
    kill_switch_enabled: bool = False
    auto_recovery_enabled: bool = True

    trade_interval_minutes: float = 2

    # Equity curve filter
    equity_curve_filter: bool = True
    equity_lookback_days: float = 7
    equity_decline_reduction: float = 0.75

    def validate(self) -> Tuple[bool, str]:
        """Check ranges before the config reaches the gate."""
        if not 0 < self.max_daily_drawdown_pct <= 1:
            return False, "max_daily_drawdown_pct must be in (0, 1]"
        if self.max_daily_trades < 0 or self.max_consecutive_losses < 0:
            return False, "Trade and loss ceilings must be non-negative"
        if not 0 <= self.min_risk_per_trade <= self.max_risk_per_trade <= 1:
            return False, "Risk per trade bounds must satisfy 0 <= min <= max <= 1"
        if not 0 < self.volatility_risk_reduction <= 1:
            return False, "volatility_risk_reduction must be in (0, 1]"
        if self.max_total_exposure <= 0 or self.max_single_pair_exposure <= 0:
            return False, "Exposure ceilings must be positive"
        if self.trade_interval_minutes < 0 or self.consecutive_loss_cooldown_minutes < 0:
            return False, "Cooldowns must be non-negative"
        return True, "Valid"


@dataclass
class SimulationConfig:
    """Fill simulator configuration."""
    # Fees
    maker_fee: float = 0.001
    taker_fee: float = 0.001

    # Slippage
    slippage_enabled: bool = True
    avg_slippage_pct: float = 0.0005
    max_slippage_pct: float = 0.005
    volatility_slippage_multiplier: float = 2.0

    # Partial fills
    partial_fills_enabled: bool = True
    avg_fill_rate: float = 0.95
    min_fill_rate: float = 0.5

    # Latency
    latency_enabled: bool = True
    avg_latency_ms: float = 50
    max_latency_ms: float = 500
    latency_variance_ms: float = 30
    simulate_delay: bool = False  # actually sleep (capped at 100 ms)

    # Market impact
    market_impact_enabled: bool = True
    impact_threshold_usd: float = 10000
    impact_multiplier: float = 0.0001  # per 100k of notional above threshold

    def validate(self) -> Tuple[bool, str]:
        if self.maker_fee < 0 or self.taker_fee < 0:
            return False, "Fees must be non-negative"
        if not 0 <= self.avg_slippage_pct <= self.max_slippage_pct:
            return False, "Slippage bounds must satisfy 0 <= avg <= max"
        if not 0 < self.min_fill_rate <= 1 or not 0 < self.avg_fill_rate <= 1:
            return False, "Fill rates must be in (0, 1]"
        if self.max_latency_ms < 0 or self.avg_latency_ms < 0:
            return False, "Latency must be non-negative"
        return True, "Valid"


@dataclass
class ExecutionConfig:
    """Execution orchestrator configuration."""
    mode: ExecutionMode = ExecutionMode.SIGNAL
    exchange: str = "binance"
    symbol: str = "BTCUSDT"
    testnet: bool = True

    # Timeouts
    order_timeout_ms: float = 30000
    confirmation_timeout_ms: float = 5000

    # Retries
    max_retries: int = 3
    retry_delay_ms: float = 1000

    # Safety
    require_confirmation: bool = True
    enable_duplicate_check: bool = True
    duplicate_window_ms: float = 60000

    # Stop placement (multiples of the trailing average range)
    stop_loss_multiplier: float = 1.5
    take_profit_multiplier: float = 2.5

    def validate(self) -> Tuple[bool, str]:
        if not isinstance(self.mode, ExecutionMode):
            return False, f"Unknown execution mode: {self.mode}"
        if not self.symbol:
            return False, "Symbol is required"
        if self.order_timeout_ms <= 0:
            return False, "order_timeout_ms must be positive"
        if self.max_retries < 0 or self.retry_delay_ms < 0:
            return False, "Retry settings must be non-negative"
        if self.duplicate_window_ms < 0:
            return False, "duplicate_window_ms must be non-negative"
        return True, "Valid"


@dataclass
class ReplayConfig:
    """Historical replay settings."""
    warmup_candles: int = 60
    history_window: int = 300  # candles kept in each market state
    spread_pct: float = 0.0002
    volume_window: int = 1440  # candles summed for 24h volume
    bias_from_trend: bool = True


@dataclass
class MonitoringConfig:
    """Logging and reporting configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    report_on_shutdown: bool = True


@dataclass
class SystemConfig:
    """Master system configuration."""
    initial_capital: float = 10000

    strategies: List[StrategyConfig] = field(default_factory=default_strategies)
    risk: RiskManagerConfig = field(default_factory=RiskManagerConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    replay: ReplayConfig = field(default_factory=ReplayConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def validate(self) -> Tuple[bool, str]:
        if self.initial_capital <= 0:
            return False, "initial_capital must be positive"
        for strategy in self.strategies:
            ok, message = strategy.validate()
            if not ok:
                return False, message
        for section in (self.risk, self.simulation, self.execution):
            ok, message = section.validate()
            if not ok:
                return False, message
        return True, "Valid"

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        config = cls._from_dict(data)
        ok, message = config.validate()
        if not ok:
            raise ValueError(f"Invalid configuration in {filepath}: {message}")
        return config

    def _to_dict(self) -> dict:
        data = asdict(self)
        data['execution']['mode'] = self.execution.mode.value
        return data

    @classmethod
    def _from_dict(cls, data: dict) -> 'SystemConfig':
        config = cls()
        config.initial_capital = data.get('initial_capital', config.initial_capital)

        if 'strategies' in data:
            config.strategies = [StrategyConfig(**s) for s in data['strategies']]

        config.risk = _merge(RiskManagerConfig, data.get('risk', {}))
        config.simulation = _merge(SimulationConfig, data.get('simulation', {}))
        config.replay = _merge(ReplayConfig, data.get('replay', {}))
        config.monitoring = _merge(MonitoringConfig, data.get('monitoring', {}))

        execution = dict(data.get('execution', {}))
        if 'mode' in execution:
            execution['mode'] = ExecutionMode(execution['mode'])
        config.execution = _merge(ExecutionConfig, execution)
        return config


def _merge(config_cls, values: Dict):
    """Build a config dataclass, rejecting unknown keys."""
    known = {f.name for f in fields(config_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {config_cls.__name__} keys: {sorted(unknown)}")
    return config_cls(**values)


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
