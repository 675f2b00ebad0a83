"""
Automated Trading Decision Pipeline
===================================

Rule-based strategies vote on each candle history; the votes are weighted
and arbitrated into one decision, gated by a stateful risk manager, filled
by a realistic simulator (demo) or an exchange client (live) and recorded
in an analytics ledger.

PIPELINE:
    ┌─────────────┐
    │  CANDLES    │  ← OHLCV history
    └────┬────────┘
         ↓
    ┌──────────────┐
    │ STRATEGIES   │  ← 8 independent votes (direction + score)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ AGGREGATOR   │  ← weighted arbitration, confidence
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ RISK GATE    │  ← kill switch, pauses, limits, sizing
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ EXECUTION    │  ← simulator (demo) / exchange (live)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ ANALYTICS    │  ← ledger, equity curve, metrics
    └──────────────┘

USAGE:
    # Replay a candle file in demo mode
    python -m trade_pipeline.orchestrator --mode demo --candles btc_1m.csv

    # Programmatic usage
    from trade_pipeline import TradingSystem, SystemConfig

    system = TradingSystem(SystemConfig())
    result = system.run_cycle(candles)

MODULES:
    - features: Technical indicators (SMA, EMA, RSI, ATR, MACD, Bollinger)
    - data: Candles, market state and market conditions
    - alpha: Strategy set and signal aggregation
    - risk: Risk gate, position sizing, safety state
    - execution: Execution engine, trade simulator, exchange clients
    - monitoring: Trade analytics and lifecycle events
"""

from .config import SystemConfig, ExecutionMode, DEFAULT_CONFIG
from .orchestrator import TradingSystem, main
from .data import Candle, Direction, MarketState, MarketConditions
from .features import TechnicalIndicators
from .alpha import SignalAggregator, AggregatedSignal, StrategySignal
from .risk import RiskManager, RiskCheckResult, TradeResult
from .execution import ExecutionEngine, ExecutionResult, TradeSimulator, MockExchange
from .monitoring import TradeAnalytics, PerformanceMetrics, EventBus

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingSystem',
    'SystemConfig',
    'ExecutionMode',
    'DEFAULT_CONFIG',
    'main',

    # Data
    'Candle',
    'Direction',
    'MarketState',
    'MarketConditions',

    # Features
    'TechnicalIndicators',

    # Alpha
    'SignalAggregator',
    'AggregatedSignal',
    'StrategySignal',

    # Risk
    'RiskManager',
    'RiskCheckResult',
    'TradeResult',

    # Execution
    'ExecutionEngine',
    'ExecutionResult',
    'TradeSimulator',
    'MockExchange',

    # Monitoring
    'TradeAnalytics',
    'PerformanceMetrics',
    'EventBus'
]
