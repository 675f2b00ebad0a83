"""
Alpha Module
============
"""
from .strategies import (
    Strategy,
    StrategySignal,
    STRATEGY_REGISTRY,
    DEFAULT_WEIGHTS
)
from .signal_aggregator import (
    SignalAggregator,
    StrategyVote,
    AggregatedSignal,
    evaluate_strategies,
    aggregate_signals,
    generate_signal,
    MIN_TOTAL_SCORE,
    MIN_CONFIDENCE_THRESHOLD
)

__all__ = [
    'Strategy',
    'StrategySignal',
    'STRATEGY_REGISTRY',
    'DEFAULT_WEIGHTS',
    'SignalAggregator',
    'StrategyVote',
    'AggregatedSignal',
    'evaluate_strategies',
    'aggregate_signals',
    'generate_signal',
    'MIN_TOTAL_SCORE',
    'MIN_CONFIDENCE_THRESHOLD'
]
