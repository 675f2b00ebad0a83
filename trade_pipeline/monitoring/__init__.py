"""
Monitoring Module
=================
"""
from .analytics import (
    TradeAnalytics,
    TradeLog,
    TradeStatus,
    RiskSnapshot,
    MarketConditionsLog,
    PerformanceMetrics,
    StrategyMetrics,
    DrawdownPeriod,
    EquityDataPoint
)
from .events import EventBus

__all__ = [
    'TradeAnalytics',
    'TradeLog',
    'TradeStatus',
    'RiskSnapshot',
    'MarketConditionsLog',
    'PerformanceMetrics',
    'StrategyMetrics',
    'DrawdownPeriod',
    'EquityDataPoint',
    'EventBus'
]
