"""
Risk Management Module
======================
"""
from .risk_manager import (
    RiskManager,
    RiskState,
    RiskLevel,
    RiskCheckResult,
    TradeResult,
    EquityPoint,
    PositionSizer,
    StopLevels,
    TradingStatus
)

__all__ = [
    'RiskManager',
    'RiskState',
    'RiskLevel',
    'RiskCheckResult',
    'TradeResult',
    'EquityPoint',
    'PositionSizer',
    'StopLevels',
    'TradingStatus'
]
