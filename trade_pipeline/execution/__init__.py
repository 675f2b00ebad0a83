"""
Execution Module
================
"""
from .execution_engine import (
    ExecutionEngine,
    ExecutionResult,
    ExecutionStatus,
    ConnectionStatus,
    PendingOrder,
    PendingOrderStatus,
    ActivePosition,
    SystemStatus
)
from .trade_simulator import (
    TradeSimulator,
    SimulatedOrder,
    SimulatedOrderStatus,
    MarketSnapshot
)
from .exchange import (
    ExchangeClient,
    ExchangeOrderRequest,
    ExchangeResponse,
    MockExchange,
    CallableExchange
)

__all__ = [
    'ExecutionEngine',
    'ExecutionResult',
    'ExecutionStatus',
    'ConnectionStatus',
    'PendingOrder',
    'PendingOrderStatus',
    'ActivePosition',
    'SystemStatus',
    'TradeSimulator',
    'SimulatedOrder',
    'SimulatedOrderStatus',
    'MarketSnapshot',
    'ExchangeClient',
    'ExchangeOrderRequest',
    'ExchangeResponse',
    'MockExchange',
    'CallableExchange'
]
