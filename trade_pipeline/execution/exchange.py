"""
Exchange Collaborators
======================
Opaque request/response interface to a remote exchange.

Wire format of a request::

    {symbol, side, quantity, type: 'MARKET', testnet}

and of a response::

    {success: True, data: {orderId, executedQty, avgPrice}}
    {success: False, error: '...'}
"""

import time as time_module
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangeOrderRequest:
    symbol: str
    side: str
    quantity: float
    type: str = 'MARKET'
    testnet: bool = True

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'side': self.side,
            'quantity': self.quantity,
            'type': self.type,
            'testnet': self.testnet
        }


@dataclass(frozen=True)
class ExchangeResponse:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: dict) -> 'ExchangeResponse':
        if not isinstance(payload, dict) or 'success' not in payload:
            return cls(success=False, error='Malformed exchange response')
        return cls(
            success=bool(payload['success']),
            data=payload.get('data') or {},
            error=payload.get('error')
        )


class ExchangeClient(ABC):
    """Abstract base class for exchange integration."""

    @abstractmethod
    def connect(self) -> bool:
        """Establish connection."""

    @abstractmethod
    def disconnect(self):
        """Close connection."""

    @abstractmethod
    def place_order(self, request: ExchangeOrderRequest) -> ExchangeResponse:
        """Submit a market order. May block; callers bound it with a timeout."""


class MockExchange(ExchangeClient):
    """
    In-process exchange for tests and dry runs.

    Fills every order at ``fill_price`` (or reports zero price data when
    unset). ``failures`` is a queue of error strings or exceptions consumed
    one per call before orders start filling; ``delay_seconds`` makes each
    call block.
    """

    def __init__(self, fill_price: Optional[float] = None,
                 failures: Optional[List[Any]] = None,
                 delay_seconds: float = 0.0):
        self.fill_price = fill_price
        self.failures = list(failures or [])
        self.delay_seconds = delay_seconds
        self.connected = False
        self.requests: List[ExchangeOrderRequest] = []

    def connect(self) -> bool:
        self.connected = True
        logger.info("Connected to mock exchange")
        return True

    def disconnect(self):
        self.connected = False
        logger.info("Disconnected from mock exchange")

    def place_order(self, request: ExchangeOrderRequest) -> ExchangeResponse:
        self.requests.append(request)
        if self.delay_seconds:
            time_module.sleep(self.delay_seconds)

        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return ExchangeResponse(success=False, error=str(failure))

        data = {
            'orderId': f"MOCK-{uuid.uuid4().hex[:12]}",
            'executedQty': request.quantity,
        }
        if self.fill_price is not None:
            data['avgPrice'] = self.fill_price
        return ExchangeResponse(success=True, data=data)


class CallableExchange(ExchangeClient):
    """Adapts any callable taking the wire request dict and returning the wire response dict."""

    def __init__(self, call: Callable[[dict], dict]):
        self._call = call

    def connect(self) -> bool:
        return True

    def disconnect(self):
        pass

    def place_order(self, request: ExchangeOrderRequest) -> ExchangeResponse:
        return ExchangeResponse.from_dict(self._call(request.to_dict()))
