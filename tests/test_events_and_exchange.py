from trade_pipeline.execution import (
    MockExchange,
    CallableExchange,
    ExchangeOrderRequest,
    ExchangeResponse,
)
from trade_pipeline.monitoring import EventBus


def test_event_bus_isolates_failing_subscribers():
    bus = EventBus()
    received = []

    def broken(_):
        raise ValueError("bad subscriber")

    bus.on('tick', broken)
    bus.on('tick', received.append)

    assert bus.emit('tick', 1) == 1
    assert received == [1]


def test_event_bus_subscription_management():
    bus = EventBus()
    received = []

    bus.on('tick', received.append)
    bus.on('tick', received.append)
    assert bus.listener_count('tick') == 1

    bus.off('tick', received.append)
    assert bus.emit('tick', 2) == 0
    assert received == []


def test_mock_exchange_scripted_failures():
    exchange = MockExchange(fill_price=101.0, failures=["insufficient balance"])
    request = ExchangeOrderRequest(symbol="BTCUSDT", side="BUY", quantity=0.5)

    first = exchange.place_order(request)
    second = exchange.place_order(request)

    assert not first.success
    assert first.error == "insufficient balance"
    assert second.success
    assert second.data['avgPrice'] == 101.0
    assert second.data['executedQty'] == 0.5
    assert len(exchange.requests) == 2


def test_response_parsing_handles_malformed_payloads():
    assert ExchangeResponse.from_dict({'success': False, 'error': 'nope'}).error == 'nope'
    malformed = ExchangeResponse.from_dict({'data': {}})
    assert not malformed.success
    assert malformed.error == 'Malformed exchange response'

    exchange = CallableExchange(lambda payload: "garbage")
    response = exchange.place_order(ExchangeOrderRequest("BTCUSDT", "SELL", 1.0))
    assert not response.success
