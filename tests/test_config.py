import json

import pytest

from trade_pipeline.config import (
    SystemConfig,
    ExecutionMode,
    StrategyConfig,
    RiskManagerConfig,
    default_strategies,
    DEFAULT_STRATEGIES,
)


def test_defaults_are_valid():
    config = SystemConfig()
    assert config.validate() == (True, "Valid")
    assert config.execution.mode is ExecutionMode.SIGNAL
    assert config.risk.max_daily_drawdown_pct == 0.05
    assert [s.id for s in default_strategies()][:2] == ['trendTF', 'marketStructure']
    assert [s.name for s in DEFAULT_STRATEGIES][-2:] == ['Volume Confirm', 'Volatility']


def test_save_and_load_round_trip(tmp_path):
    config = SystemConfig(initial_capital=25000)
    config.execution.mode = ExecutionMode.DEMO
    config.risk.max_consecutive_losses = 5
    config.strategies[0].weight = 4.0

    path = tmp_path / "nested" / "config.json"
    config.save(str(path))
    assert json.loads(path.read_text())['execution']['mode'] == 'demo'

    loaded = SystemConfig.load(str(path))
    assert loaded.initial_capital == 25000
    assert loaded.execution.mode is ExecutionMode.DEMO
    assert loaded.risk.max_consecutive_losses == 5
    assert loaded.strategies[0].weight == 4.0


def test_load_rejects_invalid_values(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'risk': {'max_daily_drawdown_pct': 0}}))
    with pytest.raises(ValueError, match="max_daily_drawdown_pct"):
        SystemConfig.load(str(path))


def test_load_rejects_unknown_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'simulation': {'warp_speed': True}}))
    with pytest.raises(ValueError, match="warp_speed"):
        SystemConfig.load(str(path))


def test_section_validation_messages():
    assert StrategyConfig('x', 'X', True, -1).validate()[0] is False
    ok, message = RiskManagerConfig(min_risk_per_trade=0.05, max_risk_per_trade=0.01).validate()
    assert not ok
    assert "Risk per trade" in message
    assert SystemConfig(initial_capital=0).validate()[0] is False
