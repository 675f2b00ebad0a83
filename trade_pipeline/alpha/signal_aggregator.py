"""
Signal Aggregator
=================
Combines weighted strategy votes into one directional decision with a
confidence score and an approval verdict.
"""

import pandas as pd
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging

from ..config import StrategyConfig, default_strategies
from ..data import Direction, MarketState
from .strategies import STRATEGY_REGISTRY, DEFAULT_WEIGHTS, StrategySignal

logger = logging.getLogger(__name__)

MIN_TOTAL_SCORE = 4
MIN_CONFIDENCE_THRESHOLD = 0.4
MAX_STRATEGY_SCORE = 4


@dataclass(frozen=True)
class StrategyVote:
    """A strategy signal after weighting."""
    strategy: str
    signal: Optional[Direction]
    score: float
    weight: float
    weighted_score: float

    def to_dict(self) -> dict:
        return {
            'strategy': self.strategy,
            'signal': self.signal.value if self.signal else None,
            'score': self.score,
            'weight': self.weight,
            'weighted_score': self.weighted_score
        }


@dataclass(frozen=True)
class AggregatedSignal:
    """Arbitrated decision for one cycle."""
    direction: Optional[Direction]
    confidence: float
    total_score: float
    votes: Tuple[StrategyVote, ...]
    approved: bool
    reason: str
    timestamp: pd.Timestamp = field(default_factory=lambda: pd.Timestamp.now(tz='UTC'))

    def __post_init__(self):
        if self.approved and self.direction is None:
            raise ValueError("An approved signal must carry a direction")
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Confidence out of range: {self.confidence}")

    def to_dict(self) -> dict:
        return {
            'direction': self.direction.value if self.direction else None,
            'confidence': self.confidence,
            'total_score': self.total_score,
            'approved': self.approved,
            'reason': self.reason,
            'timestamp': self.timestamp,
            'votes': [v.to_dict() for v in self.votes]
        }


def evaluate_strategies(state: MarketState,
                        configs: Sequence[StrategyConfig]) -> List[StrategySignal]:
    """
    Run every enabled, registered strategy against ``state``.

    A strategy that raises is logged and recorded as a no-vote so the
    remaining strategies still count.
    """
    signals = []
    for config in configs:
        if not config.enabled:
            continue
        strategy = STRATEGY_REGISTRY.get(config.id)
        if strategy is None:
            logger.debug(f"No strategy registered for id {config.id}")
            continue

        try:
            signal = strategy.evaluate(state)
        except Exception as e:
            logger.warning(f"Error in strategy {config.name}: {e}")
            signal = StrategySignal(name=config.name, signal=None, score=0)

        signals.append(signal)

    return signals


def _resolve_weight(signal_name: str, configs: Sequence[StrategyConfig]) -> float:
    for config in configs:
        registered = STRATEGY_REGISTRY.get(config.id)
        if config.name == signal_name or (registered and registered.name == signal_name):
            return config.weight
    return DEFAULT_WEIGHTS.get(signal_name, 1.0)


def aggregate_signals(signals: Sequence[StrategySignal],
                      configs: Sequence[StrategyConfig],
                      min_total_score: float = MIN_TOTAL_SCORE,
                      min_confidence: float = MIN_CONFIDENCE_THRESHOLD) -> AggregatedSignal:
    """Weight the votes and decide direction, confidence and approval."""
    votes = []
    buy_score = 0.0
    sell_score = 0.0

    for signal in signals:
        weight = _resolve_weight(signal.name, configs)
        weighted_score = signal.score * weight
        votes.append(StrategyVote(
            strategy=signal.name,
            signal=signal.signal,
            score=signal.score,
            weight=weight,
            weighted_score=weighted_score
        ))

        if signal.signal is Direction.BUY:
            buy_score += weighted_score
        elif signal.signal is Direction.SELL:
            sell_score += weighted_score

    direction = None
    total_score = 0.0
    if buy_score > sell_score and buy_score >= min_total_score:
        direction = Direction.BUY
        total_score = buy_score
    elif sell_score > buy_score and sell_score >= min_total_score:
        direction = Direction.SELL
        total_score = sell_score

    max_possible = sum(c.weight * MAX_STRATEGY_SCORE for c in configs if c.enabled)
    confidence = min(total_score / (max_possible * 0.5), 1.0) if max_possible > 0 else 0.0
    confidence = max(confidence, 0.0)

    approved = (
        direction is not None
        and confidence >= min_confidence
        and total_score >= min_total_score
    )

    if approved:
        reason = f"Signal approved: {direction.value} with {confidence * 100:.1f}% confidence"
    else:
        reason = (f"Signal rejected: Insufficient score ({total_score:.1f}) "
                  f"or confidence ({confidence * 100:.1f}%)")

    return AggregatedSignal(
        direction=direction,
        confidence=confidence,
        total_score=total_score,
        votes=tuple(votes),
        approved=approved,
        reason=reason
    )


def generate_signal(state: MarketState,
                    configs: Optional[Sequence[StrategyConfig]] = None) -> AggregatedSignal:
    """Evaluate the enabled strategies and aggregate their votes."""
    configs = list(configs) if configs is not None else default_strategies()
    enabled = [c for c in configs if c.enabled]
    signals = evaluate_strategies(state, enabled)
    return aggregate_signals(signals, configs)


class SignalAggregator:
    """
    Stateless aggregator bound to a strategy configuration.

    Keeps the strategy list, score floor and confidence threshold together
    so callers can tune them without touching module constants.
    """

    def __init__(self, strategies: Optional[List[StrategyConfig]] = None,
                 min_total_score: float = MIN_TOTAL_SCORE,
                 min_confidence: float = MIN_CONFIDENCE_THRESHOLD):
        self.strategies = strategies if strategies is not None else default_strategies()
        self.min_total_score = min_total_score
        self.min_confidence = min_confidence

    def generate(self, state: MarketState) -> AggregatedSignal:
        enabled = [c for c in self.strategies if c.enabled]
        signals = evaluate_strategies(state, enabled)
        result = aggregate_signals(
            signals, self.strategies,
            min_total_score=self.min_total_score,
            min_confidence=self.min_confidence
        )
        logger.debug(f"Aggregated signal: {result.reason}")
        return result

    def set_enabled(self, strategy_id: str, enabled: bool) -> Tuple[bool, str]:
        for config in self.strategies:
            if config.id == strategy_id:
                config.enabled = enabled
                return True, f"{strategy_id} {'enabled' if enabled else 'disabled'}"
        return False, f"Unknown strategy: {strategy_id}"

    def set_weight(self, strategy_id: str, weight: float) -> Tuple[bool, str]:
        if weight < 0:
            return False, "Weight must be non-negative"
        for config in self.strategies:
            if config.id == strategy_id:
                config.weight = weight
                return True, f"{strategy_id} weight set to {weight}"
        return False, f"Unknown strategy: {strategy_id}"
