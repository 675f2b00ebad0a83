"""
Trading System Orchestrator
===========================
Main pipeline wiring all components:
    CANDLES → MARKET STATE → STRATEGIES → AGGREGATOR → RISK GATE → EXECUTION → ANALYTICS

Each component is constructed here and handed its collaborators; nothing
is shared through module-level singletons.
"""

import random
import time as time_module
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence
import logging

import pandas as pd

from .config import SystemConfig, ExecutionMode
from .data import (
    Candle,
    Direction,
    MarketConditions,
    build_market_state,
    build_market_conditions,
    trend_bias,
    candles_from_dataframe
)
from .alpha import SignalAggregator
from .risk import RiskManager
from .execution import ExecutionEngine, ExecutionResult, TradeSimulator, ExchangeClient
from .monitoring import TradeAnalytics

logger = logging.getLogger(__name__)


class TradingSystem:
    """
    Decision pipeline orchestrator.

    One call to :meth:`run_cycle` is one decision cycle:
    1. Build the market state from the candle history
    2. Evaluate and aggregate the strategy votes
    3. Close positions whose stop-loss or take-profit was crossed
    4. Gate, size and execute the aggregated signal
    """

    def __init__(self, config: SystemConfig = None,
                 exchange: Optional[ExchangeClient] = None,
                 clock: Optional[Callable[[], pd.Timestamp]] = None,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], None] = time_module.sleep):
        self.config = config or SystemConfig()
        ok, message = self.config.validate()
        if not ok:
            raise ValueError(f"Invalid configuration: {message}")

        self._clock = clock or (lambda: pd.Timestamp.now(tz='UTC'))
        self._replay_time: Optional[pd.Timestamp] = None

        capital = self.config.initial_capital
        self.aggregator = SignalAggregator(self.config.strategies)
        self.risk_manager = RiskManager(
            config=self.config.risk,
            initial_capital=capital,
            clock=self.now
        )
        self.simulator = TradeSimulator(
            config=self.config.simulation,
            rng=rng,
            sleep=sleep
        )
        self.analytics = TradeAnalytics(initial_capital=capital, clock=self.now)
        self.execution_engine = ExecutionEngine(
            config=self.config.execution,
            risk_manager=self.risk_manager,
            simulator=self.simulator,
            analytics=self.analytics,
            exchange=exchange,
            clock=self.now,
            sleep=sleep,
            initial_capital=capital
        )

        self.iteration = 0
        self.running = False

    def now(self) -> pd.Timestamp:
        """Current time: the bar being replayed, otherwise the injected clock."""
        if self._replay_time is not None:
            return self._replay_time
        return self._clock()

    def initialize(self) -> bool:
        logger.info(f"Initializing trading system ({self.config.execution.mode.value} mode)...")
        connected = self.execution_engine.connect()
        if not connected:
            logger.error("Exchange connection failed")
        self.running = connected
        return connected

    def shutdown(self):
        """Disconnect and emit the final performance report."""
        logger.info("Shutting down trading system...")
        self.running = False
        self.execution_engine.disconnect()

        if self.config.monitoring.report_on_shutdown:
            print(self.analytics.generate_report())

        logger.info("Trading system shutdown complete")

    # ------------------------------------------------------------------
    # Decision cycle
    # ------------------------------------------------------------------

    def run_cycle(self, candles: Sequence[Candle],
                  conditions: Optional[MarketConditions] = None,
                  direction: Optional[Direction] = None) -> ExecutionResult:
        """Run one complete decision cycle over ``candles`` (oldest first)."""
        self.iteration += 1
        replay = self.config.replay

        state = build_market_state(candles, direction)
        if direction is None and replay.bias_from_trend:
            state = replace(state, direction=trend_bias(state))

        if conditions is None:
            conditions = build_market_conditions(
                candles, spread_pct=replay.spread_pct, volume_window=replay.volume_window
            )

        signal = self.aggregator.generate(state)
        logger.debug(f"=== Cycle {self.iteration}: {signal.reason} ===")

        self.execution_engine.check_exits(conditions.current_price)
        return self.execution_engine.process_signal(signal, candles, conditions)

    def close_all_positions(self, price: float) -> List[ExecutionResult]:
        return [
            self.execution_engine.close_position(p.id, price)
            for p in self.execution_engine.get_active_positions()
        ]

    def run_replay(self, df: pd.DataFrame, close_at_end: bool = True) -> Dict:
        """
        Replay an OHLCV table bar by bar.

        The system clock follows the bar timestamps, so cooldowns, daily
        resets and holding times behave as they would have live.

        Args:
            df: OHLCV frame, oldest bar first
            close_at_end: Close positions still open at the last close

        Returns:
            Replay results dictionary
        """
        candles = candles_from_dataframe(df)
        replay = self.config.replay
        if len(candles) <= replay.warmup_candles:
            raise ValueError(
                f"Replay needs more than {replay.warmup_candles} candles, got {len(candles)}"
            )

        logger.info(f"Replaying {len(candles)} candles "
                    f"({candles[0].timestamp} to {candles[-1].timestamp})")

        counts = {'cycles': 0, 'approved_signals': 0, 'orders_filled': 0, 'orders_rejected': 0}
        self.running = True
        try:
            for i in range(replay.warmup_candles, len(candles)):
                self._replay_time = candles[i].timestamp
                window = candles[max(0, i + 1 - replay.history_window):i + 1]

                result = self.run_cycle(window)
                counts['cycles'] += 1
                if result.risk_check is not None or result.order_id is not None:
                    counts['approved_signals'] += 1
                    if result.success:
                        counts['orders_filled'] += 1
                    else:
                        counts['orders_rejected'] += 1

            if close_at_end:
                self.close_all_positions(candles[-1].close)
            metrics = self.analytics.calculate_metrics()
        finally:
            self.running = False
            self._replay_time = None

        return {
            'start': candles[0].timestamp,
            'end': candles[-1].timestamp,
            'mode': self.config.execution.mode.value,
            **counts,
            'initial_capital': self.config.initial_capital,
            'final_capital': self.analytics.get_current_capital(),
            'total_pnl': metrics.total_pnl,
            'total_pnl_percent': metrics.total_pnl_percent,
            'total_trades': metrics.total_trades,
            'win_rate': metrics.win_rate,
            'profit_factor': metrics.profit_factor,
            'sharpe_ratio': metrics.sharpe_ratio,
            'sortino_ratio': metrics.sortino_ratio,
            'max_drawdown': metrics.max_drawdown,
            'open_positions': len(self.execution_engine.get_active_positions())
        }

    def get_status(self) -> Dict:
        """Get comprehensive system status."""
        status = self.execution_engine.get_status().to_dict()
        risk = self.risk_manager.get_status_summary()
        return {
            'running': self.running,
            'iteration': self.iteration,
            'capital': self.config.initial_capital,
            'current_capital': self.analytics.get_current_capital(),
            'trades_logged': len(self.analytics.get_trades()),
            'daily_pnl_percent': risk['daily_pnl_percent'],
            'consecutive_losses': risk['consecutive_losses'],
            'current_exposure': risk['current_exposure'],
            'current_drawdown': risk['current_drawdown'],
            **status
        }


def _configure_logging(level: str, log_file: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point: replay a candle file through the pipeline."""
    import argparse

    parser = argparse.ArgumentParser(description='Automated Trading Decision Pipeline')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--mode', choices=[m.value for m in ExecutionMode],
                        help='Execution mode (overrides config)')
    parser.add_argument('--capital', type=float, help='Initial capital (overrides config)')
    parser.add_argument('--candles', type=str, help='OHLCV CSV file to replay')
    parser.add_argument('--export-csv', type=str, help='Write the trade ledger to this CSV file')
    parser.add_argument('--log-level', type=str, help='Logging level (overrides config)')

    args = parser.parse_args(argv)

    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    if args.mode:
        config.execution.mode = ExecutionMode(args.mode)
    if args.capital is not None:
        config.initial_capital = args.capital

    _configure_logging(args.log_level or config.monitoring.log_level, config.monitoring.log_file)

    if not args.candles:
        print("Replay requires --candles <file.csv>")
        return 1

    if config.execution.mode is ExecutionMode.LIVE:
        logger.warning("Live mode without an exchange client: orders will fail")

    system = TradingSystem(config)
    system.initialize()

    results = system.run_replay(pd.read_csv(args.candles))

    print("\n" + "=" * 50)
    print("REPLAY RESULTS")
    print("=" * 50)
    for key, value in results.items():
        if isinstance(value, float):
            print(f"{key}: {value:.4f}")
        else:
            print(f"{key}: {value}")

    if args.export_csv:
        system.analytics.export_csv(args.export_csv)

    system.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
