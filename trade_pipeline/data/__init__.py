"""
Data Module
===========
"""
from .market_state import (
    Candle,
    Direction,
    MarketState,
    MarketConditions,
    build_market_state,
    build_market_conditions,
    trend_bias,
    candles_from_dataframe,
    candles_to_dataframe,
    load_candles_csv
)

__all__ = [
    'Candle',
    'Direction',
    'MarketState',
    'MarketConditions',
    'build_market_state',
    'build_market_conditions',
    'trend_bias',
    'candles_from_dataframe',
    'candles_to_dataframe',
    'load_candles_csv'
]
