"""
Feature Engineering Module
==========================
"""
from .technical_indicators import (
    TechnicalIndicators,
    MACDResult,
    BollingerBands
)

__all__ = [
    'TechnicalIndicators',
    'MACDResult',
    'BollingerBands'
]
