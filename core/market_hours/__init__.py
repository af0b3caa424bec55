"""
Market hours for the Indian cash market.
"""

from .market_hours_checker import MarketHoursChecker
from .models import MarketHoursConfig, MarketSession, MarketStatus

__all__ = [
    "MarketHoursChecker",
    "MarketHoursConfig",
    "MarketSession",
    "MarketStatus"
]
