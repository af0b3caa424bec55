"""
Market hours checker used by the market status endpoint and the order desk.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from .models import MarketHoursConfig, MarketStatus


class MarketHoursChecker:
    """Answers "is the Indian cash market open" for a point in time."""

    def __init__(self, config: Optional[MarketHoursConfig] = None):
        self.config = config or MarketHoursConfig()

    def get_current_status(self) -> MarketStatus:
        return self.config.get_market_status()

    def is_market_open(self, check_time: Optional[datetime] = None) -> bool:
        return self.config.get_market_status(check_time) == MarketStatus.OPEN

    def get_market_info(self, check_time: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Market status plus session times and, when closed, the next open.

        Args:
            check_time: Time to check (defaults to now)
        """
        local = self.config.to_local(check_time)
        status = self.config.get_market_status(local)

        info: Dict[str, Any] = {
            "current_time": local.isoformat(),
            "timezone": self.config.timezone,
            "status": status.value,
            "is_open": status == MarketStatus.OPEN,
            "sessions": {
                "pre_open": self._session(self.config.pre_open_session),
                "regular": self._session(self.config.regular_session),
                "post_close": self._session(self.config.post_close_session),
            },
            "next_open": None,
        }
        if status != MarketStatus.OPEN:
            info["next_open"] = self.config.next_market_open(local).isoformat()
        return info

    @staticmethod
    def _session(session) -> Dict[str, str]:
        return {"start": session.start.strftime("%H:%M"), "end": session.end.strftime("%H:%M")}

    def __repr__(self) -> str:
        return (f"MarketHoursChecker(regular={self.config.regular_session.start}-"
                f"{self.config.regular_session.end} {self.config.timezone})")
