"""
Indian equity market session definitions.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional

import pytz
from pydantic import BaseModel, Field


class MarketStatus(str, Enum):
    OPEN = "open"
    PRE_OPEN = "pre_open"
    POST_CLOSE = "post_close"
    CLOSED = "closed"
    WEEKEND = "weekend"


class MarketSession(BaseModel):
    start: time
    end: time

    def contains(self, check_time: time) -> bool:
        return self.start <= check_time < self.end


class MarketHoursConfig(BaseModel):
    """
    NSE/BSE cash market sessions in IST:
    - Pre-open: 9:00 AM - 9:15 AM
    - Regular: 9:15 AM - 3:30 PM
    - Post-close: 3:40 PM - 4:00 PM
    Exchange holidays are not modelled.
    """

    pre_open_session: MarketSession = Field(
        default=MarketSession(start=time(9, 0), end=time(9, 15))
    )
    regular_session: MarketSession = Field(
        default=MarketSession(start=time(9, 15), end=time(15, 30))
    )
    post_close_session: MarketSession = Field(
        default=MarketSession(start=time(15, 40), end=time(16, 0))
    )
    timezone: str = "Asia/Kolkata"

    @property
    def ist(self) -> pytz.BaseTzInfo:
        return pytz.timezone(self.timezone)

    def to_local(self, check_time: Optional[datetime] = None) -> datetime:
        """Express ``check_time`` (naive values are taken as IST) in IST."""
        if check_time is None:
            return datetime.now(self.ist)
        if check_time.tzinfo is None:
            return self.ist.localize(check_time)
        return check_time.astimezone(self.ist)

    def get_market_status(self, check_time: Optional[datetime] = None) -> MarketStatus:
        local = self.to_local(check_time)
        if local.weekday() >= 5:
            return MarketStatus.WEEKEND

        current = local.time()
        if self.pre_open_session.contains(current):
            return MarketStatus.PRE_OPEN
        if self.regular_session.contains(current):
            return MarketStatus.OPEN
        if self.post_close_session.contains(current):
            return MarketStatus.POST_CLOSE
        return MarketStatus.CLOSED

    def next_market_open(self, from_time: Optional[datetime] = None) -> datetime:
        """Next regular-session open strictly after ``from_time``, in IST."""
        local = self.to_local(from_time)
        candidate: date = local.date()
        if local.time() >= self.regular_session.start:
            candidate += timedelta(days=1)
        while candidate.weekday() >= 5:
            candidate += timedelta(days=1)
        return self.ist.localize(datetime.combine(candidate, self.regular_session.start))
