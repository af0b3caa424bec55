from __future__ import annotations

from pydantic import BaseModel, Field, computed_field, field_validator
from typing import List, Optional, Tuple
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Exchange(str, Enum):
    NSE = "NSE"
    BSE = "BSE"
    NFO = "NFO"
    BFO = "BFO"
    CDS = "CDS"
    MCX = "MCX"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


def normalize_exchange(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


class Holding(BaseModel):
    """One instrument position in a user's demat holdings.

    Identity is ``(symbol, exchange)``. Valuation fields are computed from
    quantity and prices on every access and are never read back as input.
    """
    symbol: str
    exchange: Exchange
    instrument_token: str
    quantity: int = Field(ge=0)
    average_price: float = Field(ge=0)
    current_price: float = 0.0
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("exchange", mode="before")
    @classmethod
    def normalize_exchange(cls, v):
        return normalize_exchange(v)

    @field_validator("instrument_token", mode="before")
    @classmethod
    def coerce_token(cls, v):
        # SmartAPI returns tokens as strings, manual entries may send ints
        if isinstance(v, int):
            return str(v)
        return v

    @computed_field
    @property
    def invested_value(self) -> float:
        return self.quantity * self.average_price

    @computed_field
    @property
    def current_value(self) -> float:
        return self.quantity * self.current_price

    @computed_field
    @property
    def pnl(self) -> float:
        return self.current_value - self.invested_value

    @computed_field
    @property
    def pnl_percentage(self) -> float:
        invested = self.invested_value
        if invested <= 0:
            return 0.0
        return self.pnl / invested * 100

    @property
    def key(self) -> Tuple[str, Exchange]:
        return (self.symbol, self.exchange)

    def matches(self, symbol: str, exchange) -> bool:
        return self.symbol == symbol.strip().upper() and self.exchange.value == normalize_exchange(exchange)


class Portfolio(BaseModel):
    user_id: str
    holdings: List[Holding] = Field(default_factory=list)
    total_invested_value: float = 0.0
    total_current_value: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percentage: float = 0.0
    available_funds: float = 0.0
    last_sync_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def update_totals(self):
        self.total_invested_value = sum(h.invested_value for h in self.holdings)
        self.total_current_value = sum(h.current_value for h in self.holdings)
        self.total_pnl = self.total_current_value - self.total_invested_value
        if self.total_invested_value > 0:
            self.total_pnl_percentage = self.total_pnl / self.total_invested_value * 100
        else:
            self.total_pnl_percentage = 0.0

    def update_last_modified(self):
        self.updated_at = utc_now()

    def find_holding(self, symbol: str, exchange) -> Optional[Holding]:
        for holding in self.holdings:
            if holding.matches(symbol, exchange):
                return holding
        return None

    def upsert_holding(self, holding: Holding) -> Holding:
        """Insert or replace the holding with the same (symbol, exchange)."""
        for index, existing in enumerate(self.holdings):
            if existing.key == holding.key:
                self.holdings[index] = holding
                break
        else:
            self.holdings.append(holding)
        self.update_totals()
        self.update_last_modified()
        return holding

    def remove_holding(self, symbol: str, exchange) -> bool:
        remaining = [h for h in self.holdings if not h.matches(symbol, exchange)]
        removed = len(remaining) != len(self.holdings)
        if removed:
            self.holdings = remaining
            self.update_totals()
            self.update_last_modified()
        return removed

    def summary(self) -> PortfolioSummary:
        return PortfolioSummary(
            total_holdings=len(self.holdings),
            total_invested_value=self.total_invested_value,
            total_current_value=self.total_current_value,
            total_pnl=self.total_pnl,
            total_pnl_percentage=self.total_pnl_percentage,
            available_funds=self.available_funds,
            last_sync_at=self.last_sync_at,
            sync_status=self.sync_status,
        )


class PortfolioSummary(BaseModel):
    total_holdings: int
    total_invested_value: float
    total_current_value: float
    total_pnl: float
    total_pnl_percentage: float
    available_funds: float = 0.0
    last_sync_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING


class PriceUpdate(BaseModel):
    symbol: str
    exchange: Exchange
    price: float

    @field_validator("exchange", mode="before")
    @classmethod
    def normalize_exchange(cls, v):
        return normalize_exchange(v)


class TopMovers(BaseModel):
    top_gainers: List[Holding] = Field(default_factory=list)
    top_losers: List[Holding] = Field(default_factory=list)
