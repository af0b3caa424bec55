from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from core.trading.portfolio_models import (
    Exchange,
    Holding,
    PortfolioSummary,
    TopMovers,
    normalize_exchange,
    utc_now,
)


def _lenient_int(v):
    # SmartAPI sends numbers as strings, sometimes with a decimal part
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        return int(float(v))
    if isinstance(v, float):
        return int(v)
    return v


def _lenient_float(v):
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        return float(v)
    return v


class BrokerHolding(BaseModel):
    """A holding record as reported by SmartAPI ``getHolding``.

    Every price field is optional at the wire level. Resolution rules:

    - average price: ``averageprice`` (or ``averagePrice``), falling back to ``price``
    - current price: ``ltp``, falling back to ``price``, then to the average price

    A record with no usable average price is rejected.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    symbol: str = Field(validation_alias=AliasChoices("tradingsymbol", "tradingSymbol", "symbol"))
    exchange: Exchange
    instrument_token: str = Field(
        validation_alias=AliasChoices("symboltoken", "symbolToken", "instrument_token", "instrumentToken")
    )
    quantity: int = 0
    average_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("averageprice", "averagePrice", "average_price")
    )
    ltp: Optional[float] = None
    price: Optional[float] = None
    isin: Optional[str] = None
    product: Optional[str] = None

    @field_validator("exchange", mode="before")
    @classmethod
    def normalize_exchange(cls, v):
        return normalize_exchange(v)

    @field_validator("instrument_token", mode="before")
    @classmethod
    def coerce_token(cls, v):
        if isinstance(v, (int, float)):
            return str(int(v))
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, v):
        value = _lenient_int(v)
        return 0 if value is None else value

    @field_validator("average_price", "ltp", "price", mode="before")
    @classmethod
    def coerce_price(cls, v):
        return _lenient_float(v)

    @model_validator(mode="after")
    def check_price_available(self):
        if self.resolved_average_price is None:
            raise ValueError("holding has neither an average price nor a price")
        return self

    @property
    def resolved_average_price(self) -> Optional[float]:
        if self.average_price:
            return self.average_price
        if self.price is not None:
            return self.price
        return self.average_price

    @property
    def resolved_current_price(self) -> float:
        if self.ltp:
            return self.ltp
        if self.price:
            return self.price
        return self.resolved_average_price

    def to_holding(self, now: Optional[datetime] = None) -> Holding:
        return Holding(
            symbol=self.symbol,
            exchange=self.exchange,
            instrument_token=self.instrument_token,
            quantity=self.quantity,
            average_price=self.resolved_average_price,
            current_price=self.resolved_current_price,
            last_updated=now or utc_now(),
        )


class ManualHoldingRequest(BaseModel):
    symbol: Optional[str] = None
    exchange: Optional[str] = None
    instrument_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("instrument_token", "instrumentToken")
    )
    quantity: Optional[float] = None
    average_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("average_price", "averagePrice")
    )

    @field_validator("instrument_token", mode="before")
    @classmethod
    def coerce_token(cls, v):
        if isinstance(v, int):
            return str(v)
        return v


class ExchangeAllocation(BaseModel):
    exchange: Exchange
    count: int = 0
    invested_value: float = 0.0
    current_value: float = 0.0
    allocation_percentage: float = 0.0


class PerformanceMetrics(BaseModel):
    total_return: float = 0.0
    total_return_percentage: float = 0.0
    best_performer: Optional[Holding] = None
    worst_performer: Optional[Holding] = None
    diversification_score: float = 0.0


class PortfolioAnalytics(BaseModel):
    summary: PortfolioSummary
    top_movers: TopMovers
    exchange_breakdown: List[ExchangeAllocation] = Field(default_factory=list)
    performance: PerformanceMetrics


class PriceRefreshResult(BaseModel):
    requested: int = 0
    updated: int = 0
    failed: int = 0
    failures: List[Dict[str, Any]] = Field(default_factory=list)
