from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from core.trading.portfolio_models import Exchange, normalize_exchange, utc_now


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    SL = "SL"
    SL_M = "SL-M"


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class ProductType(str, Enum):
    DELIVERY = "DELIVERY"
    INTRADAY = "INTRADAY"
    MARGIN = "MARGIN"
    CARRYFORWARD = "CARRYFORWARD"
    BO = "BO"
    CO = "CO"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    MODIFIED = "MODIFIED"


class OrderValidity(str, Enum):
    DAY = "DAY"
    IOC = "IOC"
    GTD = "GTD"


class OrderVariety(str, Enum):
    NORMAL = "NORMAL"
    STOPLOSS = "STOPLOSS"
    AMO = "AMO"
    ROBO = "ROBO"


class OrderSource(str, Enum):
    USER = "user"
    SYNC = "sync"


PRICE_REQUIRED_TYPES = frozenset({OrderType.LIMIT, OrderType.SL})
TRIGGER_REQUIRED_TYPES = frozenset({OrderType.SL, OrderType.SL_M})
LIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.OPEN, OrderStatus.MODIFIED})
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETE, OrderStatus.CANCELLED, OrderStatus.REJECTED})


class Order(BaseModel):
    """A locally tracked order.

    ``client_order_id`` is always present and unique. ``order_id`` and
    ``broker_order_id`` are filled in once SmartAPI accepts the order (or
    when the order is first seen in a broker order book) and are
    authoritative afterwards.
    """
    id: Optional[str] = None
    user_id: str
    client_order_id: str
    order_id: Optional[str] = None
    broker_order_id: Optional[str] = None
    exchange_order_id: Optional[str] = None
    symbol: str
    exchange: Exchange
    instrument_token: str
    order_type: OrderType
    transaction_type: TransactionType
    product_type: ProductType
    quantity: int = Field(ge=1)
    price: Optional[float] = Field(default=None, ge=0)
    trigger_price: Optional[float] = Field(default=None, ge=0)
    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: int = Field(default=0, ge=0)
    average_price: float = Field(default=0.0, ge=0)
    order_time: datetime = Field(default_factory=utc_now)
    update_time: datetime = Field(default_factory=utc_now)
    validity: OrderValidity = OrderValidity.DAY
    variety: OrderVariety = OrderVariety.NORMAL
    squareoff: Optional[float] = None
    stoploss: Optional[float] = None
    trailing_stoploss: Optional[float] = None
    rejection_reason: Optional[str] = None
    source: OrderSource = OrderSource.USER

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
        if isinstance(v, int):
            return str(v)
        return v

    @model_validator(mode="after")
    def check_fill_within_quantity(self):
        if self.filled_quantity > self.quantity:
            raise ValueError(
                f"filled_quantity {self.filled_quantity} exceeds quantity {self.quantity}"
            )
        return self

    @computed_field
    @property
    def pending_quantity(self) -> int:
        return self.quantity - self.filled_quantity

    @computed_field
    @property
    def order_value(self) -> float:
        return self.quantity * (self.price or 0.0)

    @computed_field
    @property
    def executed_value(self) -> float:
        return self.filled_quantity * self.average_price

    @property
    def is_completed(self) -> bool:
        return self.status == OrderStatus.COMPLETE

    @property
    def is_pending(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.OPEN)

    def can_be_modified(self) -> bool:
        return self.status in LIVE_STATUSES

    def can_be_cancelled(self) -> bool:
        return self.status in LIVE_STATUSES

    def with_changes(self, **changes) -> "Order":
        """Return a re-validated copy with ``changes`` applied."""
        data = self.model_dump(exclude={"pending_quantity", "order_value", "executed_value"})
        data.update(changes)
        return Order.model_validate(data)


class OrderFilter(BaseModel):
    status: Optional[OrderStatus] = None
    symbol: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip().upper()
        return None


class OrderStats(BaseModel):
    total_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    rejected_orders: int = 0
    buy_orders: int = 0
    sell_orders: int = 0
    total_value: float = 0.0
    success_rate: float = 0.0
    cancellation_rate: float = 0.0
    average_order_value: float = 0.0
