from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from core.trading.order_models import Order


def _strip_upper(v):
    if isinstance(v, str):
        v = v.strip()
        return v.upper() if v else None
    return v


class OrderRequest(BaseModel):
    """Order placement body.

    All fields are optional; presence and value rules are checked by
    ``OrderPlacementValidator``.
    """
    model_config = ConfigDict(populate_by_name=True)

    symbol: Optional[str] = None
    exchange: Optional[str] = None
    instrument_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("instrument_token", "instrumentToken", "symboltoken")
    )
    order_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_type", "orderType"))
    transaction_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("transaction_type", "transactionType")
    )
    product_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_type", "productType"))
    quantity: Optional[float] = None
    price: Optional[float] = None
    trigger_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("trigger_price", "triggerPrice"))
    validity: Optional[str] = None
    variety: Optional[str] = None
    squareoff: Optional[float] = None
    stoploss: Optional[float] = None
    trailing_stoploss: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("trailing_stoploss", "trailingStoploss")
    )

    @field_validator("symbol", "exchange", "order_type", "transaction_type", "product_type",
                     "validity", "variety", mode="before")
    @classmethod
    def normalize_text(cls, v):
        return _strip_upper(v)

    @field_validator("instrument_token", mode="before")
    @classmethod
    def coerce_token(cls, v):
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip() or None
        return v


class OrderModifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_type", "orderType"))
    quantity: Optional[float] = None
    price: Optional[float] = None
    trigger_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("trigger_price", "triggerPrice"))
    validity: Optional[str] = None

    @field_validator("order_type", "validity", mode="before")
    @classmethod
    def normalize_text(cls, v):
        return _strip_upper(v)


class BrokerOrder(BaseModel):
    """An entry of SmartAPI ``getOrderBook``. Numeric fields arrive as strings."""
    model_config = ConfigDict(extra="ignore")

    orderid: str
    tradingsymbol: Optional[str] = None
    exchange: Optional[str] = None
    symboltoken: Optional[str] = None
    ordertype: Optional[str] = None
    transactiontype: Optional[str] = None
    producttype: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    triggerprice: Optional[float] = None
    status: Optional[str] = None
    orderstatus: Optional[str] = None
    filledshares: Optional[float] = None
    averageprice: Optional[float] = None
    exchorderid: Optional[str] = None
    ordertime: Optional[str] = None
    updatetime: Optional[str] = None
    exchtime: Optional[str] = None
    variety: Optional[str] = None
    duration: Optional[str] = None
    text: Optional[str] = None

    @field_validator("orderid", "symboltoken", "exchorderid", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, (int, float)):
            return str(int(v))
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("quantity", "price", "triggerprice", "filledshares", "averageprice", mode="before")
    @classmethod
    def coerce_number(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return float(v) if v else None
        return v

    @property
    def raw_status(self) -> str:
        return (self.status or self.orderstatus or "").strip()


class OrderMergeResult(BaseModel):
    """Outcome of merging a broker order book into local orders."""
    updated: List[Order] = Field(default_factory=list)
    created: List[Order] = Field(default_factory=list)
    unchanged: List[Order] = Field(default_factory=list)
    failed: List[Any] = Field(default_factory=list)

    @property
    def changed(self) -> List[Order]:
        return self.updated + self.created


class OrderSyncResult(BaseModel):
    synced_orders: int = 0
    new_orders: int = 0
    unchanged_orders: int = 0
    failed_orders: int = 0
    total_broker_orders: int = 0


class OrderPage(BaseModel):
    orders: List[Order]
    page: int
    limit: int
    total: int
    pages: int


class DateRange(BaseModel):
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
