from typing import Any, Dict, Optional

from core.trading.order_models import (
    Order,
    OrderType,
    OrderValidity,
    OrderVariety,
    PRICE_REQUIRED_TYPES,
    ProductType,
    TRIGGER_REQUIRED_TYPES,
    TransactionType,
)
from core.trading.portfolio_models import Exchange
from core.utils.exceptions import OrderValidationError
from .models import OrderModifyRequest, OrderRequest

REQUIRED_FIELDS_MESSAGE = "Please provide all required fields"
QUANTITY_MESSAGE = "Quantity must be positive"
PRICE_MESSAGE = "Price is required for LIMIT and SL orders"
TRIGGER_PRICE_MESSAGE = "Trigger price is required for SL and SL-M orders"

REQUIRED_FIELDS = (
    "symbol", "exchange", "instrument_token", "order_type",
    "transaction_type", "product_type", "quantity",
)


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _enum(enum_cls, value: str, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise OrderValidationError(f"Invalid {field.replace('_', ' ')}: {value}", field=field, value=value) from None


class OrderPlacementValidator:
    """Checks an order request before anything is persisted or sent.

    Rules run in a fixed order and the first violation is reported:
    required fields, positive quantity, price for LIMIT/SL, trigger price
    for SL/SL-M. Enum values are checked after those rules.
    """

    def validate(self, request: OrderRequest) -> Dict[str, Any]:
        """Return normalized ``Order`` fields or raise ``OrderValidationError``."""
        for field in REQUIRED_FIELDS:
            value = getattr(request, field)
            # A zero quantity counts as not provided
            if value in (None, "") or (field == "quantity" and value == 0):
                raise OrderValidationError(REQUIRED_FIELDS_MESSAGE, field=field)

        self._check_quantity(request.quantity)
        self._check_prices(request.order_type, request.price, request.trigger_price)

        order_type = _enum(OrderType, request.order_type, "order_type")
        return {
            "symbol": request.symbol,
            "exchange": _enum(Exchange, request.exchange, "exchange"),
            "instrument_token": request.instrument_token,
            "order_type": order_type,
            "transaction_type": _enum(TransactionType, request.transaction_type, "transaction_type"),
            "product_type": _enum(ProductType, request.product_type, "product_type"),
            "quantity": int(request.quantity),
            # Price fields only travel with the order types that use them
            "price": request.price if order_type in PRICE_REQUIRED_TYPES else None,
            "trigger_price": request.trigger_price if order_type in TRIGGER_REQUIRED_TYPES else None,
            "validity": _enum(OrderValidity, request.validity or OrderValidity.DAY.value, "validity"),
            "variety": _enum(OrderVariety, request.variety or OrderVariety.NORMAL.value, "variety"),
            "squareoff": request.squareoff,
            "stoploss": request.stoploss,
            "trailing_stoploss": request.trailing_stoploss,
        }

    def validate_modification(self, order: Order, request: OrderModifyRequest) -> Dict[str, Any]:
        """Return the field changes for an amendment of ``order``.

        Price rules are evaluated against the effective order type, i.e. the
        requested one or the order's current type.
        """
        if request.quantity is not None:
            self._check_quantity(request.quantity)

        order_type = request.order_type or order.order_type.value
        price = request.price if request.price is not None else order.price
        trigger_price = request.trigger_price if request.trigger_price is not None else order.trigger_price
        self._check_prices(order_type, price, trigger_price)

        effective_type = _enum(OrderType, order_type, "order_type")
        changes: Dict[str, Any] = {
            "order_type": effective_type,
            "price": price if effective_type in PRICE_REQUIRED_TYPES else None,
            "trigger_price": trigger_price if effective_type in TRIGGER_REQUIRED_TYPES else None,
        }
        if request.quantity is not None:
            changes["quantity"] = int(request.quantity)
        if request.validity is not None:
            changes["validity"] = _enum(OrderValidity, request.validity, "validity")
        return changes

    @staticmethod
    def _check_quantity(quantity: float) -> None:
        if quantity <= 0:
            raise OrderValidationError(QUANTITY_MESSAGE, field="quantity", value=quantity)
        if quantity != int(quantity):
            raise OrderValidationError("Quantity must be a whole number", field="quantity", value=quantity)

    @staticmethod
    def _check_prices(order_type: str, price: Optional[float], trigger_price: Optional[float]) -> None:
        if order_type in (OrderType.LIMIT.value, OrderType.SL.value) and not _positive(price):
            raise OrderValidationError(PRICE_MESSAGE, field="price", value=price)
        if order_type in (OrderType.SL.value, OrderType.SL_M.value) and not _positive(trigger_price):
            raise OrderValidationError(TRIGGER_PRICE_MESSAGE, field="trigger_price", value=trigger_price)
