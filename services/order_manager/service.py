import asyncio
import math
from typing import Any, Dict, Optional, Tuple

from core.config.settings import Settings
from core.logging import get_audit_logger_safe, get_error_logger_safe, get_trading_logger_safe
from core.trading.interfaces import BrokerGateway, OrderRepository
from core.trading.order_models import (
    Order,
    OrderFilter,
    OrderStats,
    OrderStatus,
    PRICE_REQUIRED_TYPES,
    TRIGGER_REQUIRED_TYPES,
)
from core.utils.exceptions import BrokerAPIError, NotFoundError, OrderRejectionError, OrderStateError
from core.utils.ids import generate_client_order_id
from .models import OrderModifyRequest, OrderPage, OrderRequest, OrderSyncResult
from .reconciliation.order_sync import BROKER_ORDER_TYPES, OrderSyncMerger
from .stats import compute_order_stats
from .validator import OrderPlacementValidator

# Our order types as SmartAPI names them
SMARTAPI_ORDER_TYPES = {ours.value: theirs for theirs, ours in BROKER_ORDER_TYPES.items()}


def _price_text(value: Optional[float]) -> str:
    return f"{value:g}" if value is not None else "0"


def build_place_payload(order: Order) -> Dict[str, Any]:
    """SmartAPI ``placeOrder`` body for a validated order."""
    payload = {
        "variety": order.variety.value.lower(),
        "tradingsymbol": order.symbol,
        "symboltoken": order.instrument_token,
        "transactiontype": order.transaction_type.value,
        "exchange": order.exchange.value,
        "ordertype": SMARTAPI_ORDER_TYPES.get(order.order_type.value, order.order_type.value),
        "producttype": order.product_type.value,
        "duration": order.validity.value,
        "quantity": str(order.quantity),
    }
    if order.order_type in PRICE_REQUIRED_TYPES:
        payload["price"] = _price_text(order.price)
    if order.order_type in TRIGGER_REQUIRED_TYPES:
        payload["triggerprice"] = _price_text(order.trigger_price)
    for field in ("squareoff", "stoploss", "trailing_stoploss"):
        value = getattr(order, field)
        if value is not None:
            payload[field.replace("_", "")] = _price_text(value)
    return payload


def build_modify_payload(order: Order) -> Dict[str, Any]:
    payload = build_place_payload(order)
    payload["orderid"] = order.order_id
    return payload


class OrderService:
    """Order placement, amendment, cancellation and broker order-book sync.

    Every placement is recorded locally as PENDING before SmartAPI is
    called, so a failed or crashed placement still leaves a REJECTED trace.
    """

    def __init__(self, settings: Settings, repository: OrderRepository, gateway: BrokerGateway,
                 validator: Optional[OrderPlacementValidator] = None,
                 merger: Optional[OrderSyncMerger] = None):
        self.settings = settings
        self.repository = repository
        self.gateway = gateway
        self.validator = validator or OrderPlacementValidator()
        self.merger = merger or OrderSyncMerger()
        self.logger = get_trading_logger_safe("order_service")
        self.audit_logger = get_audit_logger_safe("order_audit")
        self.error_logger = get_error_logger_safe("order_service_errors")

        self._sync_locks: Dict[str, asyncio.Lock] = {}
        self._sync_locks_lock = asyncio.Lock()

    async def _get_sync_lock(self, user_id: str) -> asyncio.Lock:
        async with self._sync_locks_lock:
            if user_id not in self._sync_locks:
                self._sync_locks[user_id] = asyncio.Lock()
            return self._sync_locks[user_id]

    async def place_order(self, user_id: str, access_token: str,
                          request: OrderRequest) -> Tuple[Order, Any]:
        """Validate, record and submit an order.

        Returns the stored order and the broker's response data.
        """
        fields = self.validator.validate(request)
        order = Order(user_id=user_id, client_order_id=generate_client_order_id(),
                      status=OrderStatus.PENDING, **fields)
        order = await self.repository.create(order)
        self.audit_logger.info("Order submitted",
                               user_id=user_id,
                               client_order_id=order.client_order_id,
                               symbol=order.symbol,
                               transaction_type=order.transaction_type.value,
                               quantity=order.quantity)

        try:
            response = await self.gateway.place_order(access_token, build_place_payload(order))
        except Exception as e:
            await self._reject(order, str(e))
            self.error_logger.error("Order placement raised",
                                    user_id=user_id, client_order_id=order.client_order_id, error=str(e))
            raise

        broker_id = None
        if response.success and isinstance(response.data, dict):
            broker_id = response.data.get("orderid")
        if not broker_id:
            reason = response.message or "Order placement failed"
            rejected = await self._reject(order, reason)
            raise OrderRejectionError(reason, rejection_reason=reason,
                                      order_data=rejected.model_dump(mode="json"))

        try:
            order = await self.repository.save(order.with_changes(
                order_id=str(broker_id), broker_order_id=str(broker_id), status=OrderStatus.OPEN,
            ))
        except Exception as e:
            # The order is live at the broker; the id is only in this log line
            self.error_logger.error("Order accepted by broker but not recorded",
                                    user_id=user_id,
                                    client_order_id=order.client_order_id,
                                    order_id=str(broker_id),
                                    error=str(e))
            raise
        self.logger.info("Order placed", user_id=user_id,
                         client_order_id=order.client_order_id, order_id=order.order_id)
        return order, response.data

    async def _reject(self, order: Order, reason: str) -> Order:
        rejected = order.with_changes(status=OrderStatus.REJECTED, rejection_reason=reason)
        self.audit_logger.warning("Order rejected", user_id=order.user_id,
                                  client_order_id=order.client_order_id, reason=reason)
        return await self.repository.save(rejected)

    async def get_order(self, user_id: str, identifier: str) -> Order:
        order = await self.repository.find_one(user_id, identifier)
        if order is None:
            raise NotFoundError("Order not found", resource="order", identifier=identifier)
        return order

    async def list_orders(self, user_id: str, filters: OrderFilter, page: int = 1,
                          limit: Optional[int] = None) -> OrderPage:
        page = max(page, 1)
        limit = min(limit or self.settings.orders.default_page_size, self.settings.orders.max_page_size)
        limit = max(limit, 1)
        total = await self.repository.count(user_id, filters)
        orders = await self.repository.find(user_id, filters, offset=(page - 1) * limit, limit=limit)
        return OrderPage(orders=orders, page=page, limit=limit, total=total,
                         pages=math.ceil(total / limit) if total else 0)

    async def modify_order(self, user_id: str, access_token: str, identifier: str,
                           request: OrderModifyRequest) -> Order:
        order = await self.get_order(user_id, identifier)
        if not order.can_be_modified():
            raise OrderStateError("Order cannot be modified in current status", order_id=identifier)
        if not order.order_id:
            raise OrderStateError("Order has no broker order id yet", order_id=identifier)

        amended = order.with_changes(**self.validator.validate_modification(order, request))
        response = await self.gateway.modify_order(access_token, build_modify_payload(amended))
        if not response.success:
            raise BrokerAPIError(response.message or "Failed to modify order",
                                 api_error_code=response.error_code)

        order = await self.repository.save(amended.with_changes(status=OrderStatus.MODIFIED))
        self.audit_logger.info("Order modified", user_id=user_id, order_id=order.order_id,
                               quantity=order.quantity, price=order.price)
        return order

    async def cancel_order(self, user_id: str, access_token: str, identifier: str) -> Order:
        order = await self.get_order(user_id, identifier)
        if not order.can_be_cancelled():
            raise OrderStateError("Order cannot be cancelled in current status", order_id=identifier)
        if not order.order_id:
            raise OrderStateError("Order has no broker order id yet", order_id=identifier)

        response = await self.gateway.cancel_order(access_token, order.variety.value.lower(), order.order_id)
        if not response.success:
            raise BrokerAPIError(response.message or "Failed to cancel order",
                                 api_error_code=response.error_code)

        order = await self.repository.save(order.with_changes(status=OrderStatus.CANCELLED))
        self.audit_logger.info("Order cancelled", user_id=user_id, order_id=order.order_id)
        return order

    async def sync_orders(self, user_id: str, access_token: str) -> OrderSyncResult:
        """Pull the broker order book and merge it into local orders."""
        lock = await self._get_sync_lock(user_id)
        async with lock:
            response = await self.gateway.get_order_book(access_token)
            if not response.success:
                raise BrokerAPIError(response.message or "Failed to sync orders",
                                     api_error_code=response.error_code)

            broker_orders = response.data if isinstance(response.data, list) else []
            local_orders = await self.repository.find(user_id, OrderFilter())
            merged = self.merger.merge_order_book(local_orders, broker_orders, user_id)

            persist_failures = 0
            for order in merged.created:
                if not await self._persist(order, create=True):
                    persist_failures += 1
            for order in merged.updated:
                if not await self._persist(order, create=False):
                    persist_failures += 1

        result = OrderSyncResult(
            synced_orders=len(merged.updated),
            new_orders=len(merged.created),
            unchanged_orders=len(merged.unchanged),
            failed_orders=len(merged.failed) + persist_failures,
            total_broker_orders=len(broker_orders),
        )
        self.logger.info("Orders synced", user_id=user_id, **result.model_dump())
        return result

    async def _persist(self, order: Order, create: bool) -> bool:
        try:
            if create:
                await self.repository.create(order)
            else:
                await self.repository.save(order)
            return True
        except Exception as e:
            self.error_logger.error("Failed to persist synced order",
                                    user_id=order.user_id,
                                    client_order_id=order.client_order_id,
                                    error=str(e))
            return False

    async def stats(self, user_id: str, filters: Optional[OrderFilter] = None) -> OrderStats:
        orders = await self.repository.find(user_id, filters or OrderFilter())
        return compute_order_stats(orders)

    async def recent_orders(self, user_id: str, limit: Optional[int] = None):
        limit = limit or self.settings.orders.recent_orders_limit
        return await self.repository.find(user_id, OrderFilter(), limit=limit)

    async def open_orders_count(self, user_id: str) -> int:
        total = 0
        for status in (OrderStatus.PENDING, OrderStatus.OPEN, OrderStatus.MODIFIED):
            total += await self.repository.count(user_id, OrderFilter(status=status))
        return total

