from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytz
from pydantic import ValidationError

from core.logging import get_trading_logger_safe
from core.trading.order_models import (
    Order,
    OrderSource,
    OrderStatus,
    OrderType,
)
from core.trading.portfolio_models import utc_now
from core.utils.ids import sync_client_order_id
from ..models import BrokerOrder, OrderMergeResult

IST = pytz.timezone("Asia/Kolkata")
BROKER_TIME_FORMATS = ("%d-%b-%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")

# SmartAPI order types that differ from ours
BROKER_ORDER_TYPES = {
    "STOPLOSS_LIMIT": OrderType.SL,
    "STOPLOSS_MARKET": OrderType.SL_M,
}

OPEN_MARKERS = ("open", "trigger pending", "after market", "cancel pending", "modify pending")

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def normalize_broker_status(raw: Optional[str]) -> OrderStatus:
    """Map a SmartAPI order status string onto ``OrderStatus``.

    SmartAPI reports lowercase phrases ("complete", "trigger pending",
    "after market order req received", ...). Anything not recognized is
    treated as still pending at the exchange.
    """
    status = (raw or "").strip().lower()
    if "reject" in status:
        return OrderStatus.REJECTED
    if "cancelled" in status or "canceled" in status:
        return OrderStatus.CANCELLED
    if "complete" in status:
        return OrderStatus.COMPLETE
    if "modified" in status:
        return OrderStatus.MODIFIED
    if any(marker in status for marker in OPEN_MARKERS):
        return OrderStatus.OPEN
    return OrderStatus.PENDING


def normalize_broker_order_type(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = raw.strip().upper()
    mapped = BROKER_ORDER_TYPES.get(value)
    return mapped.value if mapped else value


def parse_broker_time(raw: Optional[str]) -> Optional[datetime]:
    """Parse a SmartAPI IST timestamp into an aware UTC datetime."""
    if not raw:
        return None
    for fmt in BROKER_TIME_FORMATS:
        try:
            parsed = datetime.strptime(raw.strip(), fmt)
        except ValueError:
            continue
        return IST.localize(parsed).astimezone(pytz.utc)
    return None


class OrderSyncMerger:
    """Merges a broker order-book snapshot into the user's local orders.

    Matching is by broker order id only, against both ``order_id`` and
    ``broker_order_id``. A local order without a broker id is never paired
    with a broker entry, even when symbol and quantity agree; the broker
    entry becomes a new synthetic order instead.
    """

    def __init__(self):
        self.logger = get_trading_logger_safe("order_sync_merger")

    def merge_order_book(self, local_orders: Iterable[Order], broker_orders: Iterable[Any],
                         user_id: str, now: Optional[datetime] = None) -> OrderMergeResult:
        now = now or utc_now()
        index: Dict[str, Order] = {}
        for order in local_orders:
            for key in (order.order_id, order.broker_order_id):
                if key:
                    index[key] = order

        # client_order_id -> (category, order); later entries for the same order win
        outcome: Dict[str, Tuple[str, Order]] = {}
        failed: List[Any] = []

        for raw in broker_orders or []:
            try:
                entry = BrokerOrder.model_validate(raw)
                status = normalize_broker_status(entry.raw_status)
                local = index.get(entry.orderid)
                if local is None:
                    created = self._build_synthetic(entry, status, user_id, now)
                    index[entry.orderid] = created
                    outcome[created.client_order_id] = (CREATED, created)
                    continue

                merged = self._apply(local, entry, status, now)
                previous = outcome.get(local.client_order_id)
                if merged is None:
                    if previous is None:
                        outcome[local.client_order_id] = (UNCHANGED, local)
                    continue
                category = CREATED if previous and previous[0] == CREATED else UPDATED
                index[entry.orderid] = merged
                outcome[merged.client_order_id] = (category, merged)
            except (ValidationError, ValueError, TypeError) as e:
                self.logger.warning("Skipping broker order that could not be merged",
                                    user_id=user_id,
                                    orderid=raw.get("orderid") if isinstance(raw, dict) else None,
                                    error=str(e))
                failed.append(raw)

        result = OrderMergeResult(failed=failed)
        for category, order in outcome.values():
            getattr(result, category).append(order)
        return result

    @staticmethod
    def _apply(local: Order, entry: BrokerOrder, status: OrderStatus, now: datetime) -> Optional[Order]:
        """Return the updated order, or None when nothing tracked differs."""
        tracked = {
            "status": status,
            "filled_quantity": int(entry.filledshares or 0),
            "average_price": float(entry.averageprice or 0.0),
            "exchange_order_id": entry.exchorderid or local.exchange_order_id,
        }
        changes = {k: v for k, v in tracked.items() if getattr(local, k) != v}
        if not changes:
            return None

        changes["update_time"] = parse_broker_time(entry.updatetime) or now
        if local.order_id is None:
            changes["order_id"] = entry.orderid
        if local.broker_order_id is None:
            changes["broker_order_id"] = entry.orderid
        if status == OrderStatus.REJECTED and entry.text and not local.rejection_reason:
            changes["rejection_reason"] = entry.text
        return local.with_changes(**changes)

    @staticmethod
    def _build_synthetic(entry: BrokerOrder, status: OrderStatus, user_id: str, now: datetime) -> Order:
        order_time = parse_broker_time(entry.ordertime) or now
        return Order(
            user_id=user_id,
            client_order_id=sync_client_order_id(entry.orderid),
            order_id=entry.orderid,
            broker_order_id=entry.orderid,
            exchange_order_id=entry.exchorderid,
            symbol=entry.tradingsymbol,
            exchange=entry.exchange,
            instrument_token=entry.symboltoken,
            order_type=normalize_broker_order_type(entry.ordertype),
            transaction_type=(entry.transactiontype or "").upper() or None,
            product_type=(entry.producttype or "").upper() or None,
            quantity=int(entry.quantity) if entry.quantity is not None else None,
            price=entry.price or None,
            trigger_price=entry.triggerprice or None,
            status=status,
            filled_quantity=int(entry.filledshares or 0),
            average_price=float(entry.averageprice or 0.0),
            order_time=order_time,
            update_time=parse_broker_time(entry.updatetime) or order_time,
            validity=(entry.duration or "DAY").upper(),
            variety=(entry.variety or "NORMAL").upper(),
            rejection_reason=entry.text if status == OrderStatus.REJECTED and entry.text else None,
            source=OrderSource.SYNC,
        )
