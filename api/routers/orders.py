import math
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_metrics, get_order_service, get_pagination_params, require_broker_session
from api.schemas.responses import Pagination, ok
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.trading.order_models import OrderFilter, OrderStatus
from core.utils.exceptions import OrderRejectionError
from services.auth.models import User
from services.order_manager.models import OrderModifyRequest, OrderRequest
from services.order_manager.service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def place_order(
    body: OrderRequest,
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
    metrics: PrometheusMetricsCollector = Depends(get_metrics),
):
    try:
        order, broker_response = await service.place_order(user.id, user.broker_session.access_token, body)
    except OrderRejectionError:
        metrics.record_order("place", OrderStatus.REJECTED.value)
        raise
    metrics.record_order("place", order.status.value)
    return ok({"order": order.model_dump(mode="json"), "broker_response": broker_response},
              "Order placed successfully")


@router.get("")
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    symbol: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
):
    filters = OrderFilter(status=status_filter, symbol=symbol, date_from=date_from, date_to=date_to)
    page = await service.list_orders(user.id, filters, page=pagination["page"], limit=pagination["limit"])
    total_pages = math.ceil(page.total / page.limit) if page.total else 0
    return ok({
        "orders": [o.model_dump(mode="json") for o in page.orders],
        "pagination": Pagination(
            current_page=page.page,
            total_pages=total_pages,
            total_orders=page.total,
            limit=page.limit,
            has_next=page.page < total_pages,
            has_prev=page.page > 1,
        ).model_dump(),
    })


@router.get("/stats")
async def order_stats(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
):
    stats = await service.stats(user.id, OrderFilter(date_from=date_from, date_to=date_to))
    return ok({
        "stats": stats.model_dump(),
        "period": {
            "from": date_from.isoformat() if date_from else "All time",
            "to": date_to.isoformat() if date_to else "Present",
        },
    })


@router.post("/sync")
async def sync_orders(
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
    metrics: PrometheusMetricsCollector = Depends(get_metrics),
):
    result = await service.sync_orders(user.id, user.broker_session.access_token)
    metrics.record_sync("orders", "completed")
    return ok({**result.model_dump(), "last_sync_at": datetime.now(timezone.utc)},
              "Orders synced successfully")


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(user.id, order_id)
    return ok({"order": order.model_dump(mode="json")})


@router.put("/{order_id}")
async def modify_order(
    order_id: str,
    body: OrderModifyRequest,
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
    metrics: PrometheusMetricsCollector = Depends(get_metrics),
):
    order = await service.modify_order(user.id, user.broker_session.access_token, order_id, body)
    metrics.record_order("modify", order.status.value)
    return ok({"order": order.model_dump(mode="json")}, "Order modified successfully")


@router.delete("/{order_id}")
async def cancel_order(
    order_id: str,
    user: User = Depends(require_broker_session),
    service: OrderService = Depends(get_order_service),
    metrics: PrometheusMetricsCollector = Depends(get_metrics),
):
    order = await service.cancel_order(user.id, user.broker_session.access_token, order_id)
    metrics.record_order("cancel", order.status.value)
    return ok({"order": order.model_dump(mode="json")}, "Order cancelled successfully")
