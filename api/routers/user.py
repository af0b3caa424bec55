from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends

from api.dependencies import get_current_user, get_order_service, get_portfolio_service, get_settings
from api.schemas.responses import ok
from core.config.settings import Settings
from core.trading.order_models import OrderFilter
from services.auth.models import User
from services.order_manager.service import OrderService
from services.portfolio_manager.service import PortfolioService

router = APIRouter(prefix="/user", tags=["User"])

RECENT_ORDER_FIELDS = {
    "id", "client_order_id", "order_id", "symbol", "exchange", "order_type",
    "transaction_type", "quantity", "price", "status", "order_time",
}


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@router.get("/dashboard")
async def dashboard(
    user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
    order_service: OrderService = Depends(get_order_service),
    settings: Settings = Depends(get_settings),
):
    """Portfolio summary, recent orders, this month's order stats and alerts."""
    now = datetime.now(timezone.utc)
    portfolio = await portfolio_service.get_portfolio(user.id)
    recent = await order_service.recent_orders(user.id)
    monthly = await order_service.stats(user.id, OrderFilter(date_from=_month_start(now)))
    movers = await portfolio_service.top_movers(user.id, settings.portfolio.dashboard_movers_limit)

    last_sync = portfolio.last_sync_at
    if last_sync is not None and last_sync.tzinfo is None:
        last_sync = last_sync.replace(tzinfo=timezone.utc)
    stale_after = timedelta(hours=settings.portfolio.sync_stale_hours)

    return ok({"dashboard": {
        "user": {
            "name": user.name,
            "email": user.email,
            "client_code": user.client_code,
            "last_login": user.last_login,
            "has_smartapi_session": user.has_valid_broker_session(),
        },
        "portfolio": portfolio.summary().model_dump(mode="json"),
        "orders": {
            "recent": [o.model_dump(mode="json", include=RECENT_ORDER_FIELDS) for o in recent],
            "monthly_stats": monthly.model_dump(),
        },
        "top_performers": movers.model_dump(mode="json"),
        "alerts": {
            "portfolio_sync": last_sync is None or now - last_sync > stale_after,
            "smartapi_connection": not user.has_valid_broker_session(),
        },
    }})
