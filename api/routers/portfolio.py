from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from api.dependencies import get_metrics, get_portfolio_service, require_broker_session
from api.schemas.responses import ok
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.utils.exceptions import SmartDeskException
from services.auth.models import User
from services.portfolio_manager.models import ManualHoldingRequest
from services.portfolio_manager.service import PortfolioService

router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


@router.get("")
async def get_portfolio(
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    portfolio = await service.get_portfolio(user.id)
    return ok({"portfolio": {**portfolio.model_dump(mode="json"),
                             "summary": portfolio.summary().model_dump(mode="json")}})


@router.post("/sync")
async def sync_portfolio(
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
    metrics: PrometheusMetricsCollector = Depends(get_metrics),
):
    try:
        portfolio = await service.sync(user.id, user.broker_session.access_token)
    except SmartDeskException:
        metrics.record_sync("portfolio", "failed")
        raise
    metrics.record_sync("portfolio", "completed")
    return ok({
        "holdings_count": len(portfolio.holdings),
        "total_invested_value": portfolio.total_invested_value,
        "total_current_value": portfolio.total_current_value,
        "total_pnl": portfolio.total_pnl,
        "total_pnl_percentage": portfolio.total_pnl_percentage,
        "available_funds": portfolio.available_funds,
        "last_sync_at": portfolio.last_sync_at,
    }, "Portfolio synced successfully")


@router.post("/update-prices")
async def update_prices(
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    portfolio, result = await service.refresh_prices(user.id, user.broker_session.access_token)
    return ok({
        "updated_count": result.updated,
        "failed_count": result.failed,
        "failures": result.failures,
        "total_holdings": len(portfolio.holdings),
        "total_current_value": portfolio.total_current_value,
        "total_pnl": portfolio.total_pnl,
        "total_pnl_percentage": portfolio.total_pnl_percentage,
        "last_updated": datetime.now(timezone.utc),
    }, "Portfolio prices updated successfully")


@router.get("/analytics")
async def get_analytics(
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    analytics = await service.analytics(user.id)
    return ok({"analytics": analytics.model_dump(mode="json")})


@router.get("/holding/{symbol}/{exchange}")
async def get_holding(
    symbol: str,
    exchange: str,
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    holding = await service.get_holding(user.id, user.broker_session.access_token, symbol, exchange)
    return ok({"holding": holding.model_dump(mode="json")})


@router.post("/holding", status_code=status.HTTP_201_CREATED)
async def add_holding(
    body: ManualHoldingRequest,
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    holding = await service.add_holding(user.id, user.broker_session.access_token, body)
    return ok({"holding": holding.model_dump(mode="json")}, "Holding added successfully")


@router.delete("/holding/{symbol}/{exchange}")
async def remove_holding(
    symbol: str,
    exchange: str,
    user: User = Depends(require_broker_session),
    service: PortfolioService = Depends(get_portfolio_service),
):
    await service.remove_holding(user.id, symbol, exchange)
    return ok(message="Holding removed successfully")
