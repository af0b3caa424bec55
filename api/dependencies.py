from typing import Optional

from dependency_injector.wiring import inject, Provide
from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.containers import AppContainer
from core.config.settings import Settings
from core.logging.correlation import CorrelationIdManager
from core.market_hours.market_hours_checker import MarketHoursChecker
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.utils.exceptions import BrokerSessionRequiredError
from services.auth.models import User
from services.auth.service import AuthService
from services.order_manager.service import OrderService
from services.portfolio_manager.service import PortfolioService

bearer_scheme = HTTPBearer(auto_error=False)


@inject
async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(Provide[AppContainer.auth_service]),
) -> User:
    """Resolve the bearer token to an active dashboard user."""
    user = await auth_service.authenticate(credentials.credentials if credentials else None)
    request.state.user_id = user.id
    CorrelationIdManager.set_correlation_context(user_id=user.id)
    return user


async def require_broker_session(user: User = Depends(get_current_user)) -> User:
    """Current user, provided their SmartAPI session is still valid."""
    if not user.has_valid_broker_session():
        raise BrokerSessionRequiredError()
    return user


@inject
def get_auth_service(
    auth_service: AuthService = Depends(Provide[AppContainer.auth_service])
) -> AuthService:
    return auth_service


@inject
def get_portfolio_service(
    portfolio_service: PortfolioService = Depends(Provide[AppContainer.portfolio_service])
) -> PortfolioService:
    return portfolio_service


@inject
def get_order_service(
    order_service: OrderService = Depends(Provide[AppContainer.order_service])
) -> OrderService:
    return order_service


@inject
def get_market_hours_checker(
    checker: MarketHoursChecker = Depends(Provide[AppContainer.market_hours_checker])
) -> MarketHoursChecker:
    return checker


@inject
def get_metrics(
    metrics: PrometheusMetricsCollector = Depends(Provide[AppContainer.prometheus_metrics])
) -> PrometheusMetricsCollector:
    return metrics


@inject
def get_settings(
    settings: Settings = Depends(Provide[AppContainer.settings])
) -> Settings:
    """Get application settings for API endpoints"""
    return settings


def get_pagination_params(
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped by configuration"),
):
    return {"page": page, "limit": limit}
