# Application DI container
from dependency_injector import containers, providers
import redis.asyncio as redis
from prometheus_client import CollectorRegistry

from core.config.settings import Settings
from core.database.connection import DatabaseManager
from core.market_hours.market_hours_checker import MarketHoursChecker
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.trading.portfolio_cache import PortfolioCache
from services.auth.repository import SqlUserRepository
from services.auth.service import AuthService
from services.broker_gateway.smartapi_client import SmartApiGateway
from services.order_manager.persistence.sql_order_repository import SqlOrderRepository
from services.order_manager.service import OrderService
from services.portfolio_manager.persistence.database_persister import SqlPortfolioRepository
from services.portfolio_manager.service import PortfolioService


def _portfolio_cache(settings: Settings, redis_client):
    """Redis cache in front of portfolio documents, or None when disabled."""
    if not settings.redis.cache_enabled:
        return None
    return PortfolioCache(settings, redis_client=redis_client)


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # --- Observability: Prometheus ---
    prometheus_registry = providers.Singleton(CollectorRegistry)
    prometheus_metrics = providers.Singleton(
        PrometheusMetricsCollector,
        registry=prometheus_registry,
    )

    # Database with environment awareness
    db_manager = providers.Singleton(
        DatabaseManager,
        db_url=settings.provided.database.postgres_url,
        environment=settings.provided.environment,
        schema_management=settings.provided.database.schema_management,
        echo=settings.provided.database.echo,
    )

    # Redis cache
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.redis.url,
        decode_responses=True,
    )

    portfolio_cache = providers.Singleton(
        _portfolio_cache,
        settings=settings,
        redis_client=redis_client,
    )

    market_hours_checker = providers.Singleton(MarketHoursChecker)

    # SmartAPI
    broker_gateway = providers.Singleton(SmartApiGateway, settings=settings)

    # --- Repositories ---
    user_repository = providers.Singleton(
        SqlUserRepository,
        session_factory=db_manager.provided.get_session,
    )
    portfolio_repository = providers.Singleton(
        SqlPortfolioRepository,
        session_factory=db_manager.provided.get_session,
        cache=portfolio_cache,
    )
    order_repository = providers.Singleton(
        SqlOrderRepository,
        session_factory=db_manager.provided.get_session,
    )

    # --- Services ---
    auth_service = providers.Singleton(
        AuthService,
        settings=settings,
        users=user_repository,
        gateway=broker_gateway,
        portfolios=portfolio_repository,
    )
    portfolio_service = providers.Singleton(
        PortfolioService,
        settings=settings,
        repository=portfolio_repository,
        gateway=broker_gateway,
    )
    order_service = providers.Singleton(
        OrderService,
        settings=settings,
        repository=order_repository,
        gateway=broker_gateway,
    )
