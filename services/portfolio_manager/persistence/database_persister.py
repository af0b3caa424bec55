from typing import Callable, Optional

from sqlalchemy import select

from core.database.models import PortfolioDocument
from core.logging import get_trading_logger_safe
from core.trading.interfaces import PortfolioRepository
from core.trading.portfolio_cache import PortfolioCache
from core.trading.portfolio_models import Holding, Portfolio, SyncStatus


class SqlPortfolioRepository(PortfolioRepository):
    """Stores one portfolio document per user, fronted by an optional Redis cache.

    Cache failures never fail a request: reads fall through to the database
    and writes to the database stand on their own.
    """

    def __init__(self, session_factory: Callable, cache: Optional[PortfolioCache] = None):
        self.session_factory = session_factory
        self.cache = cache
        self.logger = get_trading_logger_safe("portfolio_repository")

    async def find(self, user_id: str) -> Optional[Portfolio]:
        cached = await self._cache_get(user_id)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            result = await session.execute(
                select(PortfolioDocument).where(PortfolioDocument.user_id == user_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None

        portfolio = self._to_model(row)
        await self._cache_set(portfolio)
        return portfolio

    async def save(self, portfolio: Portfolio) -> Portfolio:
        holdings = [h.model_dump(mode="json", exclude={"invested_value", "current_value", "pnl", "pnl_percentage"})
                    for h in portfolio.holdings]
        async with self.session_factory() as session:
            result = await session.execute(
                select(PortfolioDocument).where(PortfolioDocument.user_id == portfolio.user_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PortfolioDocument(user_id=portfolio.user_id, created_at=portfolio.created_at)
                session.add(row)
            row.holdings = holdings
            row.total_invested_value = portfolio.total_invested_value
            row.total_current_value = portfolio.total_current_value
            row.total_pnl = portfolio.total_pnl
            row.total_pnl_percentage = portfolio.total_pnl_percentage
            row.available_funds = portfolio.available_funds
            row.last_sync_at = portfolio.last_sync_at
            row.sync_status = portfolio.sync_status.value
            row.updated_at = portfolio.updated_at
            await session.commit()

        self.logger.debug("Persisted portfolio",
                          user_id=portfolio.user_id,
                          holdings=len(portfolio.holdings),
                          sync_status=portfolio.sync_status.value)
        await self._cache_set(portfolio)
        return portfolio

    @staticmethod
    def _to_model(row: PortfolioDocument) -> Portfolio:
        return Portfolio(
            user_id=row.user_id,
            holdings=[Holding.model_validate(h) for h in (row.holdings or [])],
            total_invested_value=row.total_invested_value,
            total_current_value=row.total_current_value,
            total_pnl=row.total_pnl,
            total_pnl_percentage=row.total_pnl_percentage,
            available_funds=row.available_funds,
            last_sync_at=row.last_sync_at,
            sync_status=SyncStatus(row.sync_status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def _cache_get(self, user_id: str) -> Optional[Portfolio]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_portfolio(user_id)
        except Exception as e:
            self.logger.warning("Portfolio cache read failed", user_id=user_id, error=str(e))
            return None

    async def _cache_set(self, portfolio: Portfolio) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.save_portfolio(portfolio)
        except Exception as e:
            self.logger.warning("Portfolio cache write failed", user_id=portfolio.user_id, error=str(e))
