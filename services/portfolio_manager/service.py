import asyncio
from typing import Dict, List, Optional, Tuple

from core.config.settings import Settings
from core.logging import get_trading_logger_safe, get_error_logger_safe
from core.trading.interfaces import BrokerGateway, PortfolioRepository
from core.trading.portfolio_models import (
    Exchange,
    Holding,
    Portfolio,
    PriceUpdate,
    SyncStatus,
    TopMovers,
    normalize_exchange,
)
from core.utils.exceptions import NotFoundError, PortfolioSyncError, ValidationError
from .analytics import build_analytics
from .models import ManualHoldingRequest, PortfolioAnalytics, PriceRefreshResult
from .reconciliation.broker_reconciler import PortfolioReconciler


def parse_ltp(data) -> Optional[float]:
    """Extract the last traded price from a ``getLtpData`` payload."""
    if not isinstance(data, dict) or data.get("ltp") in (None, ""):
        return None
    return float(data["ltp"])


def parse_available_funds(data) -> Optional[float]:
    if not isinstance(data, dict):
        return None
    for key in ("availablecash", "net"):
        value = data.get(key)
        if value not in (None, ""):
            return float(value)
    return None


class PortfolioService:
    """Orchestrates broker calls, the reconciler and the portfolio store.

    Syncs and price refreshes for one user are serialized through a
    per-user lock so a slow refresh can never overwrite a newer sync.
    """

    def __init__(self, settings: Settings, repository: PortfolioRepository,
                 gateway: BrokerGateway, reconciler: Optional[PortfolioReconciler] = None):
        self.settings = settings
        self.repository = repository
        self.gateway = gateway
        self.reconciler = reconciler or PortfolioReconciler()
        self.logger = get_trading_logger_safe("portfolio_service")
        self.error_logger = get_error_logger_safe("portfolio_service_errors")

        # Concurrency control
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._user_locks_lock = asyncio.Lock()

    async def _get_user_lock(self, user_id: str) -> asyncio.Lock:
        async with self._user_locks_lock:
            if user_id not in self._user_locks:
                self._user_locks[user_id] = asyncio.Lock()
            return self._user_locks[user_id]

    async def get_portfolio(self, user_id: str) -> Portfolio:
        """Return the user's portfolio, creating an empty one on first access."""
        portfolio = await self.repository.find(user_id)
        if portfolio is None:
            portfolio = Portfolio(user_id=user_id)
            await self.repository.save(portfolio)
            self.logger.info("Created empty portfolio", user_id=user_id)
        return portfolio

    async def sync(self, user_id: str, access_token: str) -> Portfolio:
        """Replace cached holdings with the broker's current holdings."""
        lock = await self._get_user_lock(user_id)
        async with lock:
            portfolio = await self.get_portfolio(user_id)
            portfolio.sync_status = SyncStatus.SYNCING
            portfolio.update_last_modified()
            await self.repository.save(portfolio)

            try:
                response = await self.gateway.get_holdings(access_token)
                reconciled = self.reconciler.reconcile_full_sync(portfolio, response)
                if response.success:
                    await self._apply_funds(reconciled, access_token)
                await self.repository.save(reconciled)
            except Exception as e:
                self.error_logger.error("Portfolio sync failed", user_id=user_id, error=str(e))
                portfolio.sync_status = SyncStatus.FAILED
                portfolio.update_last_modified()
                await self.repository.save(portfolio)
                raise

        if not response.success:
            raise PortfolioSyncError(
                response.message or "Failed to fetch holdings from SmartAPI",
                portfolio_id=user_id,
            )

        self.logger.info("Portfolio synced",
                         user_id=user_id,
                         holdings=len(reconciled.holdings),
                         total_pnl=reconciled.total_pnl)
        return reconciled

    async def _apply_funds(self, portfolio: Portfolio, access_token: str) -> None:
        funds = await self.gateway.get_funds(access_token)
        available = parse_available_funds(funds.data) if funds.success else None
        if available is None:
            self.logger.warning("Could not read available funds, keeping previous value",
                                user_id=portfolio.user_id, message=funds.message)
            return
        portfolio.available_funds = available

    async def refresh_prices(self, user_id: str, access_token: str) -> Tuple[Portfolio, PriceRefreshResult]:
        """Fetch LTPs in throttled batches and revalue the holdings.

        Instruments whose LTP cannot be fetched keep their previous price.
        """
        lock = await self._get_user_lock(user_id)
        async with lock:
            portfolio = await self.repository.find(user_id)
            if portfolio is None or not portfolio.holdings:
                raise NotFoundError("No holdings found in portfolio", resource="portfolio", identifier=user_id)

            holdings = list(portfolio.holdings)
            batch_size = self.settings.portfolio.price_batch_size
            delay = self.settings.portfolio.price_batch_delay_seconds
            result = PriceRefreshResult(requested=len(holdings))
            updates: List[PriceUpdate] = []

            for start in range(0, len(holdings), batch_size):
                if start > 0 and delay > 0:
                    # SmartAPI rate limit between batches
                    await asyncio.sleep(delay)
                batch = holdings[start:start + batch_size]
                prices = await asyncio.gather(
                    *(self._fetch_price(access_token, h, result) for h in batch)
                )
                for holding, price in zip(batch, prices):
                    if price is not None:
                        updates.append(PriceUpdate(symbol=holding.symbol, exchange=holding.exchange, price=price))

            refreshed = self.reconciler.reconcile_price_refresh(portfolio, updates)
            await self.repository.save(refreshed)

        result.updated = len(updates)
        result.failed = result.requested - result.updated
        self.logger.info("Portfolio prices refreshed",
                         user_id=user_id,
                         requested=result.requested,
                         updated=result.updated,
                         failed=result.failed)
        return refreshed, result

    async def _fetch_price(self, access_token: str, holding: Holding,
                           result: PriceRefreshResult) -> Optional[float]:
        try:
            response = await self.gateway.get_ltp(
                access_token, holding.exchange.value, holding.symbol, holding.instrument_token
            )
            price = parse_ltp(response.data) if response.success else None
        except Exception as e:
            response = None
            price = None
            self.logger.warning("LTP fetch raised", symbol=holding.symbol,
                                exchange=holding.exchange.value, error=str(e))
        if price is None:
            result.failures.append({
                "symbol": holding.symbol,
                "exchange": holding.exchange.value,
                "message": response.message if response is not None else "request failed",
            })
        return price

    async def add_holding(self, user_id: str, access_token: str, request: ManualHoldingRequest) -> Holding:
        """Add or replace a manually entered holding, priced at the live LTP when available."""
        if not request.symbol or not request.exchange or not request.instrument_token \
                or request.quantity is None or request.average_price is None:
            raise ValidationError("Please provide all required fields")
        if request.quantity <= 0 or request.average_price <= 0:
            raise ValidationError("Quantity and average price must be positive")
        if request.quantity != int(request.quantity):
            raise ValidationError("Quantity must be a whole number", field="quantity", value=request.quantity)
        exchange = normalize_exchange(request.exchange)
        if exchange not in Exchange.__members__:
            raise ValidationError(f"Invalid exchange: {request.exchange}", field="exchange", value=request.exchange)

        symbol = request.symbol.strip().upper()
        current_price = request.average_price
        try:
            response = await self.gateway.get_ltp(access_token, exchange, symbol, request.instrument_token)
            ltp = parse_ltp(response.data) if response.success else None
            if ltp is not None:
                current_price = ltp
        except Exception as e:
            self.logger.warning("LTP fetch for manual holding failed", symbol=symbol, error=str(e))

        holding = Holding(
            symbol=symbol,
            exchange=exchange,
            instrument_token=request.instrument_token,
            quantity=int(request.quantity),
            average_price=request.average_price,
            current_price=current_price,
        )
        lock = await self._get_user_lock(user_id)
        async with lock:
            portfolio = await self.get_portfolio(user_id)
            portfolio.upsert_holding(holding)
            await self.repository.save(portfolio)

        self.logger.info("Manual holding saved", user_id=user_id, symbol=symbol, exchange=exchange)
        return holding

    async def remove_holding(self, user_id: str, symbol: str, exchange: str) -> Portfolio:
        lock = await self._get_user_lock(user_id)
        async with lock:
            portfolio = await self.repository.find(user_id)
            if portfolio is None or not portfolio.remove_holding(symbol, exchange):
                raise NotFoundError("Holding not found in portfolio", resource="holding",
                                    identifier=f"{symbol}:{exchange}")
            await self.repository.save(portfolio)
        return portfolio

    async def get_holding(self, user_id: str, access_token: str, symbol: str, exchange: str) -> Holding:
        """Return one holding after refreshing its price from the broker."""
        portfolio = await self.repository.find(user_id)
        holding = portfolio.find_holding(symbol, exchange) if portfolio else None
        if holding is None:
            raise NotFoundError("Holding not found", resource="holding", identifier=f"{symbol}:{exchange}")

        try:
            response = await self.gateway.get_ltp(
                access_token, holding.exchange.value, holding.symbol, holding.instrument_token
            )
            ltp = parse_ltp(response.data) if response.success else None
        except Exception as e:
            ltp = None
            self.logger.warning("LTP refresh for holding failed", symbol=holding.symbol, error=str(e))

        if ltp is None:
            return holding

        lock = await self._get_user_lock(user_id)
        async with lock:
            portfolio = await self.repository.find(user_id) or portfolio
            refreshed = self.reconciler.reconcile_price_refresh(
                portfolio, [PriceUpdate(symbol=holding.symbol, exchange=holding.exchange, price=ltp)]
            )
            await self.repository.save(refreshed)
        return refreshed.find_holding(holding.symbol, holding.exchange) or holding

    async def top_movers(self, user_id: str, limit: Optional[int] = None) -> TopMovers:
        portfolio = await self.get_portfolio(user_id)
        if limit is None:
            limit = self.settings.portfolio.top_movers_limit
        return self.reconciler.top_movers(portfolio, limit)

    async def analytics(self, user_id: str) -> PortfolioAnalytics:
        portfolio = await self.repository.find(user_id)
        if portfolio is None:
            raise NotFoundError("Portfolio not found", resource="portfolio", identifier=user_id)
        return build_analytics(portfolio, self.settings.portfolio.top_movers_limit)
