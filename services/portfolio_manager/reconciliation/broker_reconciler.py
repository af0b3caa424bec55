from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core.logging import get_trading_logger_safe
from core.trading.models import GatewayResponse
from core.trading.portfolio_models import (
    Exchange,
    Holding,
    Portfolio,
    PriceUpdate,
    SyncStatus,
    TopMovers,
    utc_now,
)
from ..models import BrokerHolding


def _holding_records(data) -> list:
    # getHolding returns a list; getAllHolding wraps it as {"holdings": [...]}
    if data is None:
        return []
    if isinstance(data, dict):
        return list(data.get("holdings") or [])
    return list(data)


class PortfolioReconciler:
    """Rebuilds and revalues portfolios from broker data.

    All operations are synchronous and never mutate their input; each
    returns a new ``Portfolio`` whose aggregates have been recomputed from
    its holdings.
    """

    def __init__(self):
        self.logger = get_trading_logger_safe("portfolio_reconciler")

    def reconcile_full_sync(self, portfolio: Portfolio, holdings_response: GatewayResponse,
                            now: Optional[datetime] = None) -> Portfolio:
        """Replace the holdings wholesale with the broker's snapshot.

        A failed response yields a copy with ``sync_status=failed`` and the
        previous holdings intact. Records that do not parse are skipped,
        records with a non-positive quantity are dropped.
        """
        now = now or utc_now()
        reconciled = portfolio.model_copy(deep=True)

        if not holdings_response.success:
            self.logger.warning("Holdings fetch failed, keeping cached holdings",
                                user_id=portfolio.user_id,
                                message=holdings_response.message)
            reconciled.sync_status = SyncStatus.FAILED
            reconciled.update_last_modified()
            return reconciled

        holdings: Dict[Tuple[str, Exchange], Holding] = {}
        skipped = 0
        for raw in _holding_records(holdings_response.data):
            try:
                record = BrokerHolding.model_validate(raw)
                if record.quantity <= 0:
                    continue
                holding = record.to_holding(now)
            except ValidationError as e:
                skipped += 1
                self.logger.warning("Skipping unparseable broker holding",
                                    user_id=portfolio.user_id,
                                    record=raw if isinstance(raw, dict) else repr(raw),
                                    error=str(e))
                continue
            # Last record wins for a duplicated (symbol, exchange)
            holdings[holding.key] = holding

        reconciled.holdings = list(holdings.values())
        reconciled.update_totals()
        reconciled.last_sync_at = now
        reconciled.sync_status = SyncStatus.COMPLETED
        reconciled.update_last_modified()

        self.logger.info("Portfolio reconciled with broker holdings",
                         user_id=portfolio.user_id,
                         holdings=len(reconciled.holdings),
                         skipped=skipped,
                         total_current_value=reconciled.total_current_value)
        return reconciled

    def reconcile_price_refresh(self, portfolio: Portfolio, price_updates: Iterable[PriceUpdate],
                                now: Optional[datetime] = None) -> Portfolio:
        """Overwrite current prices of matching holdings; leave the rest alone."""
        now = now or utc_now()
        prices = {(u.symbol.strip().upper(), u.exchange): u.price for u in price_updates}

        reconciled = portfolio.model_copy(deep=True)
        refreshed: List[Holding] = []
        for holding in reconciled.holdings:
            price = prices.get(holding.key)
            if price is None:
                refreshed.append(holding)
            else:
                refreshed.append(holding.model_copy(update={"current_price": price, "last_updated": now}))

        reconciled.holdings = refreshed
        reconciled.update_totals()
        reconciled.update_last_modified()
        return reconciled

    @staticmethod
    def top_movers(portfolio: Portfolio, limit: int) -> TopMovers:
        """Best and worst holdings by P&L percentage.

        Gainers are the first ``limit`` positive entries in descending
        order; losers are the last ``limit`` negative entries, worst first.
        Zero-percentage holdings appear in neither list.
        """
        if limit <= 0:
            return TopMovers()

        ranked = sorted(portfolio.holdings, key=lambda h: h.pnl_percentage, reverse=True)
        gainers = [h for h in ranked if h.pnl_percentage > 0][:limit]
        losers = [h for h in ranked if h.pnl_percentage < 0][-limit:]
        losers.reverse()
        return TopMovers(top_gainers=gainers, top_losers=losers)
