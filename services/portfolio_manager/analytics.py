from typing import Dict, List

from core.trading.portfolio_models import Exchange, Portfolio
from .models import ExchangeAllocation, PerformanceMetrics, PortfolioAnalytics
from .reconciliation.broker_reconciler import PortfolioReconciler


def exchange_breakdown(portfolio: Portfolio) -> List[ExchangeAllocation]:
    """Group holdings by exchange, ordered by current value (largest first)."""
    groups: Dict[Exchange, ExchangeAllocation] = {}
    for holding in portfolio.holdings:
        group = groups.setdefault(holding.exchange, ExchangeAllocation(exchange=holding.exchange))
        group.count += 1
        group.invested_value += holding.invested_value
        group.current_value += holding.current_value

    total = portfolio.total_current_value
    for group in groups.values():
        group.allocation_percentage = group.current_value / total * 100 if total > 0 else 0.0

    return sorted(groups.values(), key=lambda g: g.current_value, reverse=True)


def performance_metrics(portfolio: Portfolio) -> PerformanceMetrics:
    holdings = portfolio.holdings
    if not holdings:
        return PerformanceMetrics()
    return PerformanceMetrics(
        total_return=portfolio.total_pnl,
        total_return_percentage=portfolio.total_pnl_percentage,
        best_performer=max(holdings, key=lambda h: h.pnl_percentage),
        worst_performer=min(holdings, key=lambda h: h.pnl_percentage),
        # Ten points per holding, capped at 100
        diversification_score=float(min(len(holdings) * 10, 100)),
    )


def build_analytics(portfolio: Portfolio, movers_limit: int) -> PortfolioAnalytics:
    return PortfolioAnalytics(
        summary=portfolio.summary(),
        top_movers=PortfolioReconciler.top_movers(portfolio, movers_limit),
        exchange_breakdown=exchange_breakdown(portfolio),
        performance=performance_metrics(portfolio),
    )
