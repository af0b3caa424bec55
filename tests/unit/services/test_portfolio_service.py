import asyncio

import pytest

from core.trading.models import GatewayResponse
from core.trading.portfolio_models import Portfolio, SyncStatus
from core.utils.exceptions import NotFoundError, PortfolioSyncError, ValidationError
from services.portfolio_manager.models import ManualHoldingRequest
from services.portfolio_manager.service import PortfolioService, parse_available_funds, parse_ltp


@pytest.fixture
def service(test_settings, portfolio_repository, gateway):
    return PortfolioService(test_settings, portfolio_repository, gateway)


def holdings_payload(*symbols):
    return [
        {"tradingsymbol": s, "exchange": "NSE", "symboltoken": str(1000 + i),
         "quantity": "10", "averageprice": "100", "ltp": "105"}
        for i, s in enumerate(symbols)
    ]


def test_parse_helpers():
    assert parse_ltp({"ltp": "512.35"}) == 512.35
    assert parse_ltp({"ltp": ""}) is None
    assert parse_ltp(None) is None
    assert parse_available_funds({"availablecash": "25000.50", "net": "1"}) == 25000.5
    assert parse_available_funds({"net": "300"}) == 300.0
    assert parse_available_funds({}) is None


@pytest.mark.asyncio
async def test_get_portfolio_creates_empty_document(service, portfolio_repository):
    portfolio = await service.get_portfolio("u1")

    assert portfolio.holdings == []
    assert "u1" in portfolio_repository.portfolios


@pytest.mark.asyncio
async def test_sync_stores_holdings_and_funds(service, gateway, portfolio_repository):
    gateway.responses["get_holdings"] = GatewayResponse.ok(holdings_payload("SBIN-EQ", "INFY-EQ"))
    gateway.responses["get_funds"] = GatewayResponse.ok({"availablecash": "5000"})

    portfolio = await service.sync("u1", "smart-jwt")

    assert len(portfolio.holdings) == 2
    assert portfolio.available_funds == 5000.0
    assert portfolio.sync_status == SyncStatus.COMPLETED
    stored = portfolio_repository.portfolios["u1"]
    assert stored.total_current_value == pytest.approx(2100.0)


@pytest.mark.asyncio
async def test_sync_keeps_funds_when_rms_fails(service, gateway, portfolio_repository):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", available_funds=750.0)
    gateway.responses["get_funds"] = GatewayResponse.fail("RMS unavailable")

    portfolio = await service.sync("u1", "smart-jwt")

    assert portfolio.available_funds == 750.0


@pytest.mark.asyncio
async def test_failed_sync_marks_portfolio_failed(service, gateway, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[make_holding()])
    gateway.responses["get_holdings"] = GatewayResponse.fail("Invalid Token", error_code="AG8001")

    with pytest.raises(PortfolioSyncError, match="Invalid Token"):
        await service.sync("u1", "smart-jwt")

    stored = portfolio_repository.portfolios["u1"]
    assert stored.sync_status == SyncStatus.FAILED
    assert len(stored.holdings) == 1
    assert gateway.called("get_funds") == []


@pytest.mark.asyncio
async def test_concurrent_syncs_are_serialized(service, gateway):
    in_flight = {"now": 0, "max": 0}
    original = gateway.get_holdings

    async def slow_holdings(token):
        in_flight["now"] += 1
        in_flight["max"] = max(in_flight["max"], in_flight["now"])
        await asyncio.sleep(0.01)
        in_flight["now"] -= 1
        return await original(token)

    gateway.get_holdings = slow_holdings
    await asyncio.gather(service.sync("u1", "t"), service.sync("u1", "t"))

    assert in_flight["max"] == 1


@pytest.mark.asyncio
async def test_refresh_prices_batches_and_reports_failures(service, gateway, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[
        make_holding("A", current_price=100.0),
        make_holding("B", current_price=100.0),
        make_holding("C", current_price=100.0),
    ])
    gateway.ltp = {"A": 120.0, "C": 80.0}

    portfolio, result = await service.refresh_prices("u1", "smart-jwt")

    assert result.requested == 3
    assert result.updated == 2
    assert result.failed == 1
    assert result.failures[0]["symbol"] == "B"
    prices = {h.symbol: h.current_price for h in portfolio.holdings}
    assert prices == {"A": 120.0, "B": 100.0, "C": 80.0}
    assert len(gateway.called("get_ltp")) == 3


@pytest.mark.asyncio
async def test_refresh_prices_accepts_negative_ltp(service, gateway, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[
        make_holding("CRUDEOIL", exchange="MCX", quantity=1, average_price=20.0, current_price=20.0),
        make_holding("SBIN-EQ", current_price=100.0),
    ])
    gateway.ltp = {"CRUDEOIL": -37.0, "SBIN-EQ": 120.0}

    portfolio, result = await service.refresh_prices("u1", "smart-jwt")

    assert result.updated == 2
    prices = {h.symbol: h.current_price for h in portfolio.holdings}
    assert prices == {"CRUDEOIL": -37.0, "SBIN-EQ": 120.0}
    assert portfolio.total_current_value == pytest.approx(-37.0 + 1200.0)


@pytest.mark.asyncio
async def test_refresh_prices_requires_holdings(service):
    with pytest.raises(NotFoundError, match="No holdings found in portfolio"):
        await service.refresh_prices("u1", "smart-jwt")


@pytest.mark.asyncio
async def test_add_holding_uses_live_price(service, gateway, portfolio_repository):
    gateway.ltp = {"TCS-EQ": 4000.0}
    request = ManualHoldingRequest(symbol="tcs-eq", exchange="nse", instrumentToken=11536,
                                   quantity=2, averagePrice=3500)

    holding = await service.add_holding("u1", "smart-jwt", request)

    assert holding.symbol == "TCS-EQ"
    assert holding.instrument_token == "11536"
    assert holding.current_price == 4000.0
    assert portfolio_repository.portfolios["u1"].total_invested_value == pytest.approx(7000.0)


@pytest.mark.asyncio
async def test_add_holding_falls_back_to_average_price(service):
    request = ManualHoldingRequest(symbol="XYZ", exchange="BSE", instrument_token="1", quantity=1, average_price=10)
    holding = await service.add_holding("u1", "smart-jwt", request)
    assert holding.current_price == 10.0


@pytest.mark.asyncio
@pytest.mark.parametrize("request_kwargs, message", [
    ({"exchange": "NSE", "instrument_token": "1", "quantity": 1, "average_price": 1}, "Please provide all required fields"),
    ({"symbol": "X", "exchange": "NSE", "instrument_token": "1", "quantity": 0, "average_price": 1},
     "Quantity and average price must be positive"),
    ({"symbol": "X", "exchange": "LSE", "instrument_token": "1", "quantity": 1, "average_price": 1},
     "Invalid exchange"),
])
async def test_add_holding_validation(service, request_kwargs, message):
    with pytest.raises(ValidationError, match=message):
        await service.add_holding("u1", "smart-jwt", ManualHoldingRequest(**request_kwargs))


@pytest.mark.asyncio
async def test_remove_holding(service, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[make_holding("SBIN-EQ")])

    portfolio = await service.remove_holding("u1", "sbin-eq", "nse")

    assert portfolio.holdings == []
    with pytest.raises(NotFoundError, match="Holding not found in portfolio"):
        await service.remove_holding("u1", "SBIN-EQ", "NSE")


@pytest.mark.asyncio
async def test_get_holding_refreshes_price(service, gateway, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[make_holding("SBIN-EQ")])
    gateway.ltp = {"SBIN-EQ": 130.0}

    holding = await service.get_holding("u1", "smart-jwt", "SBIN-EQ", "NSE")

    assert holding.current_price == 130.0
    assert portfolio_repository.portfolios["u1"].holdings[0].current_price == 130.0


@pytest.mark.asyncio
async def test_get_holding_keeps_price_when_ltp_unavailable(service, portfolio_repository, make_holding):
    portfolio_repository.portfolios["u1"] = Portfolio(user_id="u1", holdings=[make_holding("SBIN-EQ")])
    holding = await service.get_holding("u1", "smart-jwt", "SBIN-EQ", "NSE")
    assert holding.current_price == 110.0


@pytest.mark.asyncio
async def test_analytics(service, portfolio_repository, make_holding):
    portfolio = Portfolio(user_id="u1", holdings=[
        make_holding("A", exchange="NSE", current_price=150.0),
        make_holding("B", exchange="BSE", current_price=50.0),
    ])
    portfolio.update_totals()
    portfolio_repository.portfolios["u1"] = portfolio

    analytics = await service.analytics("u1")

    assert analytics.summary.total_holdings == 2
    assert analytics.performance.best_performer.symbol == "A"
    assert analytics.performance.worst_performer.symbol == "B"
    assert analytics.performance.diversification_score == 20.0
    breakdown = {a.exchange.value: a for a in analytics.exchange_breakdown}
    assert breakdown["NSE"].allocation_percentage == pytest.approx(75.0)
    assert analytics.exchange_breakdown[0].exchange.value == "NSE"


@pytest.mark.asyncio
async def test_analytics_requires_portfolio(service):
    with pytest.raises(NotFoundError):
        await service.analytics("missing")
