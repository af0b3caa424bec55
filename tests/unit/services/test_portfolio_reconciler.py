from datetime import datetime, timezone

import pytest

from core.trading.models import GatewayResponse
from core.trading.portfolio_models import Exchange, Portfolio, PriceUpdate, SyncStatus
from services.portfolio_manager.models import BrokerHolding
from services.portfolio_manager.reconciliation.broker_reconciler import PortfolioReconciler

NOW = datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def reconciler():
    return PortfolioReconciler()


def broker_record(symbol="SBIN-EQ", exchange="NSE", quantity="10", averageprice="100", ltp="110", **extra):
    record = {
        "tradingsymbol": symbol,
        "exchange": exchange,
        "symboltoken": "3045",
        "quantity": quantity,
        "averageprice": averageprice,
        "ltp": ltp,
    }
    record.update(extra)
    return record


class TestBrokerHolding:
    def test_string_numbers_are_coerced(self):
        holding = BrokerHolding.model_validate(broker_record(quantity="15.0", averageprice="250.5"))
        assert holding.quantity == 15
        assert holding.average_price == 250.5

    def test_average_price_falls_back_to_price(self):
        record = broker_record(averageprice="", ltp="", price="95")
        holding = BrokerHolding.model_validate(record).to_holding(NOW)
        assert holding.average_price == 95.0
        assert holding.current_price == 95.0

    def test_current_price_falls_back_to_average(self):
        holding = BrokerHolding.model_validate(broker_record(ltp="0")).to_holding(NOW)
        assert holding.current_price == 100.0

    def test_record_without_any_price_is_rejected(self):
        with pytest.raises(ValueError):
            BrokerHolding.model_validate(broker_record(averageprice=None, ltp=None))


class TestFullSync:
    def test_replaces_holdings_and_recomputes_totals(self, reconciler, make_holding):
        portfolio = Portfolio(user_id="u1", holdings=[make_holding(symbol="OLD-EQ")])
        response = GatewayResponse.ok([
            broker_record("SBIN-EQ", quantity="10", averageprice="100", ltp="110"),
            broker_record("INFY-EQ", quantity="5", averageprice="1500", ltp="1400"),
        ])

        result = reconciler.reconcile_full_sync(portfolio, response, now=NOW)

        assert {h.symbol for h in result.holdings} == {"SBIN-EQ", "INFY-EQ"}
        assert result.total_invested_value == pytest.approx(1000 + 7500)
        assert result.total_current_value == pytest.approx(1100 + 7000)
        assert result.total_pnl == pytest.approx(-400)
        assert result.total_pnl_percentage == pytest.approx(-400 / 8500 * 100)
        assert result.sync_status == SyncStatus.COMPLETED
        assert result.last_sync_at == NOW
        # input is untouched
        assert portfolio.holdings[0].symbol == "OLD-EQ"

    def test_zero_quantity_dropped_and_bad_records_skipped(self, reconciler):
        portfolio = Portfolio(user_id="u1")
        response = GatewayResponse.ok([
            broker_record("SBIN-EQ", quantity="0"),
            {"tradingsymbol": "BROKEN"},
            broker_record("INFY-EQ"),
        ])

        result = reconciler.reconcile_full_sync(portfolio, response, now=NOW)

        assert [h.symbol for h in result.holdings] == ["INFY-EQ"]

    def test_duplicate_symbol_exchange_last_wins(self, reconciler):
        response = GatewayResponse.ok([
            broker_record("SBIN-EQ", quantity="10"),
            broker_record("SBIN-EQ", quantity="25"),
        ])
        result = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)
        assert len(result.holdings) == 1
        assert result.holdings[0].quantity == 25

    def test_same_snapshot_twice_gives_identical_totals(self, reconciler):
        response = GatewayResponse.ok([
            broker_record("SBIN-EQ", quantity="10", averageprice="100", ltp="110"),
            broker_record("INFY-EQ", quantity="5", averageprice="1500", ltp="1400"),
        ])

        once = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)
        twice = reconciler.reconcile_full_sync(once, response, now=NOW)

        assert twice.holdings == once.holdings
        assert (twice.total_invested_value, twice.total_current_value, twice.total_pnl,
                twice.total_pnl_percentage) == (once.total_invested_value, once.total_current_value,
                                                once.total_pnl, once.total_pnl_percentage)

    def test_zero_invested_value_has_zero_percentage(self, reconciler):
        response = GatewayResponse.ok([broker_record("BONUS-EQ", quantity="10", averageprice="0", ltp="50")])

        result = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)

        assert result.total_invested_value == 0
        assert result.total_current_value == pytest.approx(500.0)
        assert result.total_pnl_percentage == 0
        assert result.holdings[0].pnl_percentage == 0

    def test_negative_ltp_is_kept(self, reconciler):
        response = GatewayResponse.ok([
            broker_record("CRUDEOIL", exchange="MCX", quantity="1", averageprice="20", ltp="-37"),
            broker_record("SBIN-EQ", ltp="110"),
        ])

        result = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)

        prices = {h.symbol: h.current_price for h in result.holdings}
        assert prices == {"CRUDEOIL": -37.0, "SBIN-EQ": 110.0}
        assert result.total_current_value == pytest.approx(-37.0 + 1100.0)
        assert result.sync_status == SyncStatus.COMPLETED

    def test_record_failing_holding_rules_is_skipped(self, reconciler):
        # negative fallback price leaves no valid average price
        response = GatewayResponse.ok([
            broker_record("BAD-EQ", averageprice="", ltp="", price="-5"),
            broker_record("SBIN-EQ"),
        ])

        result = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)

        assert [h.symbol for h in result.holdings] == ["SBIN-EQ"]
        assert result.sync_status == SyncStatus.COMPLETED

    def test_wrapped_holdings_payload(self, reconciler):
        response = GatewayResponse.ok({"holdings": [broker_record()], "totalholding": {}})
        result = reconciler.reconcile_full_sync(Portfolio(user_id="u1"), response, now=NOW)
        assert len(result.holdings) == 1

    def test_failed_response_keeps_holdings(self, reconciler, make_holding):
        portfolio = Portfolio(user_id="u1", holdings=[make_holding()])
        portfolio.update_totals()

        result = reconciler.reconcile_full_sync(portfolio, GatewayResponse.fail("Invalid Token"), now=NOW)

        assert result.sync_status == SyncStatus.FAILED
        assert len(result.holdings) == 1
        assert result.total_current_value == portfolio.total_current_value
        assert result.last_sync_at is None


class TestPriceRefresh:
    def test_only_matching_holdings_are_repriced(self, reconciler, make_holding):
        portfolio = Portfolio(user_id="u1", holdings=[
            make_holding("SBIN-EQ", current_price=110.0),
            make_holding("INFY-EQ", current_price=90.0),
        ])
        portfolio.update_totals()

        result = reconciler.reconcile_price_refresh(
            portfolio, [PriceUpdate(symbol="sbin-eq", exchange="nse", price=120.0)], now=NOW
        )

        prices = {h.symbol: h.current_price for h in result.holdings}
        assert prices == {"SBIN-EQ": 120.0, "INFY-EQ": 90.0}
        assert result.total_current_value == pytest.approx(1200 + 900)
        assert result.find_holding("SBIN-EQ", Exchange.NSE).last_updated == NOW


class TestTopMovers:
    def test_gainers_and_losers_exclude_flat(self, reconciler, make_holding):
        portfolio = Portfolio(user_id="u1", holdings=[
            make_holding("A", current_price=150.0),   # +50%
            make_holding("B", current_price=110.0),   # +10%
            make_holding("C", current_price=100.0),   # flat
            make_holding("D", current_price=95.0),    # -5%
            make_holding("E", current_price=60.0),    # -40%
        ])

        movers = reconciler.top_movers(portfolio, limit=2)

        assert [h.symbol for h in movers.top_gainers] == ["A", "B"]
        assert [h.symbol for h in movers.top_losers] == ["E", "D"]

    def test_non_positive_limit_is_empty(self, reconciler, make_holding):
        movers = reconciler.top_movers(Portfolio(user_id="u1", holdings=[make_holding()]), limit=0)
        assert movers.top_gainers == [] and movers.top_losers == []

    def test_limit_larger_than_movers(self, reconciler, make_holding):
        # P&L% of 10, -5, 0, 30, -20
        portfolio = Portfolio(user_id="u1", holdings=[
            make_holding("A", current_price=110.0),
            make_holding("B", current_price=95.0),
            make_holding("C", current_price=100.0),
            make_holding("D", current_price=130.0),
            make_holding("E", current_price=80.0),
        ])

        movers = reconciler.top_movers(portfolio, limit=3)

        assert [round(h.pnl_percentage) for h in movers.top_gainers] == [30, 10]
        assert [round(h.pnl_percentage) for h in movers.top_losers] == [-20, -5]
        assert [h.symbol for h in movers.top_gainers] == ["D", "A"]
        assert [h.symbol for h in movers.top_losers] == ["E", "B"]

    def test_ties_keep_holding_order(self, reconciler, make_holding):
        portfolio = Portfolio(user_id="u1", holdings=[
            make_holding("X", current_price=110.0),
            make_holding("P", current_price=95.0),
            make_holding("Y", current_price=110.0),
            make_holding("Q", current_price=95.0),
        ])

        movers = reconciler.top_movers(portfolio, limit=5)

        assert [h.symbol for h in movers.top_gainers] == ["X", "Y"]
        # losers are the ranked tail read backwards
        assert [h.symbol for h in movers.top_losers] == ["Q", "P"]
