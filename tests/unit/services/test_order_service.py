import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from core.trading.models import GatewayResponse
from core.trading.order_models import OrderFilter, OrderSource, OrderStatus
from core.utils.exceptions import (
    BrokerAPIError,
    NotFoundError,
    OrderRejectionError,
    OrderStateError,
    OrderValidationError,
)
from services.order_manager.models import OrderModifyRequest, OrderRequest
from services.order_manager.service import OrderService, build_place_payload


@pytest.fixture
def service(test_settings, order_repository, gateway):
    return OrderService(test_settings, order_repository, gateway)


def limit_request(**overrides):
    data = {
        "symbol": "SBIN-EQ", "exchange": "NSE", "instrument_token": "3045",
        "order_type": "LIMIT", "transaction_type": "BUY", "product_type": "DELIVERY",
        "quantity": 10, "price": 512.5,
    }
    data.update(overrides)
    return OrderRequest(**data)


class TestPayload:
    def test_limit_payload(self, make_order):
        payload = build_place_payload(make_order(price=512.5))
        assert payload == {
            "variety": "normal",
            "tradingsymbol": "SBIN-EQ",
            "symboltoken": "3045",
            "transactiontype": "BUY",
            "exchange": "NSE",
            "ordertype": "LIMIT",
            "producttype": "DELIVERY",
            "duration": "DAY",
            "quantity": "10",
            "price": "512.5",
        }

    def test_stoploss_types_use_broker_names(self, make_order):
        payload = build_place_payload(make_order(order_type="SL-M", price=None, trigger_price=480.0,
                                                 stoploss=5.0))
        assert payload["ordertype"] == "STOPLOSS_MARKET"
        assert payload["triggerprice"] == "480"
        assert payload["stoploss"] == "5"
        assert "price" not in payload


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_successful_placement(self, service, gateway, order_repository):
        order, broker_data = await service.place_order("user-1", "smart-jwt", limit_request())

        assert order.status == OrderStatus.OPEN
        assert order.order_id == order.broker_order_id == "240101000000001"
        assert order.client_order_id.startswith("ORD_")
        assert broker_data == {"orderid": "240101000000001"}
        assert order_repository.orders[order.id].status == OrderStatus.OPEN
        [(token, payload)] = gateway.called("place_order")
        assert token == "smart-jwt"
        assert payload["price"] == "512.5"

    @pytest.mark.asyncio
    async def test_validation_failure_stores_nothing(self, service, gateway, order_repository):
        with pytest.raises(OrderValidationError):
            await service.place_order("user-1", "smart-jwt", limit_request(price=None))
        assert order_repository.orders == {}
        assert gateway.called("place_order") == []

    @pytest.mark.asyncio
    async def test_broker_rejection_is_recorded(self, service, gateway, order_repository):
        gateway.responses["place_order"] = GatewayResponse.fail("Insufficient funds", error_code="AB4008")

        with pytest.raises(OrderRejectionError) as exc_info:
            await service.place_order("user-1", "smart-jwt", limit_request())

        assert exc_info.value.rejection_reason == "Insufficient funds"
        [stored] = order_repository.orders.values()
        assert stored.status == OrderStatus.REJECTED
        assert stored.rejection_reason == "Insufficient funds"
        assert exc_info.value.order_data["client_order_id"] == stored.client_order_id

    @pytest.mark.asyncio
    async def test_success_without_order_id_is_rejected(self, service, gateway, order_repository):
        gateway.responses["place_order"] = GatewayResponse.ok({"script": "SBIN-EQ"})

        with pytest.raises(OrderRejectionError):
            await service.place_order("user-1", "smart-jwt", limit_request())
        [stored] = order_repository.orders.values()
        assert stored.status == OrderStatus.REJECTED

    @pytest.mark.asyncio
    async def test_gateway_exception_rejects_and_propagates(self, service, gateway, order_repository):
        gateway.raise_on["place_order"] = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            await service.place_order("user-1", "smart-jwt", limit_request())
        [stored] = order_repository.orders.values()
        assert stored.status == OrderStatus.REJECTED
        assert stored.rejection_reason == "connection reset"

    @pytest.mark.asyncio
    async def test_accepted_order_id_is_logged_when_save_fails(self, service, order_repository):
        service.error_logger = MagicMock()
        order_repository.fail_on_save = True

        with pytest.raises(RuntimeError, match="database unavailable"):
            await service.place_order("user-1", "smart-jwt", limit_request())

        [stored] = order_repository.orders.values()
        assert stored.status == OrderStatus.PENDING
        service.error_logger.error.assert_called_once()
        message = service.error_logger.error.call_args.args[0]
        context = service.error_logger.error.call_args.kwargs
        assert message == "Order accepted by broker but not recorded"
        assert context["order_id"] == "240101000000001"
        assert context["client_order_id"] == stored.client_order_id


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_order_by_any_identifier(self, service, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1"))

        for identifier in (order.id, "B1", order.client_order_id):
            assert (await service.get_order("user-1", identifier)).id == order.id
        with pytest.raises(NotFoundError, match="Order not found"):
            await service.get_order("other-user", order.id)

    @pytest.mark.asyncio
    async def test_list_orders_paginates_newest_first(self, service, order_repository, make_order):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            await order_repository.create(make_order(order_time=base + timedelta(minutes=i)))

        page = await service.list_orders("user-1", OrderFilter(), page=2, limit=2)

        assert page.total == 5
        assert page.pages == 3
        assert [o.order_time for o in page.orders] == [base + timedelta(minutes=2), base + timedelta(minutes=1)]

    @pytest.mark.asyncio
    async def test_list_orders_caps_limit(self, service, test_settings):
        page = await service.list_orders("user-1", OrderFilter(), page=0, limit=10_000)
        assert page.page == 1
        assert page.limit == test_settings.orders.max_page_size
        assert page.pages == 0

    @pytest.mark.asyncio
    async def test_stats_and_open_count(self, service, order_repository, make_order):
        await order_repository.create(make_order(status=OrderStatus.COMPLETE, filled_quantity=10, average_price=10))
        await order_repository.create(make_order(status=OrderStatus.OPEN))
        await order_repository.create(make_order(status=OrderStatus.PENDING))

        stats = await service.stats("user-1")

        assert stats.total_orders == 3
        assert stats.completed_orders == 1
        assert await service.open_orders_count("user-1") == 2


class TestModifyCancel:
    @pytest.mark.asyncio
    async def test_modify_sends_amended_order(self, service, gateway, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1", broker_order_id="B1"))

        modified = await service.modify_order("user-1", "smart-jwt", order.id,
                                              OrderModifyRequest(quantity=20, price=505))

        assert modified.status == OrderStatus.MODIFIED
        assert modified.quantity == 20
        assert modified.price == 505
        [(_, payload)] = gateway.called("modify_order")
        assert payload["orderid"] == "B1"
        assert payload["quantity"] == "20"

    @pytest.mark.asyncio
    async def test_modify_rejects_terminal_orders(self, service, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1", status=OrderStatus.COMPLETE))
        with pytest.raises(OrderStateError, match="cannot be modified"):
            await service.modify_order("user-1", "smart-jwt", order.id, OrderModifyRequest(quantity=5))

    @pytest.mark.asyncio
    async def test_modify_requires_broker_id(self, service, order_repository, make_order):
        order = await order_repository.create(make_order(status=OrderStatus.PENDING))
        with pytest.raises(OrderStateError, match="no broker order id"):
            await service.modify_order("user-1", "smart-jwt", order.id, OrderModifyRequest(quantity=5))

    @pytest.mark.asyncio
    async def test_broker_refusal_leaves_order_untouched(self, service, gateway, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1"))
        gateway.responses["modify_order"] = GatewayResponse.fail("Order already executed")

        with pytest.raises(BrokerAPIError, match="Order already executed"):
            await service.modify_order("user-1", "smart-jwt", order.id, OrderModifyRequest(quantity=5))
        assert order_repository.orders[order.id].quantity == 10

    @pytest.mark.asyncio
    async def test_cancel(self, service, gateway, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1"))

        cancelled = await service.cancel_order("user-1", "smart-jwt", "B1")

        assert cancelled.status == OrderStatus.CANCELLED
        assert gateway.called("cancel_order") == [("smart-jwt", "normal", "B1")]

    @pytest.mark.asyncio
    async def test_cancel_rejects_cancelled(self, service, order_repository, make_order):
        order = await order_repository.create(make_order(order_id="B1", status=OrderStatus.CANCELLED))
        with pytest.raises(OrderStateError, match="cannot be cancelled"):
            await service.cancel_order("user-1", "smart-jwt", order.id)


class TestSync:
    def book_entry(self, orderid, status, **extra):
        entry = {
            "orderid": orderid, "tradingsymbol": "INFY-EQ", "exchange": "NSE", "symboltoken": "1594",
            "ordertype": "MARKET", "transactiontype": "SELL", "producttype": "INTRADAY",
            "quantity": "5", "status": status, "filledshares": "0", "averageprice": "0",
        }
        entry.update(extra)
        return entry

    @pytest.mark.asyncio
    async def test_sync_creates_and_updates(self, service, gateway, order_repository, make_order):
        await order_repository.create(make_order(order_id="B1", broker_order_id="B1"))
        await order_repository.create(make_order(order_id="B2", broker_order_id="B2"))
        gateway.responses["get_order_book"] = GatewayResponse.ok([
            self.book_entry("B1", "complete", quantity="10", filledshares="10", averageprice="500"),
            self.book_entry("B2", "open", quantity="10", ordertype="LIMIT", price="500"),
            self.book_entry("B3", "open"),
            {"broken": True},
        ])

        result = await service.sync_orders("user-1", "smart-jwt")

        assert result.model_dump() == {
            "synced_orders": 1,
            "new_orders": 1,
            "unchanged_orders": 1,
            "failed_orders": 1,
            "total_broker_orders": 4,
        }
        synced = await order_repository.find_one("user-1", "SYNC_B3")
        assert synced.source == OrderSource.SYNC
        assert (await order_repository.find_one("user-1", "B1")).status == OrderStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, service, gateway):
        gateway.responses["get_order_book"] = GatewayResponse.ok([self.book_entry("B9", "open")])

        first = await service.sync_orders("user-1", "smart-jwt")
        second = await service.sync_orders("user-1", "smart-jwt")

        assert first.new_orders == 1
        assert second.new_orders == 0
        assert second.unchanged_orders == 1

    @pytest.mark.asyncio
    async def test_null_order_book_is_empty(self, service, gateway):
        gateway.responses["get_order_book"] = GatewayResponse.ok(None)
        result = await service.sync_orders("user-1", "smart-jwt")
        assert result.total_broker_orders == 0

    @pytest.mark.asyncio
    async def test_failed_order_book_raises(self, service, gateway):
        gateway.responses["get_order_book"] = GatewayResponse.fail("Invalid Token", error_code="AG8001")
        with pytest.raises(BrokerAPIError, match="Invalid Token"):
            await service.sync_orders("user-1", "smart-jwt")

    @pytest.mark.asyncio
    async def test_persist_failures_are_counted(self, service, gateway, order_repository, make_order):
        await order_repository.create(make_order(order_id="B1"))
        gateway.responses["get_order_book"] = GatewayResponse.ok([
            self.book_entry("B1", "complete", quantity="10", filledshares="10", averageprice="500"),
        ])
        order_repository.fail_on_save = True

        result = await service.sync_orders("user-1", "smart-jwt")

        assert result.failed_orders == 1
        assert result.synced_orders == 1

    @pytest.mark.asyncio
    async def test_concurrent_syncs_for_one_user_are_serialized(self, service, gateway):
        in_flight = {"now": 0, "max": 0}

        async def slow_book(token):
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1
            return GatewayResponse.ok([self.book_entry("B5", "open")])

        gateway.get_order_book = slow_book
        results = await asyncio.gather(service.sync_orders("user-1", "t"), service.sync_orders("user-1", "t"))

        assert in_flight["max"] == 1
        assert sorted(r.new_orders for r in results) == [0, 1]
