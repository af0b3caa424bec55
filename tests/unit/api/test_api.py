"""HTTP surface tests: real app and container, in-memory repositories and a fake gateway."""
import pytest
from dependency_injector import providers
from fastapi.testclient import TestClient

from api.main import create_app
from app.containers import AppContainer
from core.trading.models import GatewayResponse
from core.trading.order_models import OrderStatus

REGISTRATION = {
    "client_code": "a123",
    "name": "Test User",
    "email": "Trader@Example.com",
    "phone": "9876543210",
    "password": "secret123",
}


@pytest.fixture
def container(test_settings, gateway, user_repository, portfolio_repository, order_repository):
    container = AppContainer()
    container.settings.override(providers.Object(test_settings))
    container.broker_gateway.override(providers.Object(gateway))
    container.user_repository.override(providers.Object(user_repository))
    container.portfolio_repository.override(providers.Object(portfolio_repository))
    container.order_repository.override(providers.Object(order_repository))
    yield container
    container.unwire()
    container.reset_override()


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as client:
        yield client


@pytest.fixture
def token(client):
    response = client.post("/api/v1/auth/register", json=REGISTRATION)
    return response.json()["data"]["token"]


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def broker_headers(client, auth_headers):
    response = client.post("/api/v1/auth/smartapi-login", json={"password": "1234", "totp": "654321"},
                           headers=auth_headers)
    assert response.status_code == 200
    return auth_headers


class TestHealthAndMetrics:
    def test_health_checks_database(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"database": True}
        assert body["environment"] == "testing"

    def test_metrics_exposes_request_counters(self, client):
        client.get("/api/v1/market/status")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "smartdesk_http_requests_total" in response.text

    def test_responses_carry_request_ids(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "corr-42"})
        assert response.headers["X-Correlation-ID"] == "corr-42"
        assert response.headers["X-Request-ID"]


class TestAuthEndpoints:
    def test_register_then_me(self, client, user_repository):
        response = client.post("/api/v1/auth/register", json=REGISTRATION)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "User registered successfully"
        assert body["data"]["user"]["client_code"] == "A123"
        assert body["data"]["user"]["email"] == "trader@example.com"
        assert "hashed_password" not in body["data"]["user"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['data']['token']}"})
        assert me.status_code == 200
        assert me.json()["data"]["user"]["has_smartapi_session"] is False
        assert len(user_repository.users) == 1

    def test_duplicate_registration(self, client, token):
        response = client.post("/api/v1/auth/register", json={**REGISTRATION, "email": "other@example.com"})

        assert response.status_code == 400
        assert response.json() == {"success": False,
                                   "message": "User with this email or client code already exists"}

    def test_malformed_body_is_a_400_envelope(self, client):
        response = client.post("/api/v1/auth/register", json={**REGISTRATION, "phone": "12"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Invalid phone")

    def test_login(self, client, token):
        response = client.post("/api/v1/auth/login", json={"email": "trader@example.com", "password": "secret123"})
        assert response.status_code == 200
        assert response.json()["data"]["user"]["login_count"] == 1

        wrong = client.post("/api/v1/auth/login", json={"email": "trader@example.com", "password": "nope"})
        assert wrong.status_code == 401
        assert wrong.json() == {"success": False, "message": "Invalid email or password"}

    @pytest.mark.parametrize("headers, message", [
        ({}, "Access token required"),
        ({"Authorization": "Bearer not-a-jwt"}, "Invalid token"),
    ])
    def test_protected_routes_require_token(self, client, headers, message):
        response = client.get("/api/v1/auth/me", headers=headers)

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": message}

    def test_smartapi_status_and_logout(self, client, broker_headers, gateway):
        status = client.get("/api/v1/auth/smartapi-status", headers=broker_headers)
        assert status.json()["data"]["is_connected"] is True

        response = client.post("/api/v1/auth/logout", headers=broker_headers)

        assert response.json() == {"success": True, "message": "Logged out successfully"}
        assert gateway.called("logout")
        portfolio = client.get("/api/v1/portfolio", headers=broker_headers)
        assert portfolio.status_code == 401


class TestBrokerBackedEndpoints:
    def test_broker_session_required(self, client, auth_headers):
        response = client.get("/api/v1/portfolio", headers=auth_headers)

        assert response.status_code == 401
        assert response.json()["message"] == "SmartAPI session required. Please login to SmartAPI first."

    def test_portfolio_sync(self, client, broker_headers, gateway):
        gateway.responses["get_holdings"] = GatewayResponse.ok([{
            "tradingsymbol": "SBIN-EQ", "exchange": "NSE", "symboltoken": "3045",
            "quantity": "10", "averageprice": "500", "ltp": "550",
        }])
        gateway.responses["get_funds"] = GatewayResponse.ok({"availablecash": "2500.50"})

        response = client.post("/api/v1/portfolio/sync", headers=broker_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["holdings_count"] == 1
        assert data["total_pnl"] == pytest.approx(500.0)
        assert data["available_funds"] == pytest.approx(2500.5)

        portfolio = client.get("/api/v1/portfolio", headers=broker_headers).json()["data"]["portfolio"]
        assert portfolio["holdings"][0]["symbol"] == "SBIN-EQ"
        assert portfolio["summary"]["total_holdings"] == 1

    def test_place_order(self, client, broker_headers, gateway, order_repository):
        response = client.post("/api/v1/orders", headers=broker_headers, json={
            "symbol": "sbin-eq", "exchange": "nse", "symboltoken": "3045", "orderType": "LIMIT",
            "transactionType": "BUY", "productType": "DELIVERY", "quantity": 10, "price": 500,
        })

        assert response.status_code == 201
        order = response.json()["data"]["order"]
        assert order["symbol"] == "SBIN-EQ"
        assert order["order_id"] == "240101000000001"
        assert order["status"] == OrderStatus.OPEN.value
        assert len(order_repository.orders) == 1
        assert gateway.called("place_order")[0][1]["tradingsymbol"] == "SBIN-EQ"

    def test_order_validation_message(self, client, broker_headers, gateway):
        response = client.post("/api/v1/orders", headers=broker_headers, json={
            "symbol": "SBIN-EQ", "exchange": "NSE", "symboltoken": "3045", "orderType": "LIMIT",
            "transactionType": "BUY", "productType": "DELIVERY", "quantity": 10,
        })

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Price is required for LIMIT and SL orders",
                                   "field": "price"}
        assert not gateway.called("place_order")

    def test_list_orders_paginates(self, client, broker_headers, order_repository, make_order, user_repository):
        user_id = next(iter(user_repository.users))
        for _ in range(3):
            order = make_order(user_id=user_id)
            order_repository.orders[order.client_order_id] = order.with_changes(id=order.client_order_id)

        response = client.get("/api/v1/orders", params={"page": 2, "limit": 2}, headers=broker_headers)

        data = response.json()["data"]
        assert len(data["orders"]) == 1
        assert data["pagination"] == {"current_page": 2, "total_pages": 2, "total_orders": 3, "limit": 2,
                                      "has_next": False, "has_prev": True}

    def test_unknown_order_is_404(self, client, broker_headers):
        response = client.get("/api/v1/orders/does-not-exist", headers=broker_headers)
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestMarketEndpoints:
    def test_status_is_public(self, client):
        response = client.get("/api/v1/market/status")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["timezone"] == "Asia/Kolkata"
        assert set(data["sessions"]) >= {"regular"}

    def test_search_requires_two_characters(self, client, broker_headers):
        response = client.get("/api/v1/market/search", params={"q": "s"}, headers=broker_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Search text must be at least 2 characters"

    def test_search(self, client, broker_headers):
        response = client.get("/api/v1/market/search", params={"q": "sbin"}, headers=broker_headers)

        data = response.json()["data"]
        assert data["exchange"] == "NSE"
        assert data["instruments"][0]["tradingsymbol"] == "SBIN-EQ"

    def test_ltp_batch_reports_per_instrument_errors(self, client, broker_headers, gateway):
        gateway.ltp["SBIN-EQ"] = 512.5

        response = client.post("/api/v1/market/ltp", headers=broker_headers, json={"instruments": [
            {"exchange": "NSE", "tradingSymbol": "SBIN-EQ", "symbolToken": "3045"},
            {"exchange": "NSE", "tradingSymbol": "INFY-EQ", "symbolToken": "1594"},
            {"exchange": "NSE"},
        ]})

        quotes = response.json()["data"]["instruments"]
        assert quotes[0]["ltp"] == 512.5 and quotes[0]["error"] is None
        assert quotes[1]["error"] == "No data for symbol"
        assert quotes[2]["error"].startswith("Missing required fields")

    def test_ltp_limits(self, client, broker_headers, test_settings):
        empty = client.post("/api/v1/market/ltp", headers=broker_headers, json={"instruments": []})
        assert empty.json()["message"] == "Please provide instruments array"

        too_many = [{"exchange": "NSE", "tradingSymbol": "X", "symbolToken": "1"}] * (
            test_settings.api.ltp_max_instruments + 1)
        response = client.post("/api/v1/market/ltp", headers=broker_headers, json={"instruments": too_many})
        assert response.status_code == 400
        assert response.json()["message"] == (
            f"Maximum {test_settings.api.ltp_max_instruments} instruments allowed per request")


class TestUserDashboard:
    def test_dashboard_for_new_user(self, client, auth_headers):
        response = client.get("/api/v1/user/dashboard", headers=auth_headers)

        assert response.status_code == 200
        dashboard = response.json()["data"]["dashboard"]
        assert dashboard["user"]["client_code"] == "A123"
        assert dashboard["orders"]["recent"] == []
        assert dashboard["orders"]["monthly_stats"]["total_orders"] == 0
        assert dashboard["alerts"] == {"portfolio_sync": True, "smartapi_connection": True}


class TestDashboardPages:
    @pytest.mark.parametrize("path", ["/dashboard", "/dashboard/portfolio", "/dashboard/orders"])
    def test_pages_render_with_csp_nonce(self, client, path):
        response = client.get(path)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        csp = response.headers["Content-Security-Policy"]
        nonce = csp.split("'nonce-")[1].split("'")[0]
        assert f'nonce="{nonce}"' in response.text
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_api_responses_skip_page_headers(self, client):
        response = client.get("/api/v1/market/status")
        assert "Content-Security-Policy" not in response.headers
