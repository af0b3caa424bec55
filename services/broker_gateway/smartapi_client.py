"""Angel One SmartAPI REST client.

All calls resolve to a ``GatewayResponse``. SmartAPI wraps every answer in
an envelope ``{"status", "message", "errorcode", "data"}``; a false status
becomes ``success=False`` with the broker's message. Transport failures are
retried with exponential backoff and then reported the same way, so callers
never see an httpx exception. Order writes (place, modify, cancel) are
retried only when the connection was never established.
"""

from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config.settings import Settings
from core.logging import get_error_logger_safe, get_trading_logger_safe
from core.trading.models import GatewayResponse

AUTH_PREFIX = "/rest/auth/angelbroking"
SECURE_PREFIX = "/rest/secure/angelbroking"

LOGIN_PATH = f"{AUTH_PREFIX}/user/v1/loginByPassword"
TOKEN_PATH = f"{AUTH_PREFIX}/jwt/v1/generateTokens"
PROFILE_PATH = f"{SECURE_PREFIX}/user/v1/getProfile"
LOGOUT_PATH = f"{SECURE_PREFIX}/user/v1/logout"
HOLDINGS_PATH = f"{SECURE_PREFIX}/portfolio/v1/getHolding"
FUNDS_PATH = f"{SECURE_PREFIX}/user/v1/getRMS"
ORDER_BOOK_PATH = f"{SECURE_PREFIX}/order/v1/getOrderBook"
LTP_PATH = f"{SECURE_PREFIX}/order/v1/getLtpData"
PLACE_ORDER_PATH = f"{SECURE_PREFIX}/order/v1/placeOrder"
MODIFY_ORDER_PATH = f"{SECURE_PREFIX}/order/v1/modifyOrder"
CANCEL_ORDER_PATH = f"{SECURE_PREFIX}/order/v1/cancelOrder"
SEARCH_PATH = f"{SECURE_PREFIX}/order/v1/searchScrip"

# Errors raised before any byte of the request reached SmartAPI
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def _strip_bearer(token: Optional[str]) -> Optional[str]:
    if token and token.startswith("Bearer "):
        return token[len("Bearer "):]
    return token


def normalize_session(data: Any) -> Dict[str, Optional[str]]:
    """Map SmartAPI session payloads onto access/refresh/feed tokens."""
    data = data if isinstance(data, dict) else {}
    return {
        "access_token": _strip_bearer(data.get("jwtToken")),
        "refresh_token": data.get("refreshToken"),
        "feed_token": data.get("feedToken"),
    }


class SmartApiGateway:
    """``BrokerGateway`` implementation over the SmartAPI REST endpoints."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.config = settings.smartapi
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
        )
        self.logger = get_trading_logger_safe("smartapi_gateway")
        self.error_logger = get_error_logger_safe("smartapi_gateway_errors")

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-UserType": "USER",
            "X-SourceID": "WEB",
            "X-ClientLocalIP": self.config.client_local_ip,
            "X-ClientPublicIP": self.config.client_public_ip,
            "X-MACAddress": self.config.mac_address,
            "X-PrivateKey": self.config.api_key,
        }
        if access_token:
            headers["Authorization"] = f"Bearer {_strip_bearer(access_token)}"
        return headers

    async def _request(self, method: str, path: str, access_token: Optional[str] = None,
                       payload: Optional[Dict[str, Any]] = None,
                       idempotent: bool = True) -> GatewayResponse:
        retryable = httpx.TransportError if idempotent else UNSENT_ERRORS
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.config.retry_max_wait_seconds),
            retry=retry_if_exception_type(retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(
                        method, path, json=payload, headers=self._headers(access_token)
                    )
        except httpx.TransportError as e:
            self.error_logger.error("SmartAPI request failed",
                                    path=path, idempotent=idempotent,
                                    error_type=type(e).__name__, error=str(e))
            return GatewayResponse.fail(f"SmartAPI request failed: {e}", error_code="TRANSPORT")

        return self._parse(path, response)

    def _parse(self, path: str, response: httpx.Response) -> GatewayResponse:
        try:
            body = response.json()
        except ValueError:
            self.logger.warning("SmartAPI returned a non-JSON body",
                                path=path, status_code=response.status_code)
            return GatewayResponse.fail(f"SmartAPI returned HTTP {response.status_code}",
                                        error_code=str(response.status_code))

        if not isinstance(body, dict):
            return GatewayResponse.fail("Unexpected SmartAPI response", data=body)

        message = body.get("message")
        if response.is_error or not body.get("status"):
            self.logger.warning("SmartAPI call unsuccessful",
                                path=path,
                                status_code=response.status_code,
                                errorcode=body.get("errorcode"),
                                message=message)
            return GatewayResponse.fail(message or "SmartAPI request failed",
                                        error_code=body.get("errorcode") or None,
                                        data=body.get("data"))
        return GatewayResponse.ok(body.get("data"), message=message)

    async def generate_session(self, client_code: str, password: str, totp: str) -> GatewayResponse:
        result = await self._request("POST", LOGIN_PATH, payload={
            "clientcode": client_code, "password": password, "totp": totp,
        })
        if result.success:
            result.data = normalize_session(result.data)
        return result

    async def refresh_tokens(self, refresh_token: str, access_token: str) -> GatewayResponse:
        result = await self._request("POST", TOKEN_PATH, access_token=access_token,
                                     payload={"refreshToken": refresh_token})
        if result.success:
            result.data = normalize_session(result.data)
        return result

    async def get_profile(self, access_token: str) -> GatewayResponse:
        return await self._request("GET", PROFILE_PATH, access_token=access_token)

    async def logout(self, access_token: str, client_code: str) -> GatewayResponse:
        return await self._request("POST", LOGOUT_PATH, access_token=access_token,
                                   payload={"clientcode": client_code})

    async def get_holdings(self, access_token: str) -> GatewayResponse:
        return await self._request("GET", HOLDINGS_PATH, access_token=access_token)

    async def get_funds(self, access_token: str) -> GatewayResponse:
        return await self._request("GET", FUNDS_PATH, access_token=access_token)

    async def get_order_book(self, access_token: str) -> GatewayResponse:
        return await self._request("GET", ORDER_BOOK_PATH, access_token=access_token)

    async def get_ltp(self, access_token: str, exchange: str, symbol: str, instrument_token: str) -> GatewayResponse:
        return await self._request("POST", LTP_PATH, access_token=access_token, payload={
            "exchange": exchange, "tradingsymbol": symbol, "symboltoken": instrument_token,
        })

    async def place_order(self, access_token: str, params: Dict[str, Any]) -> GatewayResponse:
        self.logger.info("Placing SmartAPI order",
                         tradingsymbol=params.get("tradingsymbol"),
                         transactiontype=params.get("transactiontype"),
                         quantity=params.get("quantity"))
        return await self._request("POST", PLACE_ORDER_PATH, access_token=access_token, payload=params,
                                   idempotent=False)

    async def modify_order(self, access_token: str, params: Dict[str, Any]) -> GatewayResponse:
        return await self._request("POST", MODIFY_ORDER_PATH, access_token=access_token, payload=params,
                                   idempotent=False)

    async def cancel_order(self, access_token: str, variety: str, order_id: str) -> GatewayResponse:
        return await self._request("POST", CANCEL_ORDER_PATH, access_token=access_token,
                                   payload={"variety": variety, "orderid": order_id}, idempotent=False)

    async def search_instruments(self, access_token: str, exchange: str, query: str) -> GatewayResponse:
        return await self._request("POST", SEARCH_PATH, access_token=access_token,
                                   payload={"exchange": exchange, "searchscrip": query})
