from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from core.trading.models import GatewayResponse
from core.trading.order_models import Order, OrderFilter
from core.trading.portfolio_models import Portfolio


@runtime_checkable
class BrokerGateway(Protocol):
    """Broker API surface used by the services.

    Every call resolves to a ``GatewayResponse``; implementations report
    broker and transport failures through ``success=False`` rather than
    raising.
    """

    async def generate_session(self, client_code: str, password: str, totp: str) -> GatewayResponse:
        ...

    async def refresh_tokens(self, refresh_token: str, access_token: str) -> GatewayResponse:
        ...

    async def get_profile(self, access_token: str) -> GatewayResponse:
        ...

    async def logout(self, access_token: str, client_code: str) -> GatewayResponse:
        ...

    async def get_holdings(self, access_token: str) -> GatewayResponse:
        ...

    async def get_funds(self, access_token: str) -> GatewayResponse:
        ...

    async def get_order_book(self, access_token: str) -> GatewayResponse:
        ...

    async def get_ltp(self, access_token: str, exchange: str, symbol: str, instrument_token: str) -> GatewayResponse:
        ...

    async def place_order(self, access_token: str, params: Dict[str, Any]) -> GatewayResponse:
        ...

    async def modify_order(self, access_token: str, params: Dict[str, Any]) -> GatewayResponse:
        ...

    async def cancel_order(self, access_token: str, variety: str, order_id: str) -> GatewayResponse:
        ...

    async def search_instruments(self, access_token: str, exchange: str, query: str) -> GatewayResponse:
        ...


class PortfolioRepository(ABC):
    """Whole-document portfolio store, one document per user."""

    @abstractmethod
    async def find(self, user_id: str) -> Optional[Portfolio]:
        ...

    @abstractmethod
    async def save(self, portfolio: Portfolio) -> Portfolio:
        ...


class OrderRepository(ABC):
    """Order store keyed by user and client/broker order ids."""

    @abstractmethod
    async def find(self, user_id: str, filters: OrderFilter, offset: int = 0,
                   limit: Optional[int] = None) -> List[Order]:
        """Orders matching ``filters``, newest ``order_time`` first."""

    @abstractmethod
    async def count(self, user_id: str, filters: OrderFilter) -> int:
        ...

    @abstractmethod
    async def find_one(self, user_id: str, identifier: str) -> Optional[Order]:
        """Match on internal id, broker order id or client order id."""

    @abstractmethod
    async def find_by_broker_id(self, user_id: str, broker_order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def create(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def save(self, order: Order) -> Order:
        ...


class UserRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str):
        ...

    @abstractmethod
    async def find_by_email(self, email: str):
        ...

    @abstractmethod
    async def find_by_email_or_client_code(self, email: str, client_code: str):
        ...

    @abstractmethod
    async def create(self, user):
        ...

    @abstractmethod
    async def save(self, user):
        ...
