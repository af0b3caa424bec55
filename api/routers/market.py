import asyncio
from datetime import datetime, timezone
from typing import Any, Dict

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_market_hours_checker, get_settings, require_broker_session
from api.schemas.responses import InstrumentQuote, LTPRequest, ok
from app.containers import AppContainer
from core.config.settings import Settings
from core.logging import get_api_logger_safe
from core.market_hours.market_hours_checker import MarketHoursChecker
from core.trading.interfaces import BrokerGateway
from core.utils.exceptions import BrokerAPIError, ValidationError
from services.auth.models import User

router = APIRouter(prefix="/market", tags=["Market"])

logger = get_api_logger_safe("market_api")

QUOTE_FIELDS = ("ltp", "open", "high", "low", "close")


@inject
def get_gateway(
    gateway: BrokerGateway = Depends(Provide[AppContainer.broker_gateway])
) -> BrokerGateway:
    return gateway


def _instrument_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "exchange": raw.get("exchange"),
        "trading_symbol": raw.get("trading_symbol") or raw.get("tradingSymbol"),
        "symbol_token": raw.get("symbol_token") or raw.get("symbolToken"),
    }


async def _quote(gateway: BrokerGateway, access_token: str, raw: Dict[str, Any]) -> InstrumentQuote:
    keys = _instrument_keys(raw)
    if not all(keys.values()):
        return InstrumentQuote(**keys, error="Missing required fields: exchange, tradingSymbol, symbolToken")
    try:
        result = await gateway.get_ltp(access_token, str(keys["exchange"]).upper(),
                                       keys["trading_symbol"], str(keys["symbol_token"]))
    except Exception as e:
        logger.warning("LTP request raised", error=str(e), **keys)
        return InstrumentQuote(**keys, error="Request failed")
    if not result.success or not isinstance(result.data, dict):
        return InstrumentQuote(**keys, error=result.message or "Failed to fetch LTP")
    prices = {k: result.data.get(k) for k in QUOTE_FIELDS}
    return InstrumentQuote(**keys, **prices, last_updated=datetime.now(timezone.utc))


@router.get("/search")
async def search_instruments(
    q: str = Query("", description="Search text"),
    exchange: str = Query("NSE"),
    user: User = Depends(require_broker_session),
    gateway: BrokerGateway = Depends(get_gateway),
):
    if len(q.strip()) < 2:
        raise ValidationError("Search text must be at least 2 characters", field="q", value=q)
    result = await gateway.search_instruments(user.broker_session.access_token, exchange.upper(), q.strip())
    if not result.success:
        raise BrokerAPIError(result.message or "Search failed", api_error_code=result.error_code)
    return ok({"instruments": result.data or [], "search_text": q, "exchange": exchange.upper()})


@router.post("/ltp")
async def batch_ltp(
    body: LTPRequest,
    user: User = Depends(require_broker_session),
    gateway: BrokerGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    if not body.instruments:
        raise ValidationError("Please provide instruments array", field="instruments")
    limit = settings.api.ltp_max_instruments
    if len(body.instruments) > limit:
        raise ValidationError(f"Maximum {limit} instruments allowed per request", field="instruments")

    quotes = await asyncio.gather(
        *(_quote(gateway, user.broker_session.access_token, raw) for raw in body.instruments)
    )
    return ok({
        "instruments": [q.model_dump(mode="json") for q in quotes],
        "timestamp": datetime.now(timezone.utc),
    })


@router.get("/status")
async def market_status(checker: MarketHoursChecker = Depends(get_market_hours_checker)):
    return ok(checker.get_market_info())
