from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    limit: int
    has_next: bool
    has_prev: bool


class InstrumentQuote(BaseModel):
    """One entry of a batch LTP request; failures carry ``error`` instead of prices"""
    exchange: Optional[str] = None
    trading_symbol: Optional[str] = None
    symbol_token: Optional[str] = None
    ltp: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    last_updated: Optional[datetime] = None
    error: Optional[str] = None


class LTPRequest(BaseModel):
    instruments: List[Dict[str, Any]] = Field(default_factory=list)


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Build a success envelope; ``None`` fields are omitted."""
    body: Dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
