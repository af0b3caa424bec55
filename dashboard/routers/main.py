"""Server-rendered dashboard pages.

The pages are shells: the browser keeps the access token from the login
form in localStorage and pulls data from the JSON API under the
configured prefix.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pathlib import Path

from api.dependencies import get_market_hours_checker, get_settings
from core.config.settings import Settings
from core.logging import get_api_logger_safe
from core.market_hours.market_hours_checker import MarketHoursChecker

router = APIRouter(prefix="/dashboard", tags=["dashboard"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[1] / "templates"))

logger = get_api_logger_safe("dashboard")

PAGES = {
    "home": ("dashboard/index.html", "Overview"),
    "portfolio": ("dashboard/portfolio.html", "Portfolio"),
    "orders": ("dashboard/orders.html", "Orders"),
}


def _render(request: Request, page: str, settings: Settings, **extra):
    template, title = PAGES[page]
    context = {
        "request": request,
        "page": page,
        "title": f"{title} | {settings.dashboard.title}",
        "app_title": settings.dashboard.title,
        "theme": settings.dashboard.theme,
        "api_prefix": settings.api.prefix,
        "csp_nonce": getattr(request.state, "csp_nonce", ""),
        **extra,
    }
    logger.debug("Dashboard page rendered", page=page)
    return templates.TemplateResponse(request, template, context)


@router.get("", response_class=HTMLResponse)
async def dashboard_home(
    request: Request,
    settings: Settings = Depends(get_settings),
    checker: MarketHoursChecker = Depends(get_market_hours_checker),
):
    """Overview page: account, portfolio summary, recent orders and alerts"""
    return _render(
        request, "home", settings,
        market=checker.get_market_info(),
        refresh_interval=settings.dashboard.market_status_refresh_interval,
    )


@router.get("/portfolio", response_class=HTMLResponse)
async def portfolio_page(request: Request, settings: Settings = Depends(get_settings)):
    """Holdings table with sync and price refresh actions"""
    return _render(request, "portfolio", settings,
                   refresh_interval=settings.dashboard.portfolio_refresh_interval)


@router.get("/orders", response_class=HTMLResponse)
async def orders_page(request: Request, settings: Settings = Depends(get_settings)):
    """Order book with status filter and cancel action"""
    return _render(request, "orders", settings,
                   refresh_interval=settings.dashboard.orders_refresh_interval)
