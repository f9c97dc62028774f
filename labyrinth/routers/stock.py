import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query

from ..clients import http_link
from ..config import Settings, get_settings
from ..schemas import StockSeries, StockToolResult
from ..tools.stock import DEFAULT_INTERVAL, STOCK_MODE_DISABLED, StockFetchError, fetch_stock_series, get_stock_data

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stock", tags=["stock"])

settings_link = Annotated[Settings, Depends(get_settings)]
stock_mode_cookie = Annotated[Optional[str], Cookie(alias="stock-mode")]


@router.get("/chart", response_model=StockToolResult)
async def stock_chart(
    http: http_link,
    settings: settings_link,
    stock_mode: stock_mode_cookie = None,
    symbol: Optional[str] = Query(default=None),
    interval: str = Query(default=DEFAULT_INTERVAL),
    compare_symbols: Optional[str] = Query(default=None, description="Comma separated symbols"),
):
    # charts stay off until the client has explicitly switched stock mode on
    if stock_mode != "true":
        raise HTTPException(
            status_code=400,
            detail={"error": STOCK_MODE_DISABLED, "stockModeValue": stock_mode or "not set"},
        )
    if not symbol:
        raise HTTPException(status_code=400, detail="Stock symbol is required")

    compare = [s for s in compare_symbols.split(",") if s] if compare_symbols else []
    try:
        result = await get_stock_data(http, settings, symbol, interval, compare)
    except Exception as e:
        logger.exception("Error calling stock data tool")
        raise HTTPException(status_code=500, detail=f"Failed to get stock data: {e}")

    if result.ui is None:
        raise HTTPException(status_code=404, detail=result.content)
    return result


@router.get("/data", response_model=StockSeries)
async def stock_data(
    http: http_link,
    settings: settings_link,
    stock_mode: stock_mode_cookie = None,
    symbol: Optional[str] = Query(default=None),
    interval: str = Query(default=DEFAULT_INTERVAL),
):
    if stock_mode == "false":
        raise HTTPException(status_code=400, detail=STOCK_MODE_DISABLED)
    if not symbol:
        raise HTTPException(status_code=400, detail="Stock symbol is required")
    if not settings.polygon_api_key:
        raise HTTPException(status_code=500, detail="Polygon API key is not configured")

    try:
        return await fetch_stock_series(http, settings.polygon_api_key, symbol, interval, raise_errors=True)
    except StockFetchError as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch stock data: {e}")
