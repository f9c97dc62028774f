"""
Stock price connector backed by Polygon.io.

Every symbol is fetched independently: reference data, aggregate bars and the
previous close are requested concurrently, and a symbol whose fetch fails is
dropped instead of failing the whole request.
"""
import asyncio
import calendar
import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple, Union

import httpx

from ..config import Settings
from ..schemas import ChartData, ChartElement, StockPrice, StockSeries, StockToolResult

logger = logging.getLogger(__name__)

POLYGON_BASE_URL = "https://api.polygon.io"

INTERVALS = ("1d", "5d", "1mo", "3mo", "6mo", "1y", "2y", "5y", "10y", "ytd", "max")
DEFAULT_INTERVAL = "1mo"

INTERVAL_NAMES = {
    "1d": "1 Day",
    "5d": "5 Day",
    "1mo": "1 Month",
    "3mo": "3 Month",
    "6mo": "6 Month",
    "1y": "1 Year",
    "2y": "2 Year",
    "5y": "5 Year",
    "10y": "10 Year",
    "ytd": "Year to Date",
    "max": "Maximum",
}

STOCK_MODE_DISABLED = "Stock mode is disabled. Please enable stock mode in the header to use this feature."


def _months_back(day: date, months: int) -> date:
    month_index = day.year * 12 + day.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def map_interval(interval: str, today: Optional[date] = None) -> Tuple[str, int, str, str]:
    """Map an interval token to Polygon's (timespan, multiplier, from, to)."""
    today = today or datetime.now(timezone.utc).date()

    if interval == "1d":
        start, timespan = today - timedelta(days=1), "hour"
    elif interval == "5d":
        start, timespan = today - timedelta(days=5), "hour"
    elif interval in ("1mo", "3mo", "6mo"):
        start, timespan = _months_back(today, int(interval[0])), "day"
    elif interval == "1y":
        start, timespan = _months_back(today, 12), "day"
    elif interval == "2y":
        start, timespan = _months_back(today, 24), "week"
    elif interval == "5y":
        start, timespan = _months_back(today, 60), "week"
    elif interval == "10y":
        start, timespan = _months_back(today, 120), "month"
    elif interval == "ytd":
        start, timespan = date(today.year, 1, 1), "day"
    elif interval == "max":
        start, timespan = date(2000, 1, 1), "month"
    else:
        start, timespan = _months_back(today, 1), "day"

    return timespan, 1, start.isoformat(), today.isoformat()


def _bar_to_price(bar: dict) -> StockPrice:
    # Polygon timestamps are epoch milliseconds
    moment = datetime.fromtimestamp(bar["t"] / 1000, tz=timezone.utc)
    return StockPrice(
        date=moment.isoformat().replace("+00:00", "Z"),
        open=bar.get("o"),
        high=bar.get("h"),
        low=bar.get("l"),
        close=bar.get("c"),
        volume=bar.get("v"),
    )


class StockFetchError(RuntimeError):
    pass


async def fetch_stock_series(
    http: httpx.AsyncClient,
    api_key: str,
    symbol: str,
    interval: str,
    raise_errors: bool = False,
) -> Optional[StockSeries]:
    """Fetch one symbol. Returns None on failure unless ``raise_errors`` is set."""
    timespan, multiplier, start, end = map_interval(interval)
    params = {"apiKey": api_key}

    details, aggregates, previous = await asyncio.gather(
        http.get(f"{POLYGON_BASE_URL}/v3/reference/tickers/{symbol}", params=params),
        http.get(
            f"{POLYGON_BASE_URL}/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{start}/{end}",
            params={"adjusted": "true", "sort": "asc", "limit": 5000, **params},
        ),
        http.get(f"{POLYGON_BASE_URL}/v2/aggs/ticker/{symbol}/prev", params={"adjusted": "true", **params}),
        return_exceptions=True,
    )

    for label, response in (("details", details), ("aggregates", aggregates)):
        if isinstance(response, Exception):
            message = f"Failed to fetch stock {label} for {symbol}: {response}"
        elif not response.is_success:
            message = f"Failed to fetch stock {label} for {symbol}: {response.reason_phrase}"
        else:
            continue
        logger.error(message)
        if raise_errors:
            raise StockFetchError(message)
        return None

    try:
        details_data = details.json()
        name = (details_data.get("results") or {}).get("name") or symbol
        bars = aggregates.json().get("results") or []
        prices = [_bar_to_price(bar) for bar in bars if isinstance(bar, dict) and "t" in bar]
    except (ValueError, AttributeError, TypeError) as e:
        logger.error("Error fetching data for %s: %s", symbol, e)
        if raise_errors:
            raise StockFetchError(f"Malformed stock data for {symbol}") from e
        return None

    previous_close = None
    if not isinstance(previous, Exception) and previous.is_success:
        try:
            prev_results = previous.json().get("results") or []
            if prev_results:
                previous_close = prev_results[0].get("c")
        except (ValueError, AttributeError):
            logger.warning("Could not read previous close for %s", symbol)

    last = prices[-1] if prices else None
    return StockSeries(
        symbol=symbol,
        name=name,
        current_price=last.close if last else None,
        previous_close=previous_close,
        open=last.open if last else None,
        day_high=last.high if last else None,
        day_low=last.low if last else None,
        prices=prices,
    )


def format_chart_data(series: Sequence[StockSeries]) -> ChartData:
    elements = []
    for stock in series:
        if not stock.prices:
            logger.warning("No price data available for %s", stock.symbol)
        elements.append(
            ChartElement(label=stock.symbol, points=[[p.date, p.close] for p in stock.prices])
        )
    return ChartData(elements=elements)


def _signed(value: float) -> str:
    return f"+{value:.2f}" if value >= 0 else f"{value:.2f}"


def _money(value: float) -> str:
    return f"+${value:.2f}" if value >= 0 else f"-${abs(value):.2f}"


def create_stock_summary(series: Sequence[StockSeries], interval: str) -> str:
    summary = f"# Stock Data for {', '.join(s.symbol for s in series)}\n\n"

    for stock in series:
        summary += f"## {stock.name or stock.symbol} ({stock.symbol})\n"

        if stock.current_price is not None and stock.previous_close:
            change = stock.current_price - stock.previous_close
            percent = change / stock.previous_close * 100
            summary += f"Current Price: ${stock.current_price:.2f}\n"
            summary += f"Previous Close: ${stock.previous_close:.2f}\n"
            summary += f"Change: {_money(change)} ({_signed(percent)}%)\n"
        else:
            summary += "Price data unavailable for this stock.\n"

        if stock.prices:
            first, last = stock.prices[0].close, stock.prices[-1].close
            if first and last is not None:
                period_change = last - first
                period_percent = period_change / first * 100
                summary += (
                    f"{INTERVAL_NAMES.get(interval, interval)} Change: "
                    f"{_money(period_change)} ({_signed(period_percent)}%)\n\n"
                )
            else:
                summary += "Historical price data unavailable for this period.\n\n"

    return summary


async def get_stock_data(
    http: httpx.AsyncClient,
    settings: Settings,
    symbol: str,
    interval: str = DEFAULT_INTERVAL,
    compare_symbols: Union[str, List[str], None] = None,
    stock_mode: bool = True,
) -> StockToolResult:
    if not stock_mode:
        return StockToolResult(content=STOCK_MODE_DISABLED, ui=None)

    if interval not in INTERVALS:
        interval = DEFAULT_INTERVAL
    if isinstance(compare_symbols, str):
        # a single ticker, not a sequence of one-letter symbols
        compare_symbols = [compare_symbols]
    symbols = [s.strip().upper() for s in [symbol, *(compare_symbols or [])] if s and s.strip()]

    if not settings.polygon_api_key:
        logger.error("Polygon API key is not configured")
        return StockToolResult(content="Failed to get stock data: Polygon API key is not configured", ui=None)

    results = await asyncio.gather(
        *(fetch_stock_series(http, settings.polygon_api_key, sym, interval) for sym in symbols),
        return_exceptions=True,
    )
    valid: List[StockSeries] = []
    for sym, result in zip(symbols, results):
        if isinstance(result, Exception):
            logger.error("Error fetching data for %s: %s", sym, result)
        elif result is not None:
            valid.append(result)

    if not valid:
        return StockToolResult(
            content=(
                f"No valid stock data found for the requested symbol(s): {', '.join(symbols)}. "
                "Please check the symbol and try again."
            ),
            ui=None,
        )

    valid_symbols = [s.symbol for s in valid]
    response_data = {
        "title": f"Stock Price{' Comparison' if len(valid_symbols) > 1 else ''}: {', '.join(valid_symbols)}",
        "stock_symbols": valid_symbols,
        "interval": interval,
        "chart": format_chart_data(valid).model_dump(),
    }
    text_summary = create_stock_summary(valid, interval)

    return StockToolResult(
        content=f"{text_summary}\n\n```json\n{json.dumps(response_data, indent=2)}\n```",
        ui={"type": "StockChart", "data": response_data},
    )
