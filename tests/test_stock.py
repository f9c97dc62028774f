import asyncio
from datetime import date

import httpx
import pytest

from labyrinth.config import Settings
from labyrinth.tools.stock import (
    STOCK_MODE_DISABLED,
    StockFetchError,
    fetch_stock_series,
    get_stock_data,
    map_interval,
)

NAMES = {"AAPL": "Apple Inc.", "MSFT": "Microsoft Corp"}
BARS = [
    {"t": 1704067200000, "o": 100.0, "h": 102.0, "l": 99.0, "c": 100.0, "v": 1000},
    {"t": 1704153600000, "o": 101.0, "h": 112.0, "l": 100.0, "c": 110.0, "v": 1500},
]


def polygon(request):
    path = request.url.path
    symbol = path.split("/")[4] if path.startswith("/v2/") else path.rsplit("/", 1)[-1]
    if symbol not in NAMES:
        return httpx.Response(404, json={"status": "NOT_FOUND"})
    if path.startswith("/v3/reference/tickers/"):
        return httpx.Response(200, json={"results": {"name": NAMES[symbol]}})
    if path.endswith("/prev"):
        return httpx.Response(200, json={"results": [{"c": 105.0}]})
    return httpx.Response(200, json={"results": BARS})


def run_stock(recorder, settings, *args, **kwargs):
    async def scenario():
        async with recorder.client() as http:
            return await get_stock_data(http, settings, *args, **kwargs)
    return asyncio.run(scenario())


def test_map_interval_windows():
    today = date(2024, 3, 31)
    assert map_interval("1d", today) == ("hour", 1, "2024-03-30", "2024-03-31")
    assert map_interval("1mo", today) == ("day", 1, "2024-02-29", "2024-03-31")
    assert map_interval("2y", today)[0] == "week"
    assert map_interval("10y", today)[:3] == ("month", 1, "2014-03-31")
    assert map_interval("ytd", today)[2] == "2024-01-01"
    assert map_interval("max", today)[:3] == ("month", 1, "2000-01-01")
    assert map_interval("bogus", today) == map_interval("1mo", today)


def test_disabled_stock_mode_is_a_result(http_recorder):
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "AAPL", stock_mode=False)
    assert result.content == STOCK_MODE_DISABLED
    assert result.ui is None
    assert http_recorder.requests == []


def test_invalid_symbol_is_dropped(http_recorder):
    http_recorder.handler = polygon
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "AAPL", "1mo", ["ZZZZ", "MSFT"])

    data = result.ui["data"]
    assert data["stock_symbols"] == ["AAPL", "MSFT"]
    assert data["title"] == "Stock Price Comparison: AAPL, MSFT"
    assert [e["label"] for e in data["chart"]["elements"]] == ["AAPL", "MSFT"]
    assert data["chart"]["elements"][0]["points"][0] == ["2024-01-01T00:00:00Z", 100.0]


def test_summary_reports_changes(http_recorder):
    http_recorder.handler = polygon
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "AAPL", "1mo")

    assert "## Apple Inc. (AAPL)" in result.content
    assert "Current Price: $110.00" in result.content
    assert "Previous Close: $105.00" in result.content
    assert "Change: +$5.00 (+4.76%)" in result.content
    assert "1 Month Change: +$10.00 (+10.00%)" in result.content


def test_all_symbols_invalid(http_recorder):
    http_recorder.handler = polygon
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "ZZZZ")
    assert result.ui is None
    assert result.content.startswith("No valid stock data found")


def test_chart_route_requires_stock_mode(client):
    resp = client.get("/api/stock/chart", params={"symbol": "AAPL"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["stockModeValue"] == "not set"


def test_chart_route(client, http_recorder):
    http_recorder.handler = polygon
    client.cookies.set("stock-mode", "true")

    ok = client.get("/api/stock/chart", params={"symbol": "AAPL", "compare_symbols": "MSFT"})
    assert ok.status_code == 200
    assert ok.json()["ui"]["type"] == "StockChart"

    missing = client.get("/api/stock/chart", params={"symbol": "ZZZZ"})
    assert missing.status_code == 404


def test_data_route(client, http_recorder):
    http_recorder.handler = polygon

    resp = client.get("/api/stock/data", params={"symbol": "AAPL"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Apple Inc."
    assert resp.json()["previous_close"] == 105.0

    assert client.get("/api/stock/data", params={"symbol": "ZZZZ"}).status_code == 500

    client.cookies.set("stock-mode", "false")
    assert client.get("/api/stock/data", params={"symbol": "AAPL"}).status_code == 400


def test_compare_symbols_as_plain_string(http_recorder):
    http_recorder.handler = polygon
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "AAPL", "1mo", "MSFT")

    assert result.ui["data"]["stock_symbols"] == ["AAPL", "MSFT"]
    assert len(http_recorder.requests) == 6


def malformed_details(request):
    if request.url.path.startswith("/v3/reference/tickers/"):
        return httpx.Response(200, json={"results": ["not", "a", "dict"]})
    return polygon(request)


def test_malformed_details_drop_the_symbol(http_recorder):
    http_recorder.handler = malformed_details
    result = run_stock(http_recorder, Settings(polygon_api_key="k"), "AAPL")
    assert result.ui is None
    assert result.content.startswith("No valid stock data found")


def test_malformed_details_raise_fetch_error(http_recorder):
    http_recorder.handler = malformed_details

    async def scenario():
        async with http_recorder.client() as http:
            return await fetch_stock_series(http, "k", "AAPL", "1mo", raise_errors=True)

    with pytest.raises(StockFetchError):
        asyncio.run(scenario())
