import asyncio
import json

import httpx
import pytest

from labyrinth.config import Settings
from labyrinth.tools.search import (
    SearchConfigurationError,
    effective_depth,
    search,
    select_search_provider,
)


def run_search(recorder, settings, *args, **kwargs):
    async def scenario():
        async with recorder.client() as http:
            return await search(http, settings, *args, **kwargs)
    return asyncio.run(scenario())


def test_select_provider_prefers_configured():
    settings = Settings(search_api="exa", exa_api_key="k", tavily_api_key="t")
    assert select_search_provider(settings) == "exa"


def test_select_provider_falls_back_in_order():
    settings = Settings(search_api="linkup", exa_api_key="k", searxng_api_url="http://sx")
    assert select_search_provider(settings) == "exa"


def test_select_provider_without_credentials():
    with pytest.raises(SearchConfigurationError):
        select_search_provider(Settings())


def test_searxng_default_depth_forces_advanced():
    settings = Settings(searxng_default_depth="advanced")
    assert effective_depth("searxng", settings, "basic") == "advanced"
    assert effective_depth("tavily", settings, None) == "basic"


def test_search_without_keys_returns_error_result(http_recorder):
    result = run_search(http_recorder, Settings(), "abc")

    assert result.number_of_results == 1
    assert result.results[0].title == "Search Error"
    assert result.results[0].url == "#"
    assert result.query == "abc  "
    assert http_recorder.requests == []


def test_tavily_search_normalizes_response(http_recorder):
    def handler(request):
        body = json.loads(request.content)
        assert body["max_results"] == 5
        assert request.headers["Authorization"] == "Bearer tvly"
        return httpx.Response(200, json={
            "query": body["query"],
            "results": [{"title": "T", "url": "https://a.example", "content": "snippet", "score": 0.9}],
            "images": [
                {"url": "https://img.example/a b.png", "description": "a picture"},
                {"url": "https://img.example/c.png", "description": ""},
            ],
        })
    http_recorder.handler = handler

    result = run_search(http_recorder, Settings(tavily_api_key="tvly"), "python asyncio", max_results=3)

    assert [r.title for r in result.results] == ["T"]
    assert len(result.images) == 1
    assert result.images[0].url == "https://img.example/a%20b.png"


def test_tavily_missing_fields_are_empty(http_recorder):
    http_recorder.handler = lambda request: httpx.Response(200, json={"results": None})
    result = run_search(http_recorder, Settings(tavily_api_key="tvly"), "python asyncio")
    assert result.results == []
    assert result.images == []


def test_provider_error_is_reported_in_band(http_recorder):
    http_recorder.handler = lambda request: httpx.Response(502, text="bad gateway")
    result = run_search(http_recorder, Settings(tavily_api_key="tvly"), "python asyncio")

    assert result.results[0].title == "Search Error"
    assert "502" in result.results[0].content


def test_searxng_basic_and_advanced_parameters(http_recorder):
    seen = []

    def handler(request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={
            "query": "cats!",
            "number_of_results": 2,
            "results": [
                {"title": "Cats", "url": "https://cats.example", "content": "meow"},
                {"title": "Pic", "url": "https://pic.example", "img_src": "/img/cat.png"},
            ],
        })
    http_recorder.handler = handler

    basic = run_search(http_recorder, Settings(search_api="searxng", searxng_api_url="http://sx"), "cats!")
    run_search(
        http_recorder,
        Settings(search_api="searxng", searxng_api_url="http://sx", searxng_default_depth="advanced"),
        "cats!",
    )

    assert seen[0]["engines"] == "google,bing"
    assert seen[0]["safesearch"] == "1"
    assert seen[0]["time_range"] == "year"
    assert seen[1]["engines"] == "google,bing,duckduckgo,wikipedia"
    assert seen[1]["safesearch"] == "0"
    assert [r.title for r in basic.results] == ["Cats"]
    assert basic.images == ["http://sx/img/cat.png"]


def test_exa_uses_highlight_as_content(http_recorder):
    http_recorder.handler = lambda request: httpx.Response(200, json={
        "results": [{"title": "E", "url": "https://e.example", "highlights": ["best bit"], "text": "all"}],
    })
    result = run_search(http_recorder, Settings(search_api="exa", exa_api_key="exa"), "exa query")
    assert result.results[0].content == "best bit"
    assert http_recorder.requests[0].headers["x-api-key"] == "exa"


def test_linkup_sources_and_empty_fallback(http_recorder):
    http_recorder.handler = lambda request: httpx.Response(200, json={
        "answer": "42",
        "sources": [
            {"url": "https://l.example/page", "snippet": "found it"},
            {"url": "not a url", "content": "odd"},
            {"url": "https://l.example/nothing"},
        ],
    })
    settings = Settings(search_api="linkup", linkup_api_key="lk")
    result = run_search(http_recorder, settings, "meaning of life")

    assert [(r.title, r.url) for r in result.results] == [
        ("l.example", "https://l.example/page"),
        ("Unknown Source", "#"),
    ]

    http_recorder.handler = lambda request: httpx.Response(200, json={"sources": []})
    empty = run_search(http_recorder, settings, "meaning of life")
    assert empty.results[0].title == "No Results Found"


def test_search_route_requires_query(client):
    resp = client.post("/api/search", json={"query": ""})
    assert resp.status_code == 400


def test_search_route_without_provider_keys(client, settings):
    settings.tavily_api_key = None
    resp = client.post("/api/search", json={"query": "abc"})

    assert resp.status_code == 200
    assert resp.json()["results"][0]["title"] == "Search Error"
