"""
Web search connector.

``search`` fans a query out to exactly one provider picked from configuration
(Tavily, Exa, SearXNG or LinkUp) and maps its native response onto
``SearchResults``. Provider failures never escape: they come back as a single
"Search Error" result so the chat turn that asked for them can go on.
"""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..config import SEARCH_PROVIDERS, Settings
from ..schemas import SearchResultImage, SearchResultItem, SearchResults

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
EXA_SEARCH_URL = "https://api.exa.ai/search"
LINKUP_SEARCH_URL = "https://api.linkup.so/v1/search"

MIN_QUERY_LENGTH = 5

SEARXNG_BASIC = {"time_range": "year", "safesearch": "1", "engines": "google,bing"}
SEARXNG_ADVANCED = {"time_range": "", "safesearch": "0", "engines": "google,bing,duckduckgo,wikipedia"}


class SearchConfigurationError(RuntimeError):
    pass


class SearchProviderError(RuntimeError):
    pass


def select_search_provider(settings: Settings) -> str:
    preferred = settings.search_api if settings.search_api in SEARCH_PROVIDERS else "tavily"
    if settings.has_search_credential(preferred):
        return preferred

    for provider in SEARCH_PROVIDERS:
        if provider != preferred and settings.has_search_credential(provider):
            logger.info("%s credentials not found, falling back to %s", preferred, provider)
            return provider
    raise SearchConfigurationError("No search API keys configured")


def effective_depth(provider: str, settings: Settings, search_depth: Optional[str]) -> str:
    if provider == "searxng" and settings.searxng_default_depth == "advanced":
        return "advanced"
    return search_depth or "basic"


def sanitize_url(url: str) -> str:
    return "%20".join(url.split())


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _checked_json(response: httpx.Response, provider: str) -> Dict[str, Any]:
    if not response.is_success:
        logger.error("%s API error (%s): %s", provider, response.status_code, response.text[:500])
        raise SearchProviderError(f"{provider} API error: {response.status_code} {response.reason_phrase}")
    data = response.json()
    if not isinstance(data, dict):
        raise SearchProviderError(f"{provider} API returned an unexpected payload")
    return data


async def tavily_search(
    http: httpx.AsyncClient,
    api_key: str,
    query: str,
    max_results: int,
    search_depth: str,
    include_domains: List[str],
    exclude_domains: List[str],
) -> SearchResults:
    response = await http.post(
        TAVILY_SEARCH_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={
            "query": query,
            "max_results": max(max_results, 5),
            "search_depth": search_depth,
            "include_images": True,
            "include_image_descriptions": True,
            "include_answers": True,
            "include_domains": include_domains,
            "exclude_domains": exclude_domains,
        },
    )
    data = _checked_json(response, "Tavily")

    images = []
    for image in _as_list(data.get("images")):
        # only described images are useful to the answer
        if isinstance(image, dict) and image.get("url") and image.get("description"):
            images.append(SearchResultImage(url=sanitize_url(image["url"]), description=image["description"]))

    results = [
        SearchResultItem(title=r.get("title") or "", url=r.get("url") or "", content=r.get("content") or "")
        for r in _as_list(data.get("results"))
        if isinstance(r, dict)
    ]
    return SearchResults(
        results=results,
        query=data.get("query") or query,
        images=images,
        number_of_results=len(results),
    )


async def exa_search(
    http: httpx.AsyncClient,
    api_key: str,
    query: str,
    max_results: int,
    include_domains: List[str],
    exclude_domains: List[str],
) -> SearchResults:
    body: Dict[str, Any] = {
        "query": query,
        "numResults": max_results,
        "contents": {"text": True, "highlights": True},
    }
    if include_domains:
        body["includeDomains"] = include_domains
    if exclude_domains:
        body["excludeDomains"] = exclude_domains

    response = await http.post(EXA_SEARCH_URL, headers={"x-api-key": api_key}, json=body)
    data = _checked_json(response, "Exa")

    results = []
    for r in _as_list(data.get("results")):
        if not isinstance(r, dict):
            continue
        highlights = _as_list(r.get("highlights"))
        content = highlights[0] if highlights else r.get("text") or ""
        results.append(SearchResultItem(title=r.get("title") or "", url=r.get("url") or "", content=content))
    return SearchResults(results=results, query=query, images=[], number_of_results=len(results))


async def searxng_search(
    http: httpx.AsyncClient,
    api_url: str,
    query: str,
    max_results: int,
    search_depth: str,
) -> SearchResults:
    api_url = api_url.rstrip("/")
    params = {"q": query, "format": "json", "categories": "general,images"}
    params.update(SEARXNG_ADVANCED if search_depth == "advanced" else SEARXNG_BASIC)

    response = await http.get(f"{api_url}/search", params=params, headers={"Accept": "application/json"})
    data = _checked_json(response, "SearXNG")

    raw = [r for r in _as_list(data.get("results")) if isinstance(r, dict)]
    general = [r for r in raw if not r.get("img_src")][:max_results]
    pictures = [r for r in raw if r.get("img_src")][:max_results]

    images = []
    for r in pictures:
        src = r["img_src"]
        images.append(src if src.startswith("http") else f"{api_url}{src}")

    return SearchResults(
        results=[
            SearchResultItem(title=r.get("title") or "", url=r.get("url") or "", content=r.get("content") or "")
            for r in general
        ],
        query=data.get("query") or query,
        images=images,
        number_of_results=data.get("number_of_results"),
    )


async def linkup_search(
    http: httpx.AsyncClient,
    api_key: str,
    query: str,
    max_results: int,
    search_depth: str,
    include_domains: List[str],
    exclude_domains: List[str],
) -> SearchResults:
    body: Dict[str, Any] = {
        "q": query,
        "depth": "deep" if search_depth == "advanced" else "standard",
        "outputType": "sourcedAnswer",
        "includeImages": False,
    }
    if include_domains:
        body["includeDomains"] = include_domains
    if exclude_domains:
        body["excludeDomains"] = exclude_domains

    logger.info("LinkUp request: query=%r depth=%s max_results=%s", query, body["depth"], max_results)
    response = await http.post(LINKUP_SEARCH_URL, headers={"Authorization": f"Bearer {api_key}"}, json=body)
    data = _checked_json(response, "LinkUp")
    if data.get("error"):
        raise SearchProviderError(f"LinkUp API returned error: {data['error']}")

    results: List[SearchResultItem] = []
    sources = [
        s for s in _as_list(data.get("sources"))
        if isinstance(s, dict) and s.get("url") and (s.get("snippet") or s.get("content"))
    ]
    for source in sources[:max_results]:
        title = source.get("title")
        parsed = urlparse(source["url"])
        if parsed.scheme and parsed.netloc:
            url = source["url"]
            title = title or parsed.hostname
        else:
            logger.warning("Invalid URL in source: %s", source["url"])
            url = "#"
            title = title or "Unknown Source"
        results.append(SearchResultItem(title=title, url=url, content=source.get("snippet") or source.get("content")))

    if not results:
        results.append(
            SearchResultItem(
                title="No Results Found",
                url="#",
                content="No relevant information was found for your query. Please try different search terms.",
            )
        )
    return SearchResults(results=results, query=query, images=[], number_of_results=len(results))


def search_error(query: str, message: str) -> SearchResults:
    return SearchResults(
        results=[
            SearchResultItem(
                title="Search Error",
                url="#",
                content=f"An error occurred while searching: {message}",
            )
        ],
        query=query,
        images=[],
        number_of_results=1,
    )


async def search(
    http: httpx.AsyncClient,
    settings: Settings,
    query: str,
    max_results: Optional[int] = 10,
    search_depth: Optional[str] = "basic",
    include_domains: Optional[List[str]] = None,
    exclude_domains: Optional[List[str]] = None,
) -> SearchResults:
    filled_query = query.ljust(MIN_QUERY_LENGTH)
    max_results = max_results or 10
    include_domains = include_domains or []
    exclude_domains = exclude_domains or []

    try:
        provider = select_search_provider(settings)
        depth = effective_depth(provider, settings, search_depth)
        logger.info("Using search API: %s, search depth: %s", provider, depth)

        if provider == "tavily":
            result = await tavily_search(
                http, settings.tavily_api_key, filled_query, max_results, depth, include_domains, exclude_domains
            )
        elif provider == "exa":
            result = await exa_search(
                http, settings.exa_api_key, filled_query, max_results, include_domains, exclude_domains
            )
        elif provider == "linkup":
            result = await linkup_search(
                http, settings.linkup_api_key, filled_query, max_results, depth, include_domains, exclude_domains
            )
        else:
            result = await searxng_search(http, settings.searxng_api_url, filled_query, max_results, depth)
    except (SearchConfigurationError, SearchProviderError, httpx.HTTPError, ValueError) as e:
        logger.error("Search API error: %s", e)
        return search_error(filled_query, str(e) or e.__class__.__name__)

    logger.info("completed search")
    return result
