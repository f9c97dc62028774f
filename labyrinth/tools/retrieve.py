"""Page content retrieval through LinkUp, Jina Reader or Tavily Extract."""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..config import Settings
from ..schemas import SearchResultItem, SearchResults
from .search import LINKUP_SEARCH_URL

logger = logging.getLogger(__name__)

JINA_READER_URL = "https://r.jina.ai/"
TAVILY_EXTRACT_URL = "https://api.tavily.com/extract"

CONTENT_CHARACTER_LIMIT = 10000


def _single(title: str, content: str, url: str) -> SearchResults:
    return SearchResults(
        results=[SearchResultItem(title=title, content=content, url=url)],
        query="",
        images=[],
    )


async def fetch_jina_reader_data(http: httpx.AsyncClient, api_key: str, url: str) -> Optional[SearchResults]:
    try:
        response = await http.get(
            f"{JINA_READER_URL}{url}",
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {api_key}",
                "X-With-Generated-Alt": "true",
            },
        )
        data = response.json().get("data")
        if not data:
            return None
        content = (data.get("content") or "")[:CONTENT_CHARACTER_LIMIT]
        return _single(data.get("title") or "", content, data.get("url") or url)
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.error("Jina Reader API error: %s", e)
        return None


async def fetch_tavily_extract_data(http: httpx.AsyncClient, api_key: str, url: str) -> Optional[SearchResults]:
    try:
        response = await http.post(
            TAVILY_EXTRACT_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={"urls": [url]},
        )
        results = response.json().get("results")
        if not results:
            return None
        result = results[0]
        content = (result.get("raw_content") or "")[:CONTENT_CHARACTER_LIMIT]
        return _single(content[:100], content, result.get("url") or url)
    except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
        logger.error("Tavily Extract API error: %s", e)
        return None


def _best_source(sources: List[Dict[str, Any]], hostname: str) -> Optional[Dict[str, Any]]:
    for source in sources:
        if source.get("url") and urlparse(source["url"]).hostname == hostname:
            return source
    return sources[0] if sources else None


async def fetch_linkup_data(http: httpx.AsyncClient, api_key: str, url: str) -> SearchResults:
    logger.info("Using LinkUp to retrieve content from URL: %s", url)

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        logger.error("Invalid URL format: %s", url)
        return _single(
            "Invalid URL",
            f'The URL "{url}" is not valid. Please provide a valid http or https URL.',
            "#",
        )

    try:
        response = await http.post(
            LINKUP_SEARCH_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "q": f"Information about {url}",
                "depth": "deep",
                "outputType": "sourcedAnswer",
                "includeImages": False,
                "includeDomains": [parsed.hostname],
            },
        )
        if not response.is_success:
            logger.error("LinkUp API error (%s): %s", response.status_code, response.text[:500])
            return _single(
                "Error Retrieving Content",
                f"Failed to retrieve content from {url}: {response.status_code} {response.reason_phrase}",
                url,
            )

        data = response.json()
        sources = [s for s in data.get("sources") or [] if isinstance(s, dict)]
        if not data.get("answer") and not sources:
            logger.info("No content found from LinkUp for URL: %s", url)
            return _single("No Content Found", f"No content could be retrieved from {url}", url)

        content = data.get("answer") or ""
        title = f"Content from {url}"
        best = _best_source(sources, parsed.hostname)
        if best:
            title = best.get("title") or title
            extra = best.get("content") or best.get("snippet")
            if extra:
                content = f"{content}\n\n{extra}" if content else extra

        content = content[:CONTENT_CHARACTER_LIMIT]
        return _single(title, content or f"No detailed content available for {url}", url)
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.error("LinkUp API error for URL retrieval: %s", e)
        return _single("Error", f"Failed to retrieve content: {e}", "#")


async def retrieve(http: httpx.AsyncClient, settings: Settings, url: str) -> Optional[SearchResults]:
    if settings.search_api == "linkup" and settings.linkup_api_key:
        return await fetch_linkup_data(http, settings.linkup_api_key, url)
    if settings.jina_api_key:
        return await fetch_jina_reader_data(http, settings.jina_api_key, url)
    if settings.tavily_api_key:
        return await fetch_tavily_extract_data(http, settings.tavily_api_key, url)

    logger.error("No API keys configured for content retrieval")
    return None
