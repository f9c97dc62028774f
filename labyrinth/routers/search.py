import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..clients import http_link
from ..config import Settings, get_settings
from ..schemas import SearchResults
from ..tools.retrieve import retrieve
from ..tools.search import search

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["search"])

settings_link = Annotated[Settings, Depends(get_settings)]


class SearchBody(BaseModel):
    query: Optional[str] = None
    max_results: Optional[int] = 10
    search_depth: Optional[str] = "basic"
    include_domains: Optional[List[str]] = None
    exclude_domains: Optional[List[str]] = None


class RetrieveBody(BaseModel):
    url: Optional[str] = None


@router.post("/search", response_model=SearchResults)
async def search_route(body: SearchBody, http: http_link, settings: settings_link):
    if not body.query:
        raise HTTPException(status_code=400, detail="Query parameter is required")
    try:
        return await search(
            http,
            settings,
            body.query,
            body.max_results,
            body.search_depth,
            body.include_domains,
            body.exclude_domains,
        )
    except Exception as e:
        logger.exception("Search API error")
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error")


@router.post("/retrieve", response_model=SearchResults)
async def retrieve_route(body: RetrieveBody, http: http_link, settings: settings_link):
    if not body.url:
        raise HTTPException(status_code=400, detail="URL is required")
    results = await retrieve(http, settings, body.url)
    if results is None:
        raise HTTPException(status_code=404, detail="No content could be retrieved")
    return results
