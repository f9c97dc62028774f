from typing import Annotated

import httpx
import redis.asyncio as redis
from fastapi import Depends, Request
from openai import AsyncOpenAI

from .config import Settings


# Shared clients live on app.state; they are opened and closed by the app lifespan.

def build_openai(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=settings.openai_api_key or "missing")


def build_http() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))


def build_redis(settings: Settings) -> redis.Redis:
    return redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


def get_openai(request: Request) -> AsyncOpenAI:
    return request.app.state.openai


def get_http(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_redis(request: Request) -> redis.Redis:
    return request.app.state.redis


openai_link = Annotated[AsyncOpenAI, Depends(get_openai)]
http_link = Annotated[httpx.AsyncClient, Depends(get_http)]
redis_link = Annotated[redis.Redis, Depends(get_redis)]
