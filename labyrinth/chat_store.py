"""
Chat transcripts in Redis.

    chat:{id}                 hash, ``messages`` JSON-encoded
    user:v2:chat:{user_id}    sorted set of chat keys scored by first save time (ms)
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .schemas import Chat

logger = logging.getLogger(__name__)

CHAT_VERSION = "v2"


class ChatStoreError(RuntimeError):
    pass


class NoChatsToClearError(ChatStoreError):
    pass


def chat_key(chat_id: str) -> str:
    return f"chat:{chat_id}"


def user_chat_key(user_id: str) -> str:
    return f"user:{CHAT_VERSION}:chat:{user_id}"


def _load_messages(raw: Any) -> List[Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    return raw if isinstance(raw, list) else []


def hydrate(raw: Dict[str, str]) -> Optional[Chat]:
    """Build a Chat from a stored hash; None for empty or unusable entries."""
    if not raw or "id" not in raw:
        return None
    data: Dict[str, Any] = dict(raw)
    data["messages"] = _load_messages(data.get("messages"))
    try:
        return Chat.model_validate(data)
    except ValueError as e:
        logger.warning("Skipping malformed chat %s: %s", raw.get("id"), e)
        return None


def dehydrate(chat: Chat) -> Dict[str, str]:
    payload = chat.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload["messages"] = json.dumps(payload.get("messages", []))
    return {k: str(v) for k, v in payload.items()}


async def get_chats(client: redis.Redis, user_id: Optional[str]) -> List[Chat]:
    if not user_id:
        return []

    try:
        keys = await client.zrange(user_chat_key(user_id), 0, -1, desc=True)
        if not keys:
            return []
        pipe = client.pipeline(transaction=False)
        for key in keys:
            pipe.hgetall(key)
        rows = await pipe.execute()
    except RedisError as e:
        logger.error("Failed to fetch chats from Redis: %s", e)
        raise ChatStoreError("Failed to fetch chat history") from e

    # entries whose hash is gone are left out of the history
    return [chat for chat in (hydrate(row) for row in rows) if chat is not None]


async def _load(client: redis.Redis, chat_id: str) -> Optional[Chat]:
    return hydrate(await client.hgetall(chat_key(chat_id)))


async def get_chat(client: redis.Redis, chat_id: str, user_id: Optional[str]) -> Optional[Chat]:
    if not user_id:
        return None
    chat = await _load(client, chat_id)
    if chat is None or chat.user_id != user_id:
        return None
    return chat


async def save_chat(client: redis.Redis, chat: Chat, user_id: Optional[str]) -> Optional[list]:
    if not user_id:
        logger.warning("Attempted to save chat without authentication")
        return None

    key = chat_key(chat.id)
    try:
        existing = await client.hgetall(key)
        if existing and existing.get("userId") not in (None, user_id):
            logger.warning("Refusing to overwrite chat %s owned by another user", chat.id)
            return None

        to_save = chat.model_copy(update={"user_id": user_id, "updated_at": datetime.now(timezone.utc)})

        pipe = client.pipeline(transaction=True)
        if not existing:
            pipe.zadd(user_chat_key(user_id), {key: int(time.time() * 1000)}, nx=True)
        pipe.hset(key, mapping=dehydrate(to_save))
        return await pipe.execute()
    except RedisError as e:
        logger.error("Failed to save chat: %s", e)
        raise ChatStoreError("Failed to save chat") from e


async def clear_chats(client: redis.Redis, user_id: str) -> None:
    index = user_chat_key(user_id)
    try:
        keys = await client.zrange(index, 0, -1)
        if not keys:
            raise NoChatsToClearError("No chats to clear")

        pipe = client.pipeline(transaction=True)
        for key in keys:
            pipe.delete(key)
        pipe.delete(index)
        await pipe.execute()
    except RedisError as e:
        logger.error("Error clearing chats: %s", e)
        raise ChatStoreError("Failed to clear chat history") from e


async def get_shared_chat(client: redis.Redis, chat_id: str) -> Optional[Chat]:
    chat = await _load(client, chat_id)
    if chat is None or not chat.share_path:
        return None
    return chat


async def share_chat(client: redis.Redis, chat_id: str, user_id: Optional[str]) -> Optional[Chat]:
    chat = await get_chat(client, chat_id, user_id)
    if chat is None:
        return None

    share_path = f"/share/{chat_id}"
    await client.hset(chat_key(chat_id), "sharePath", share_path)
    return chat.model_copy(update={"share_path": share_path})
