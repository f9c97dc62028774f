import json
import logging
from typing import Annotated, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Cookie, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..agents.researcher import ResearchTurn, ToolContext
from ..chat_store import (
    ChatStoreError,
    NoChatsToClearError,
    clear_chats,
    get_chat,
    get_chats,
    get_shared_chat,
    share_chat,
)
from ..clients import http_link, openai_link, redis_link
from ..config import Settings, get_settings
from ..schemas import Chat, ChatMessage
from ..streaming import handle_stream_finish
from .auth import current_login_user, optional_login_user

logger = logging.getLogger(__name__)

router = APIRouter(
prefix="/api", tags=["chat"]
)

settings_link = Annotated[Settings, Depends(get_settings)]


class ChatBody(BaseModel):
    id: Optional[str] = None
    messages: List[ChatMessage] = []
    skip_related_questions: bool = False


def _event(payload: dict) -> str:
    return json.dumps(payload, default=str) + "\n"


@router.post("/chat")
async def chat(
    body: ChatBody,
    client: openai_link,
    http: http_link,
    redis: redis_link,
    settings: settings_link,
    current_user: optional_login_user,
    stock_mode: Annotated[Optional[str], Cookie(alias="stock-mode")] = None,
):
    if not body.messages:
        raise HTTPException(status_code=400, detail="messages must be a non-empty list")

    chat_id = body.id or uuid4().hex[:16]  # create if missing
    user_id = str(current_user.id) if current_user else None
    turn = ResearchTurn(
        client=client,
        model=settings.openai_model,
        ctx=ToolContext(http=http, settings=settings, stock_mode=stock_mode != "false"),
        max_steps=settings.chat_max_steps,
    )

    async def events():
        yield _event({"type": "start", "chatId": chat_id})
        try:
            async for event in turn.stream(body.messages):
                yield _event(event)
        except Exception as e:
            # the response has already started, so the failure is reported in-band
            logger.exception("Chat stream failed")
            yield _event({"type": "error", "error": str(e)})
            return

        async for event in handle_stream_finish(
            openai_client=client,
            redis_client=redis,
            questions_model=settings.questions_model,
            chat_id=chat_id,
            user_id=user_id,
            original_messages=body.messages,
            response_messages=turn.response_messages,
            answer_text=turn.text,
            save_history=settings.enable_save_chat_history,
            skip_related_questions=body.skip_related_questions,
        ):
            yield _event(event)
        yield _event({"type": "finish", "chatId": chat_id})

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.get("/chats", response_model=List[Chat], response_model_by_alias=True)
async def list_chats(redis: redis_link, current_user: current_login_user):
    try:
        return await get_chats(redis, str(current_user.id))
    except ChatStoreError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/chats/{chat_id}", response_model=Chat, response_model_by_alias=True)
async def read_chat(chat_id: str, redis: redis_link, current_user: current_login_user):
    chat = await get_chat(redis, chat_id, str(current_user.id))
    if chat is None:
        # not found and not yours look the same
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.delete("/chats")
async def delete_chats(redis: redis_link, current_user: current_login_user):
    try:
        await clear_chats(redis, str(current_user.id))
    except NoChatsToClearError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChatStoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True}


@router.post("/chats/{chat_id}/share", response_model=Chat, response_model_by_alias=True)
async def share(chat_id: str, redis: redis_link, current_user: current_login_user):
    chat = await share_chat(redis, chat_id, str(current_user.id))
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.get("/share/{chat_id}", response_model=Chat, response_model_by_alias=True)
async def read_shared_chat(chat_id: str, redis: redis_link):
    chat = await get_shared_chat(redis, chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat
