"""Work done once the model has finished streaming a chat turn."""
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from openai import AsyncOpenAI
from redis.exceptions import RedisError

from .agents.related_questions import RelatedQuestionsError, generate_questions_with_retry
from .chat_store import ChatStoreError, get_chat, save_chat
from .schemas import Chat, ChatMessage

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"

SAVE_FAILED_TEXT = "Note: Your chat history could not be saved due to a technical issue."


def related_annotation(questions: List[str]) -> Dict[str, Any]:
    return {"type": "related-questions", "data": {"items": [{"query": q} for q in questions]}}


def build_transcript(
    original: List[ChatMessage],
    response: List[ChatMessage],
    annotations: List[ChatMessage],
) -> List[ChatMessage]:
    # annotations go right before the final assistant message
    return [*original, *response[:-1], *annotations, *response[-1:]]


async def handle_stream_finish(
    *,
    openai_client: AsyncOpenAI,
    redis_client: redis.Redis,
    questions_model: str,
    chat_id: str,
    user_id: Optional[str],
    original_messages: List[ChatMessage],
    response_messages: List[ChatMessage],
    answer_text: str,
    save_history: bool,
    skip_related_questions: bool = False,
) -> AsyncIterator[Dict[str, Any]]:
    """Yield annotation events, then persist the transcript when enabled."""
    annotations: List[ChatMessage] = []

    if not skip_related_questions and answer_text:
        # loading state for the client
        yield {"type": "annotation", "annotation": related_annotation([])}
        try:
            questions = await generate_questions_with_retry(openai_client, questions_model, answer_text)
        except RelatedQuestionsError as e:
            logger.error("Error generating related questions: %s", e)
        else:
            annotation = related_annotation(questions)
            yield {"type": "annotation", "annotation": annotation}
            annotations.append(ChatMessage(role="data", content=annotation))

    if not save_history:
        return

    owner = user_id or ANONYMOUS_USER
    try:
        saved = await get_chat(redis_client, chat_id, owner)
        if saved is None:
            first = original_messages[0].content if original_messages else ""
            saved = Chat(
                id=chat_id,
                title=first if isinstance(first, str) else "",
                user_id=owner,
                path=f"/search/{chat_id}",
            )
        chat = saved.model_copy(
            update={"messages": build_transcript(original_messages, response_messages, annotations)}
        )
        if await save_chat(redis_client, chat, owner) is None:
            raise ChatStoreError(f"Chat {chat_id} was not saved")
    except (ChatStoreError, RedisError) as e:
        logger.error("Failed to save chat history: %s", e)
        yield {"type": "annotation", "annotation": {"type": "system-message", "text": SAVE_FAILED_TEXT}}
