import json
import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException
from pydantic import BaseModel

from ..agents.related_questions import RelatedQuestionsError, generate_questions_with_retry
from ..clients import openai_link
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["related"])

ENABLED_PROVIDERS = ("openai",)


class RelatedBody(BaseModel):
    content: Optional[str] = None


class RelatedOut(BaseModel):
    questions: List[str]


def resolve_model(settings: Settings, selected_model: Optional[str]) -> str:
    """Pick the model named by the selectedModel cookie, if it names an enabled one."""
    if not selected_model:
        return settings.questions_model
    try:
        selected = json.loads(selected_model)
    except json.JSONDecodeError:
        logger.warning("Failed to parse selected model cookie: %r", selected_model)
        return settings.questions_model
    if not isinstance(selected, dict):
        return settings.questions_model

    provider = selected.get("providerId")
    if provider not in ENABLED_PROVIDERS or not settings.openai_api_key or selected.get("enabled") is False:
        raise HTTPException(status_code=404, detail=f"Selected provider {provider} is not enabled")
    return selected.get("id") or settings.questions_model


@router.post("/related-questions", response_model=RelatedOut)
async def related_questions(
    body: RelatedBody,
    client: openai_link,
    settings: Annotated[Settings, Depends(get_settings)],
    selected_model: Annotated[Optional[str], Cookie(alias="selectedModel")] = None,
):
    if not body.content:
        raise HTTPException(status_code=400, detail="Content is required")

    model = resolve_model(settings, selected_model)
    try:
        questions = await generate_questions_with_retry(client, model, body.content)
    except RelatedQuestionsError as e:
        logger.error("Error generating related questions: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to generate related questions: {e}")
    return {"questions": questions}
