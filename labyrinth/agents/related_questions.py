"""
Follow-up question generation.

The model is asked for a JSON object with exactly three question-mark
terminated queries. Malformed JSON gets one cheap repair (trailing commas are
stripped) before the attempt counts as failed; failed attempts are retried with
exponential backoff.
"""
import asyncio
import json
import logging
import re
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

logger = logging.getLogger(__name__)

QUESTION_COUNT = 3
MAX_RETRIES = 3
BACKOFF_BASE_SECONDS = 0.1

RELATED_SYSTEM = """You are an AI assistant tasked with generating exactly 3 follow-up questions based on the given content. Your response must strictly follow this format, with NO trailing commas:

{
  "items": [
    { "query": "First question here?" },
    { "query": "Second question here?" },
    { "query": "Third question here?" }
  ]
}

Requirements:
1. Generate EXACTLY 3 questions
2. Each question must end with a question mark
3. Questions must be complete sentences
4. No trailing commas in the JSON
5. Questions should be relevant to the content
6. Each question should explore a different aspect
7. Keep questions clear and concise

Important: Ensure the JSON is properly formatted with no trailing commas."""

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


class RelatedQuestionsError(RuntimeError):
    pass


def cleanup_json(raw: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", raw)


def parse_items(raw: Optional[str]) -> List[dict]:
    if not raw:
        raise RelatedQuestionsError("Model returned an empty response")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(cleanup_json(raw))
        except json.JSONDecodeError as e:
            raise RelatedQuestionsError("Could not parse response into valid format") from e

    items = parsed.get("items") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        raise RelatedQuestionsError("Could not parse response into valid format")
    return items


def validate_items(items: List[dict]) -> List[str]:
    queries = [item.get("query") if isinstance(item, dict) else None for item in items]
    if len(queries) != QUESTION_COUNT or not all(
        isinstance(q, str) and q.strip().endswith("?") for q in queries
    ):
        raise RelatedQuestionsError("Generated questions did not meet requirements")
    return [q.strip() for q in queries]


def backoff_delay(attempt: int) -> float:
    return 2 ** attempt * BACKOFF_BASE_SECONDS


async def _backoff(attempt: int) -> None:
    await asyncio.sleep(backoff_delay(attempt))


async def _request_items(client: AsyncOpenAI, model: str, content: str) -> Optional[str]:
    completion = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": RELATED_SYSTEM},
            {"role": "user", "content": f"Generate exactly 3 follow-up questions about: {content}"},
        ],
        response_format={"type": "json_object"},
        temperature=0.5,  # lower temperature keeps the format stable
    )
    return completion.choices[0].message.content


async def generate_questions_with_retry(
    client: AsyncOpenAI,
    model: str,
    content: str,
    max_retries: int = MAX_RETRIES,
) -> List[str]:
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            raw = await _request_items(client, model, content)
            return validate_items(parse_items(raw))
        except (RelatedQuestionsError, OpenAIError) as e:
            logger.warning("Attempt %d failed: %s", attempt + 1, e)
            last_error = e

        if attempt < max_retries - 1:
            await _backoff(attempt)

    raise RelatedQuestionsError(
        f"Failed to generate valid questions after {max_retries} attempts: {last_error}"
    ) from last_error
