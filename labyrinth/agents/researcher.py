"""
Streaming research turn.

The model answers with streamed text and may call ``search``, ``retrieve`` or
``get_stock_data``. Tool results are fed back and the model is called again
until it answers without tools or the step limit is hit. Every piece of the
turn is surfaced as an event dict so the router can write it to the client as
one NDJSON line.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Type

import httpx
from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..config import Settings
from ..schemas import ChatMessage
from ..tools.retrieve import retrieve
from ..tools.search import search
from ..tools.stock import DEFAULT_INTERVAL, INTERVALS, get_stock_data

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """Instructions:

You are a helpful AI assistant with access to real-time web search, content retrieval and stock market data.
Current date and time: {now}

1. Search for relevant information using the search tool when the question needs up-to-date facts
2. Use the retrieve tool to get detailed content from a specific URL the user provides
3. Use the get_stock_data tool for ANY question about stocks, stock prices or stock charts
4. Provide comprehensive and detailed responses based on the results
5. Cite sources as [number](url), matching the order of the search results
6. If results are not relevant or helpful, rely on your general knowledge
7. Answer in the language of the user's question
"""

TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "search",
            "description": "Search the web for information",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The query to search for"},
                    "max_results": {"type": "integer", "description": "The maximum number of results to return"},
                    "search_depth": {"type": "string", "enum": ["basic", "advanced"]},
                    "include_domains": {"type": "array", "items": {"type": "string"}},
                    "exclude_domains": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "retrieve",
            "description": "Retrieve content from the web",
            "parameters": {
                "type": "object",
                "properties": {"url": {"type": "string", "description": "The url to retrieve"}},
                "required": ["url"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_stock_data",
            "description": (
                "Get historical stock price data and display an interactive chart. Use this tool for ANY "
                "questions about stocks, stock prices, or stock charts."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "symbol": {"type": "string", "description": "The stock symbol, e.g. AAPL"},
                    "interval": {"type": "string", "enum": list(INTERVALS), "default": DEFAULT_INTERVAL},
                    "compare_symbols": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["symbol"],
            },
        },
    },
]


class SearchArgs(BaseModel):
    query: str
    max_results: Optional[int] = Field(None, ge=1, le=50)
    search_depth: Optional[Literal["basic", "advanced"]] = None
    include_domains: Optional[List[str]] = None
    exclude_domains: Optional[List[str]] = None


class RetrieveArgs(BaseModel):
    url: str


class StockArgs(BaseModel):
    symbol: str
    interval: str = DEFAULT_INTERVAL
    compare_symbols: List[str] = []

    @field_validator("compare_symbols", mode="before")
    @classmethod
    def _single_symbol(cls, value: Any) -> Any:
        # models sometimes send one ticker as a bare string
        if isinstance(value, str):
            return [value]
        return value if value is not None else []


TOOL_ARGS: Dict[str, Type[BaseModel]] = {
    "search": SearchArgs,
    "retrieve": RetrieveArgs,
    "get_stock_data": StockArgs,
}


@dataclass
class ToolContext:
    http: httpx.AsyncClient
    settings: Settings
    stock_mode: bool = True


async def execute_tool(name: str, args: Dict[str, Any], ctx: ToolContext) -> Any:
    schema = TOOL_ARGS.get(name)
    if schema is None:
        return {"error": f"Unknown tool: {name}"}
    try:
        parsed = schema.model_validate(args)
    except ValidationError as e:
        logger.warning("Tool %s called with invalid arguments: %s", name, e)
        # handed back to the model so it can retry with corrected arguments
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
        )
        return {"error": f"Invalid arguments for {name}: {problems}"}

    if isinstance(parsed, SearchArgs):
        result = await search(
            ctx.http,
            ctx.settings,
            parsed.query,
            parsed.max_results,
            parsed.search_depth,
            parsed.include_domains,
            parsed.exclude_domains,
        )
        return result.model_dump(mode="json")
    if isinstance(parsed, RetrieveArgs):
        result = await retrieve(ctx.http, ctx.settings, parsed.url)
        return result.model_dump(mode="json") if result else None
    result = await get_stock_data(
        ctx.http,
        ctx.settings,
        parsed.symbol,
        parsed.interval,
        parsed.compare_symbols,
        stock_mode=ctx.stock_mode,
    )
    return result.model_dump(mode="json")


def to_model_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """Project stored chat messages onto the chat completions format."""
    converted = []
    for message in messages:
        if message.role not in ("user", "assistant", "system"):
            continue
        content = message.content if isinstance(message.content, str) else json.dumps(message.content)
        converted.append({"role": message.role, "content": content})
    return converted


def _tool_content(name: str, result: Any) -> str:
    # the stock tool already produces prose for the model
    if name == "get_stock_data" and isinstance(result, dict):
        return result.get("content", "")
    return json.dumps(result)


@dataclass
class ResearchTurn:
    client: AsyncOpenAI
    model: str
    ctx: ToolContext
    max_steps: int = 5
    response_messages: List[ChatMessage] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(
            m.content for m in self.response_messages if m.role == "assistant" and isinstance(m.content, str)
        ).strip()

    async def stream(self, messages: List[ChatMessage]) -> AsyncIterator[Dict[str, Any]]:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        conversation = [{"role": "system", "content": SYSTEM_PROMPT.format(now=now)}]
        conversation += to_model_messages(messages)

        for step in range(self.max_steps):
            text, calls = "", {}
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=conversation,
                tools=TOOLS,
                stream=True,
            )
            async for chunk in completion:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    text += delta.content
                    yield {"type": "text", "text": delta.content}
                for call in delta.tool_calls or []:
                    entry = calls.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        entry["id"] = call.id
                    if call.function is not None:
                        entry["name"] += call.function.name or ""
                        entry["arguments"] += call.function.arguments or ""

            if not calls:
                self.response_messages.append(ChatMessage(role="assistant", content=text))
                return

            ordered = [calls[i] for i in sorted(calls)]
            conversation.append(
                {
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {"id": c["id"], "type": "function", "function": {"name": c["name"], "arguments": c["arguments"]}}
                        for c in ordered
                    ],
                }
            )

            invocations = []
            for call in ordered:
                try:
                    args = json.loads(call["arguments"] or "{}")
                except json.JSONDecodeError:
                    logger.warning("Tool %s called with invalid arguments: %r", call["name"], call["arguments"])
                    args = {}

                yield {"type": "tool-call", "toolCallId": call["id"], "toolName": call["name"], "args": args}
                result = await execute_tool(call["name"], args, self.ctx)
                yield {"type": "tool-result", "toolCallId": call["id"], "toolName": call["name"], "result": result}

                invocations.append(
                    {
                        "state": "result",
                        "step": step,
                        "toolCallId": call["id"],
                        "toolName": call["name"],
                        "args": args,
                        "result": result,
                    }
                )
                conversation.append(
                    {"role": "tool", "tool_call_id": call["id"], "content": _tool_content(call["name"], result)}
                )

            self.response_messages.append(ChatMessage(role="assistant", content=text, tool_invocations=invocations))

        logger.info("Research turn stopped after %d steps", self.max_steps)
