"""
Shared data shapes.

Search results are normalized to one shape whatever provider produced them,
stock series are reshaped for the chart component, and chats are stored in
Redis using the camelCase field names of the key layout (``userId``,
``createdAt``, ``sharePath``).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class SearchResultItem(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""


class SearchResultImage(BaseModel):
    url: str
    description: str


class SearchResults(BaseModel):
    results: List[SearchResultItem] = []
    query: str = ""
    images: List[Union[SearchResultImage, str]] = []
    number_of_results: Optional[int] = None


class StockPrice(BaseModel):
    date: str
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None


class StockSeries(BaseModel):
    symbol: str
    name: str
    currency: str = "USD"
    current_price: Optional[float] = None
    previous_close: Optional[float] = None
    open: Optional[float] = None
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    fifty_two_week_low: Optional[float] = None
    market_cap: Optional[float] = None
    prices: List[StockPrice] = []


class ChartElement(BaseModel):
    label: str
    points: List[List[Any]] = []  # [iso_date, close]


class ChartData(BaseModel):
    type: str = "line"
    x_label: str = "Date"
    y_label: str = "Price"
    x_scale: str = "time"
    elements: List[ChartElement] = []


class StockToolResult(BaseModel):
    content: str
    ui: Optional[Dict[str, Any]] = None


class ChatMessage(BaseModel):
    role: str  # "user" | "assistant" | "data"
    content: Any = ""
    tool_invocations: Optional[List[Dict[str, Any]]] = Field(default=None, alias="toolInvocations")
    annotations: Optional[List[Any]] = None

    class Config:
        populate_by_name = True


class Chat(BaseModel):
    id: str
    title: str = ""
    user_id: str = Field(default="anonymous", alias="userId")
    path: str = ""
    messages: List[ChatMessage] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    share_path: Optional[str] = Field(default=None, alias="sharePath")

    class Config:
        populate_by_name = True
