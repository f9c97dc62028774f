# labyrinth/config.py
import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


SEARCH_PROVIDERS = ("tavily", "exa", "searxng", "linkup")


class Settings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    related_questions_model: Optional[str] = None

    search_api: str = "tavily"
    tavily_api_key: Optional[str] = None
    exa_api_key: Optional[str] = None
    searxng_api_url: Optional[str] = None
    searxng_default_depth: Optional[str] = None
    linkup_api_key: Optional[str] = None
    jina_api_key: Optional[str] = None
    polygon_api_key: Optional[str] = None

    redis_url: str = "redis://localhost:6379/0"
    enable_save_chat_history: bool = False
    chat_max_steps: int = 5

    database_url: str = "sqlite:///./labyrinth.db"
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    resend_api_key: Optional[str] = None
    mail_from: str = "Labyrinth <noreply@labyrinth.local>"
    app_base_url: str = "http://localhost:3000"

    cors_origins: List[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    def has_search_credential(self, provider: str) -> bool:
        credentials = {
            "tavily": self.tavily_api_key,
            "exa": self.exa_api_key,
            "searxng": self.searxng_api_url,
            "linkup": self.linkup_api_key,
        }
        return bool(credentials.get(provider))

    def oauth_credentials(self, provider: str) -> Optional[tuple]:
        pairs = {
            "github": (self.github_client_id, self.github_client_secret),
            "google": (self.google_client_id, self.google_client_secret),
        }
        client_id, secret = pairs.get(provider, (None, None))
        if not client_id or not secret:
            return None
        return client_id, secret

    @property
    def questions_model(self) -> str:
        return self.related_questions_model or self.openai_model


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    # Load .env once here
    load_dotenv()

    values = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_model": os.getenv("OPENAI_MODEL"),
        "related_questions_model": os.getenv("RELATED_QUESTIONS_MODEL"),
        "search_api": os.getenv("SEARCH_API"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "exa_api_key": os.getenv("EXA_API_KEY"),
        "searxng_api_url": os.getenv("SEARXNG_API_URL"),
        "searxng_default_depth": os.getenv("SEARXNG_DEFAULT_DEPTH"),
        "linkup_api_key": os.getenv("LINKUP_API_KEY"),
        "jina_api_key": os.getenv("JINA_API_KEY"),
        "polygon_api_key": os.getenv("POLYGON_API_KEY"),
        "redis_url": os.getenv("REDIS_URL"),
        "enable_save_chat_history": os.getenv("ENABLE_SAVE_CHAT_HISTORY") == "true",
        "chat_max_steps": os.getenv("CHAT_MAX_STEPS"),
        "database_url": os.getenv("DATABASE_URL"),
        "jwt_secret": os.getenv("JWT_SECRET"),
        "jwt_algorithm": os.getenv("JWT_ALGORITHM"),
        "access_token_expire_minutes": os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES"),
        "github_client_id": os.getenv("GITHUB_CLIENT_ID"),
        "github_client_secret": os.getenv("GITHUB_CLIENT_SECRET"),
        "google_client_id": os.getenv("GOOGLE_CLIENT_ID"),
        "google_client_secret": os.getenv("GOOGLE_CLIENT_SECRET"),
        "resend_api_key": os.getenv("RESEND_API_KEY"),
        "mail_from": os.getenv("MAIL_FROM"),
        "app_base_url": os.getenv("APP_BASE_URL"),
        "cors_origins": _split(os.getenv("CORS_ORIGINS")),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    # unset variables fall back to the model defaults
    return Settings(**{k: v for k, v in values.items() if v is not None})
