# labyrinth/database.py
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from .config import get_settings

SQLALCHEMY_DB_URL = get_settings().database_url  # ./labyrinth.db unless DATABASE_URL says otherwise


def _connect_args(url: str) -> dict:
    # SQLite connections are shared with FastAPI's threadpool
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


engine = create_engine(
    SQLALCHEMY_DB_URL,
    connect_args=_connect_args(SQLALCHEMY_DB_URL),
    future=True,
    echo=False,  # set True to log SQL in dev
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)
Base = declarative_base()


def init_db() -> None:
    """Create missing tables; users are the only relational data."""
    from . import models  # noqa: F401  registers Users on Base

    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
