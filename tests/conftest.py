import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labyrinth.clients import get_http, get_openai, get_redis
from labyrinth.config import Settings, get_settings
from labyrinth.database import Base, get_db
from labyrinth.main import app
from labyrinth.mailer import get_mailer


# ---- fakes -----------------------------------------------------------------

def completion(content):
    """A non-streaming chat completion carrying ``content``."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def text_chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text, tool_calls=None))])


def tool_chunk(index, call_id=None, name=None, arguments=None):
    call = SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[call]))])


class _Stream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


class FakeOpenAI:
    """Replays scripted replies for chat.completions.create, in call order.

    A reply is a string (JSON-mode completion), a list of chunks (stream) or
    an exception instance to raise.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.replies:
            raise AssertionError("unexpected OpenAI call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if kwargs.get("stream"):
            return _Stream(reply)
        return completion(reply)


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})


class HttpRecorder:
    """Routes outgoing httpx requests to ``handler`` and keeps them for asserts."""

    def __init__(self):
        self.requests = []
        self.handler = lambda request: httpx.Response(500, text="no handler")

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# ---- fixtures --------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        openai_api_key="sk-test",
        jwt_secret="test-secret",
        enable_save_chat_history=True,
        polygon_api_key="poly-key",
        tavily_api_key="tvly-key",
    )


@pytest.fixture
def db_session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def openai_fake():
    return FakeOpenAI()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def http_recorder():
    return HttpRecorder()


@pytest.fixture
def client(settings, db_session_factory, fake_redis, openai_fake, mailer, http_recorder):
    def override_db():
        db = db_session_factory()
        try:
            yield db
        finally:
            db.close()

    http = http_recorder.client()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_openai] = lambda: openai_fake
    app.dependency_overrides[get_http] = lambda: http
    app.dependency_overrides[get_mailer] = lambda: mailer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    def _login(email="ada@example.com", password="s3cret-pass"):
        client.post("/auth/register", json={"name": "Ada", "email": email, "password": password})
        resp = client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _login
