import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI


from starlette.middleware.cors import CORSMiddleware

from .clients import build_http, build_openai, build_redis
from .config import get_settings
from .database import init_db
from .routers import auth, chats, oauth, related, search, stock


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("labyrinth")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()  # create tables
    app.state.openai = build_openai(settings)
    app.state.http = build_http()
    app.state.redis = build_redis(settings)
    logger.info("Labyrinth started (search api: %s)", settings.search_api)
    try:
        yield
    finally:
        await app.state.http.aclose()
        await app.state.redis.aclose()
        await app.state.openai.close()


app = FastAPI(title="Labyrinth – conversational search", lifespan=lifespan)

app.include_router(auth.authRoutes)
app.include_router(auth.passwordRoutes)
app.include_router(oauth.router)
app.include_router(search.router)
app.include_router(stock.router)
app.include_router(related.router)
app.include_router(chats.router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root() -> dict:
    return {"msg": "welcome to labyrinth"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
