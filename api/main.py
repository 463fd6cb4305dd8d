from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from core import settings
from core.db import Database
from core.vinted import VintedClient
from topics import repository as topic_repository
from topics.router import router as topics_router
from topics.service import TopicCache


def build_vinted_client() -> VintedClient:
    return VintedClient(
        settings.vinted_base_url(),
        user_agent=settings.vinted_user_agent(),
        session_cookie_name=settings.vinted_session_cookie_name(),
        cookie=settings.vinted_cookie(),
        timeout_s=settings.vinted_timeout_s(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.configure_logging()

    # A database we cannot reach at startup is fatal for the process.
    database = Database.from_env()
    await database.connect()
    try:
        await topic_repository.apply_schema(database)

        cache = TopicCache.from_env(topic_repository.TopicRepository(database), build_vinted_client())
        app.state.database = database
        app.state.topic_cache = cache
        try:
            yield
        finally:
            await cache.close()
    finally:
        await database.close()


app = FastAPI(lifespan=lifespan)

app.include_router(topics_router, tags=["topics"])


def get_database(request: Request) -> Database:
    return request.app.state.database


@app.get("/health")
async def health(database: Database = Depends(get_database)) -> dict:
    return await database.health()


@app.get("/")
def root() -> dict:
    return {"message": "vinted topic cache api"}
