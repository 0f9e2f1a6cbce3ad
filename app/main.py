from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from app.core.logging import setup_logging
from app.core.init_db import init_db
from app.api.router import api_router
from app.api.webhooks import router as webhooks_router
from app.services.publisher import get_publisher_registry

setup_logging()
logger.info("Starting PushCart backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # flip every vendor still sharing from this process to inactive
    await get_publisher_registry().stop_all()
    logger.info("PushCart backend stopped")


app = FastAPI(
    title="PushCart Backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(webhooks_router)
app.include_router(api_router)

init_db()


@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
