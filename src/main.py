"""Entry point for the ConversationRelay voice agent service."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from api.routes import router as api_router
from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
for noisy in ("httpx", "openai"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

app = FastAPI(
    title="ConversationRelay Voice Agent",
    description="Bridges Twilio ConversationRelay calls with a streaming language model.",
)
app.include_router(api_router, prefix="/api")


def run() -> None:
    uvicorn.run("main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
