"""Entry point for the Twilio <-> OpenAI Realtime voice relay."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from api.routes import router as api_router
from config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Voice Relay",
    description="Relays Twilio Media Streams to OpenAI Realtime sessions, one session per call.",
)
app.include_router(api_router, prefix="/api")


@app.get("/ping", response_class=PlainTextResponse)
async def ping() -> str:
    return "OK"


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
