"""Echo backend that implements the sidecar HTTP contract.

Useful for local development and integration tests: it answers ``/health``
and streams an echo of each ``/chat`` message as ``data:`` lines.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from sidechat.chat.sse import DATA_PREFIX, DONE_SENTINEL
from sidechat.version import __version__

__all__ = ["ChatBody", "HealthResponse", "StubSettings", "create_app", "encode_event", "reply_tokens"]

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\S+\s*|\s+")


@dataclass(slots=True)
class StubSettings:
    service: str = "sidechat-stub"
    token_delay: float = 0.0


class HealthResponse(BaseModel):
    status: str
    service: str


class ChatBody(BaseModel):
    message: str = Field(min_length=1)
    username: str | None = None


def reply_tokens(message: str, username: str | None = None) -> list[str]:
    """Split the echo reply into word-sized tokens.

    Line breaks in ``message`` are folded into spaces: every ``data:`` line is
    a separate token on the wire, so a token may not span lines.
    """

    text = " ".join(message.splitlines())
    reply = f"{username or 'user'} said: {text}"
    return _TOKEN_RE.findall(reply)


def encode_event(data: str) -> str:
    # Multi-line payloads become one data line per line, as in SSE.
    return "".join(f"{DATA_PREFIX}{line}\n" for line in data.split("\n")) + "\n"


def create_app(settings: StubSettings | None = None) -> FastAPI:
    """Instantiate the stub backend."""

    settings = settings or StubSettings()
    app = FastAPI(title="sidechat stub backend", version=__version__)
    app.state.settings = settings

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    def health() -> HealthResponse:
        return HealthResponse(status="ok", service=settings.service)

    @app.get("/tools", tags=["system"])
    def tools() -> dict[str, list[Any]]:
        return {"tools": []}

    @app.post("/chat", tags=["chat"])
    async def chat(body: ChatBody) -> StreamingResponse:
        tokens = reply_tokens(body.message, body.username)

        async def _events() -> AsyncIterator[str]:
            started = time.perf_counter()
            for token in tokens:
                if settings.token_delay:
                    await asyncio.sleep(settings.token_delay)
                yield encode_event(token)
            yield encode_event(DONE_SENTINEL)
            logger.info(
                "stub.chat",
                extra={
                    "username": body.username,
                    "tokens": len(tokens),
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )

        return StreamingResponse(_events(), media_type="text/event-stream")

    return app
