"""Streaming chat client for the sidecar's ``/chat`` endpoint."""

from __future__ import annotations

import http.client
import json
import logging
from collections.abc import Callable
from typing import cast
from urllib import error, request

from sidechat.chat.models import (
    ChatEvent,
    ChatEventKind,
    ChatMessage,
    ChatRequest,
    ChatSessionState,
)
from sidechat.chat.sse import TokenStreamDecoder
from sidechat.version import __version__

__all__ = ["ChatSink", "StreamingChatSession"]

logger = logging.getLogger(__name__)

ChatSink = Callable[[ChatEvent], None]

DEFAULT_CHAT_TIMEOUT = 300.0
READ_SIZE = 8192


class StreamingChatSession:
    """Send user turns to a chat server and grow the assistant reply token by token.

    Failures never escape ``send``: HTTP errors and transport errors end up in
    the assistant message's content, so a broken turn leaves the session
    usable for the next one.
    """

    def __init__(
        self,
        server_url: str,
        *,
        username: str | None = None,
        timeout: float | None = DEFAULT_CHAT_TIMEOUT,
        state: ChatSessionState | None = None,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self.username = username
        self._timeout = timeout
        self.state = state if state is not None else ChatSessionState()

    @property
    def server_url(self) -> str:
        return self._server_url

    @property
    def messages(self) -> list[ChatMessage]:
        return self.state.messages

    @property
    def awaiting_response(self) -> bool:
        return self.state.awaiting_response

    def send(self, text: str, sink: ChatSink | None = None) -> ChatMessage:
        """Run one turn and return the finalized assistant message."""

        if not text or not text.strip():
            raise ValueError("message text must not be empty")
        user, assistant = self.state.begin_turn(text)
        emit = sink or _discard
        try:
            emit(ChatEvent(ChatEventKind.CREATED, user.snapshot()))
            emit(ChatEvent(ChatEventKind.CREATED, assistant.snapshot()))
            logger.debug(
                "chat.turn",
                extra={"message_id": assistant.id, "url": self._server_url},
            )
            self._run_turn(ChatRequest(message=text, username=self.username), assistant, emit)
        finally:
            assistant.finalize()
            self.state.end_turn()
        emit(ChatEvent(ChatEventKind.FINALIZED, assistant.snapshot()))
        return assistant

    # ------------------------------------------------------------------ helpers
    def _run_turn(self, chat_request: ChatRequest, assistant: ChatMessage, emit: ChatSink) -> None:
        try:
            resp = self._open(chat_request)
        except error.HTTPError as exc:
            body = _read_error_body(exc)
            logger.warning(
                "chat.http_error",
                extra={"status": exc.code, "message_id": assistant.id},
            )
            self._emit_delta(f"Error: {exc.code} {body}", assistant, emit)
            return
        except (error.URLError, http.client.HTTPException, OSError) as exc:
            self._fail(assistant, exc, emit)
            return

        decoder = TokenStreamDecoder()
        try:
            with resp:
                while not decoder.done:
                    chunk = resp.read1(READ_SIZE)
                    if not chunk:
                        break
                    for token in decoder.feed(chunk):
                        self._emit_delta(token, assistant, emit)
                for token in decoder.close():
                    self._emit_delta(token, assistant, emit)
        except (http.client.HTTPException, OSError) as exc:
            self._fail(assistant, exc, emit)

    def _emit_delta(self, delta: str, assistant: ChatMessage, emit: ChatSink) -> None:
        assistant.append(delta)
        emit(ChatEvent(ChatEventKind.DELTA, assistant.snapshot(), delta))

    def _fail(self, assistant: ChatMessage, exc: BaseException, emit: ChatSink) -> None:
        reason = getattr(exc, "reason", None) or exc
        logger.warning(
            "chat.transport_error",
            extra={"message_id": assistant.id, "error": str(reason)},
        )
        suffix = f"Connection error: {reason}"
        if assistant.content:
            suffix = "\n\n" + suffix
        self._emit_delta(suffix, assistant, emit)

    def _open(self, chat_request: ChatRequest) -> http.client.HTTPResponse:
        headers = {
            "User-Agent": f"sidechat/{__version__}",
            "Accept": "text/event-stream",
            "Content-Type": "application/json",
        }
        data = json.dumps(chat_request.to_payload()).encode()
        req = request.Request(
            f"{self._server_url}/chat", data=data, headers=headers, method="POST"
        )
        return cast(http.client.HTTPResponse, request.urlopen(req, timeout=self._timeout))


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace") or str(exc.reason)
    except (http.client.HTTPException, OSError):
        return str(exc.reason)


def _discard(_: ChatEvent) -> None:
    return None
