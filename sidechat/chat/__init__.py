"""Streaming chat session client and transcript models."""

from .models import (
    ChatEvent,
    ChatEventKind,
    ChatMessage,
    ChatRequest,
    ChatSessionState,
    MessageRole,
    create_message,
)
from .session import ChatSink, StreamingChatSession
from .sse import TokenStreamDecoder, iter_tokens

__all__ = [
    "ChatEvent",
    "ChatEventKind",
    "ChatMessage",
    "ChatRequest",
    "ChatSessionState",
    "ChatSink",
    "MessageRole",
    "StreamingChatSession",
    "TokenStreamDecoder",
    "create_message",
    "iter_tokens",
]
